"""Shared CLI UI helpers (Rich formatting)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from rich.console import Console
from rich.table import Table

from sophia.brain.state import AgentMode, DeferredTopic

console = Console()


def format_mode(mode: str) -> str:
    """Return colorized agent mode string for terminal output."""
    colors = {
        AgentMode.COMPANION.value: "cyan",
        AgentMode.INVESTIGATOR.value: "magenta",
        AgentMode.FIREFIGHTER.value: "yellow",
        AgentMode.SENTRY.value: "red",
    }
    color = colors.get(mode, "white")
    return f"[{color}]{mode}[/{color}]"


def _ts(value: Any) -> str:
    return value.isoformat(timespec="seconds") if isinstance(value, datetime) else "-"


def render_states_table(records: Iterable[Any]) -> None:
    """Render a table of stored chat states using Rich."""
    table = Table(title="Chat States", show_lines=False)
    table.add_column("User", style="white")
    table.add_column("Scope", style="cyan")
    table.add_column("Mode", style="bold")
    table.add_column("Updated", style="white")

    for record in records:
        table.add_row(
            getattr(record, "user_id", ""),
            getattr(record, "scope", ""),
            format_mode(getattr(record, "current_mode", "")),
            _ts(getattr(record, "updated_at", None)),
        )

    console.print(table)


def render_deferred_table(topics: Iterable[DeferredTopic], now: datetime) -> None:
    """Render deferred topics in processing order."""
    table = Table(title="Deferred Topics", show_lines=False)
    table.add_column("#", style="grey62")
    table.add_column("Type", style="cyan")
    table.add_column("Target", style="white")
    table.add_column("Triggers", justify="right")
    table.add_column("Latest summary", style="magenta")
    table.add_column("Expires", style="white")

    for position, topic in enumerate(topics, start=1):
        expires = _ts(topic.expires_at)
        if topic.is_expired(now):
            expires = f"[red]{expires} (expired)[/red]"
        table.add_row(
            str(position),
            topic.machine_type.value,
            topic.action_target or "-",
            str(topic.trigger_count),
            topic.latest_summary or "-",
            expires,
        )

    console.print(table)
