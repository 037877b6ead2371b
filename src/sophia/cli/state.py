"""Chat state CLI commands."""

from __future__ import annotations

import json

import click
from rich.panel import Panel

from sophia.cli.ui import console, format_mode, render_states_table
from sophia.storage.database import get_session
from sophia.storage.repositories import ChatStateRepository


@click.group()
def state() -> None:
    """Inspect and reset per-user chat state."""


@state.command("list")
@click.option("--user-id", default=None, help="Only show states for this user")
@click.option("--limit", default=20, show_default=True, type=int)
def state_list(user_id: str | None, limit: int) -> None:
    """List recently updated chat states."""
    with get_session() as session:
        records = ChatStateRepository(session).list_states(user_id=user_id, limit=limit)
        render_states_table(records)


@state.command("show")
@click.argument("user_id")
@click.option("--scope", default="web", show_default=True)
def state_show(user_id: str, scope: str) -> None:
    """Print the stored chat state for USER_ID."""
    with get_session() as session:
        chat_state = ChatStateRepository(session).load(user_id, scope)
    if chat_state is None:
        raise click.ClickException(f"No chat state for {user_id}/{scope}")

    sup = chat_state.supervisor
    console.print(f"[bold]Mode[/bold] {format_mode(chat_state.current_mode.value)}")
    console.print(f"[bold]Risk level[/bold] {chat_state.risk_level}")
    if sup.active is not None:
        console.print(
            f"[bold]Active session[/bold] {sup.active.session_type.value} "
            f"({sup.active.phase.value}, {sup.active.turn_count} turns)"
        )
    if sup.paused is not None:
        console.print(f"[bold]Paused session[/bold] {sup.paused.machine_type.value}")
    console.print(f"[bold]Deferred topics[/bold] {len(sup.deferred.topics)}")
    console.print(
        Panel(
            json.dumps(chat_state.model_dump(mode="json"), indent=2, ensure_ascii=False),
            title=f"{user_id}/{scope}",
        )
    )


@state.command("clear")
@click.argument("user_id")
@click.option("--scope", default="web", show_default=True)
@click.option("--yes", is_flag=True, help="Skip confirmation prompt")
def state_clear(user_id: str, scope: str, yes: bool) -> None:
    """Reset the chat state for USER_ID to its initial value."""
    if not yes and not click.confirm(f"Clear chat state for {user_id}/{scope}?"):
        console.print("[yellow]Cancelled[/yellow]")
        return
    with get_session() as session:
        cleared = ChatStateRepository(session).clear(user_id, scope)
    if not cleared:
        raise click.ClickException(f"No chat state for {user_id}/{scope}")
    console.print(f"[green]✓ Cleared chat state for {user_id}/{scope}[/green]")


def register(cli: click.Group) -> None:
    cli.add_command(state)
