"""Deferred topic CLI commands."""

from __future__ import annotations

import click

from sophia.brain import deferred_topics
from sophia.brain.state import utc_now
from sophia.cli.ui import console, render_deferred_table
from sophia.storage.database import get_session
from sophia.storage.repositories import ChatStateRepository


@click.group()
def deferred() -> None:
    """Inspect the deferred topic queue of a user."""


@deferred.command("list")
@click.argument("user_id")
@click.option("--scope", default="web", show_default=True)
def deferred_list(user_id: str, scope: str) -> None:
    """List deferred topics for USER_ID, oldest first."""
    with get_session() as session:
        chat_state = ChatStateRepository(session).load(user_id, scope)
    if chat_state is None:
        raise click.ClickException(f"No chat state for {user_id}/{scope}")

    queue = chat_state.supervisor.deferred
    now = utc_now()
    if not queue.topics:
        console.print("[grey62]No deferred topics[/grey62]")
    else:
        render_deferred_table(queue.topics, now)
    if deferred_topics.is_paused(queue, now=now):
        console.print(f"[yellow]Relaunch paused until {queue.paused_until}[/yellow]")


@deferred.command("prune")
@click.argument("user_id")
@click.option("--scope", default="web", show_default=True)
def deferred_prune(user_id: str, scope: str) -> None:
    """Drop expired deferred topics for USER_ID."""
    with get_session() as session:
        repo = ChatStateRepository(session)
        chat_state = repo.load(user_id, scope)
        if chat_state is None:
            raise click.ClickException(f"No chat state for {user_id}/{scope}")
        removed = deferred_topics.prune_expired(chat_state.supervisor.deferred)
        if removed:
            repo.save(user_id, scope, chat_state)
    console.print(f"[green]✓ Pruned {len(removed)} expired topic(s)[/green]")


def register(cli: click.Group) -> None:
    cli.add_command(deferred)
