"""Database CLI commands."""

from __future__ import annotations

import click

from sophia.cli.ui import console
from sophia.config import settings
from sophia.storage.database import init_db


@click.group()
def db() -> None:
    """Database utilities."""


@db.command("init")
def db_init() -> None:
    """Create database tables if they do not exist."""
    init_db()
    console.print(f"[green]✓ Database ready[/green] ({settings.database_url})")


def register(cli: click.Group) -> None:
    cli.add_command(db)
