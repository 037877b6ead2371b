"""Sophia command-line interface.

Commands live in submodules under `sophia.cli.*` and attach themselves to the
root group through `register`.
"""

from __future__ import annotations

import click

from sophia.app_version import get_app_version
from sophia.observability import init_observability


@click.group()
@click.version_option(version=get_app_version(), prog_name="sophia")
def cli() -> None:
    """Sophia - dialogue orchestration brain."""
    init_observability()


def _register_commands() -> None:
    from sophia.cli import db, deferred, serve, state

    db.register(cli)
    deferred.register(cli)
    serve.register(cli)
    state.register(cli)


_register_commands()


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
