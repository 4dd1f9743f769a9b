"""CLI subcommand registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all subcommands on the CLI group."""
    from taskspace.cli_commands.config import config
    from taskspace.cli_commands.container import logs, stats
    from taskspace.cli_commands.runtimes import runtimes

    cli.add_command(runtimes)
    cli.add_command(stats)
    cli.add_command(logs)
    cli.add_command(config)
