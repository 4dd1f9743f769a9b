"""taskspace CLI entrypoint."""

from __future__ import annotations

import logging

import click

from taskspace import __version__


@click.group()
@click.version_option(version=__version__, prog_name="taskspace")
@click.option("-v", "--verbose", is_flag=True, help="Log runtime commands.")
def main(verbose: bool) -> None:
    """taskspace: per-task workspace isolation diagnostics."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# Register subcommands
from taskspace.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
