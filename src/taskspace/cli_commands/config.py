"""``taskspace config``: validate project settings files."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.markup import escape

from taskspace.cli_commands._output import console, print_settings
from taskspace.config import SettingsLoader
from taskspace.errors import ConfigError


@click.group()
def config() -> None:
    """Work with taskspace settings files."""


@config.command("check")
@click.argument("settings_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print the normalized settings as JSON.")
def check(settings_file: str, as_json: bool) -> None:
    """Validate SETTINGS_FILE and print the effective defaults."""
    try:
        settings = SettingsLoader(Path(settings_file)).load()
    except ConfigError as exc:
        console.print(f"[red]Invalid settings:[/red] {escape(str(exc))}")
        sys.exit(1)

    if as_json:
        console.print_json(settings.model_dump_json(exclude_none=True))
        return

    print_settings(settings)
    console.print("[green]Settings are valid.[/green]")
