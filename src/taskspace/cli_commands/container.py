"""``taskspace stats`` / ``taskspace logs``: inspect a running container."""

from __future__ import annotations

import asyncio
import sys

import click
from rich.markup import escape

from taskspace.cli_commands._output import console, print_log_entry, print_stats
from taskspace.container.logs import LogStreamOptions
from taskspace.container.manager import ContainerManager
from taskspace.errors import RuntimeUnavailableError, StatsUnavailableError


@click.command("stats")
@click.argument("container")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def stats(container: str, as_json: bool) -> None:
    """Show a one-shot resource sample for CONTAINER (id or name)."""
    try:
        sample = asyncio.run(ContainerManager().get_stats(container))
    except (RuntimeUnavailableError, StatsUnavailableError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(1)

    if as_json:
        console.print_json(sample.model_dump_json())
        return
    print_stats(container, sample)


@click.command("logs")
@click.argument("container")
@click.option("-f", "--follow", is_flag=True, help="Keep streaming new output.")
@click.option("-t", "--timestamps", is_flag=True, help="Show runtime timestamps.")
@click.option("--tail", default=None, help="Number of lines from the end, or 'all'.")
@click.option("--since", default=None, help="Start time (ISO-8601 or relative, e.g. 10m).")
@click.option("--until", default=None, help="End time (ISO-8601 or relative).")
def logs(
    container: str,
    follow: bool,
    timestamps: bool,
    tail: str | None,
    since: str | None,
    until: str | None,
) -> None:
    """Print the logs of CONTAINER."""
    if tail is not None and tail != "all" and not tail.isdigit():
        raise click.BadParameter("must be a number or 'all'", param_hint="--tail")

    options = LogStreamOptions(
        follow=follow,
        timestamps=timestamps,
        tail=int(tail) if tail and tail.isdigit() else tail,
        since=since,
        until=until,
    )

    async def _stream() -> tuple[int | None, str | None]:
        stream = await ContainerManager().stream_logs(container, options)
        try:
            async for entry in stream:
                print_log_entry(entry)
        finally:
            await stream.aclose()
        return stream.exit_code, str(stream.last_error) if stream.last_error else None

    try:
        exit_code, error = asyncio.run(_stream())
    except RuntimeUnavailableError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(1)
    except KeyboardInterrupt:
        return

    if error:
        console.print(f"[red]Error:[/red] {escape(error)}")
        sys.exit(1)
    if exit_code:
        sys.exit(exit_code)
