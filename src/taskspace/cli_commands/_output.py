"""Shared CLI output formatters."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from taskspace.config import ProjectSettings  # noqa: TC001
from taskspace.container.logs import LogEntry  # noqa: TC001
from taskspace.container.models import ContainerStats  # noqa: TC001
from taskspace.runtime.models import RuntimeDescriptor, RuntimeType  # noqa: TC001

console = Console()


def print_runtimes_table(descriptors: list[RuntimeDescriptor], best: RuntimeType) -> None:
    """Pretty-print detected runtimes as a table."""
    table = Table(title="Container Runtimes")
    table.add_column("Runtime", style="cyan")
    table.add_column("Available")
    table.add_column("Version")
    table.add_column("Details")

    for desc in descriptors:
        available = "[green]yes[/green]" if desc.available else "[red]no[/red]"
        details = desc.error or desc.full_version or ""
        table.add_row(desc.type.value, available, desc.version or "-", escape(_truncate(details)))

    console.print(table)
    if best is RuntimeType.NONE:
        console.print("[yellow]No usable container runtime found.[/yellow]")
    else:
        console.print(f"Selected runtime: [bold]{best.value}[/bold]")


def print_stats(container_id: str, stats: ContainerStats) -> None:
    """Pretty-print one resource sample."""
    table = Table(title=f"Stats for {container_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")

    table.add_row("CPU", f"{stats.cpu_percent:.2f}%")
    table.add_row(
        "Memory",
        f"{format_bytes(stats.memory_usage)} / {format_bytes(stats.memory_limit)} ({stats.memory_percent:.2f}%)",
    )
    table.add_row("Network", f"{format_bytes(stats.network_rx_bytes)} rx / {format_bytes(stats.network_tx_bytes)} tx")
    table.add_row(
        "Block I/O", f"{format_bytes(stats.block_read_bytes)} read / {format_bytes(stats.block_write_bytes)} write"
    )
    table.add_row("PIDs", str(stats.pids))
    console.print(table)


def print_log_entry(entry: LogEntry) -> None:
    prefix = f"[dim]{entry.timestamp.isoformat()}[/dim] " if entry.timestamp else ""
    style = "red" if entry.stream == "stderr" else ""
    message = escape(entry.message)
    console.print(f"{prefix}[{style}]{message}[/{style}]" if style else f"{prefix}{message}", highlight=False)


def print_settings(settings: ProjectSettings) -> None:
    """Summarize a validated settings file."""
    console.print("[bold]Project settings[/bold]")
    console.print(f"  Default strategy: {settings.default_strategy.value}")
    console.print(f"  Cleanup: {settings.cleanup}")
    console.print(f"  Preserve on failure: {settings.preserve_on_failure}")
    console.print(f"  Runtime preference: {settings.runtime.value if settings.runtime else '(auto)'}")
    if settings.container is not None:
        console.print(f"  Container image: {settings.container.image or '(default)'}")
        limits = settings.container.resource_limits
        if limits is not None:
            console.print(f"  Resource limits: {limits.model_dump(exclude_none=True)}")


def format_bytes(value: int) -> str:
    size = float(value)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if size < 1024 or unit == "TiB":
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{value}B"


def _truncate(text: str, max_len: int = 80) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
