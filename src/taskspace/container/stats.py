"""Parsing for ``stats --no-stream`` output."""

from __future__ import annotations

import re

from taskspace.container.models import ContainerStats

_SIZE_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([a-zA-Z]*)\s*$")
_PERCENT_RE = re.compile(r"^[0-9]*\.?[0-9]+%?$")

# Binary (IEC) units use 1024, decimal (SI) units use 1000; docker mixes both.
_UNITS: dict[str, int] = {
    "": 1,
    "b": 1,
    "kib": 1024,
    "mib": 1024**2,
    "gib": 1024**3,
    "tib": 1024**4,
    "pib": 1024**5,
    "kb": 1000,
    "mb": 1000**2,
    "gb": 1000**3,
    "tb": 1000**4,
    "pb": 1000**5,
}

STATS_FIELD_COUNT = 7


def parse_size(text: str) -> int:
    """Convert ``"240MiB"``, ``"1.5kB"`` or ``"0B"`` to bytes; unparsable input is 0."""
    match = _SIZE_RE.match(text)
    if not match:
        return 0
    number, unit = match.groups()
    factor = _UNITS.get(unit.lower())
    if factor is None:
        return 0
    return round(float(number) * factor)


def parse_size_pair(text: str) -> tuple[int, int]:
    """Split ``"128MiB / 1GiB"`` into two byte counts."""
    left, sep, right = text.partition("/")
    if not sep:
        return parse_size(left), 0
    return parse_size(left), parse_size(right)


def parse_percent(text: str) -> float:
    try:
        value = float(text.strip().rstrip("%"))
    except ValueError:
        return 0.0
    return value if value >= 0 else 0.0


def parse_int(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


def _is_header(fields: list[str]) -> bool:
    return fields[1].strip().upper().startswith("CPU")


def _is_size(text: str) -> bool:
    match = _SIZE_RE.match(text)
    return match is not None and match.group(2).lower() in _UNITS


def _recognizable(cpu: str, mem: str, pids: str) -> bool:
    # "--" is what a stopped container reports; anything else must parse.
    usage = mem.partition("/")[0].strip()
    if "--" in (cpu, usage, pids):
        return True
    return bool(_PERCENT_RE.match(cpu)) or _is_size(usage) or pids.isdigit()


def parse_stats_output(output: str) -> ContainerStats | None:
    """Parse the last data row of pipe-delimited stats output.

    Returns ``None`` when no row with seven fields exists, or when the
    cpu, memory and pids fields of that row are all unparsable.
    """
    row: list[str] | None = None
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = line.split("|")
        if len(fields) < STATS_FIELD_COUNT or _is_header(fields):
            continue
        row = fields

    if row is None:
        return None

    _name, cpu, mem, mem_pct, net, block, pids = (f.strip() for f in row[:STATS_FIELD_COUNT])
    if not _recognizable(cpu, mem, pids):
        return None
    mem_usage, mem_limit = parse_size_pair(mem)
    rx, tx = parse_size_pair(net)
    read, write = parse_size_pair(block)
    return ContainerStats(
        cpu_percent=parse_percent(cpu),
        memory_usage=mem_usage,
        memory_limit=mem_limit,
        memory_percent=parse_percent(mem_pct),
        network_rx_bytes=rx,
        network_tx_bytes=tx,
        block_read_bytes=read,
        block_write_bytes=write,
        pids=parse_int(pids),
    )
