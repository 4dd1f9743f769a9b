"""``taskspace runtimes``: show which container runtimes are usable."""

from __future__ import annotations

import asyncio
import json

import click

from taskspace.cli_commands._output import console, print_runtimes_table
from taskspace.runtime.catalog import RuntimeCatalog
from taskspace.runtime.models import RuntimeDescriptor, RuntimeType


@click.command("runtimes")
@click.option("--prefer", type=click.Choice(["docker", "podman"]), default=None, help="Preferred runtime.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def runtimes(prefer: str | None, as_json: bool) -> None:
    """Detect docker/podman and report the runtime that would be used."""

    async def _detect() -> tuple[list[RuntimeDescriptor], RuntimeType]:
        catalog = RuntimeCatalog()
        descriptors = await catalog.detect_runtimes()
        return descriptors, await catalog.get_best_runtime(prefer)

    descriptors, best = asyncio.run(_detect())

    if as_json:
        payload = {"selected": best.value, "runtimes": [d.model_dump(mode="json") for d in descriptors]}
        console.print_json(json.dumps(payload))
        return

    print_runtimes_table(descriptors, best)
