"""Defensive validation run before any runtime command is issued.

The settings loader already validates schemas, but configs can also be
built with ``model_construct`` or assembled programmatically, so the
lifecycle manager re-checks every field that ends up on a command line.
"""

from __future__ import annotations

import re

from taskspace.container.models import MEMORY_PATTERN, NETWORK_MODES, ContainerConfig, ResourceLimits
from taskspace.errors import InvalidConfigError

_MEMORY_RE = re.compile(MEMORY_PATTERN)

MAX_CPUS = 64
MIN_CPU_SHARES = 2
MAX_CPU_SHARES = 262144


def is_valid_memory(value: object) -> bool:
    """``True`` for byte counts like ``"1024"``, ``"256m"``, ``"2G"``; no decimals or ``"mb"``."""
    return isinstance(value, str) and _MEMORY_RE.fullmatch(value) is not None


def validate_resource_limits(limits: ResourceLimits) -> None:
    """Raise :class:`InvalidConfigError` naming the first offending field."""
    cpu = limits.cpu
    if cpu is not None and (isinstance(cpu, bool) or not isinstance(cpu, (int, float)) or not 0 < cpu <= MAX_CPUS):
        raise InvalidConfigError("resource_limits.cpu", f"must be in (0, {MAX_CPUS}], got {cpu!r}")

    for name in ("memory", "memory_reservation", "memory_swap"):
        value = getattr(limits, name)
        if value is not None and not is_valid_memory(value):
            raise InvalidConfigError(
                f"resource_limits.{name}",
                f"must be an integer with optional k/m/g suffix, got {value!r}",
            )

    shares = limits.cpu_shares
    if shares is not None and (
        isinstance(shares, bool) or not isinstance(shares, int) or not MIN_CPU_SHARES <= shares <= MAX_CPU_SHARES
    ):
        raise InvalidConfigError(
            "resource_limits.cpu_shares", f"must be in [{MIN_CPU_SHARES}, {MAX_CPU_SHARES}], got {shares!r}"
        )

    pids = limits.pids_limit
    if pids is not None and (isinstance(pids, bool) or not isinstance(pids, int) or pids < 1):
        raise InvalidConfigError("resource_limits.pids_limit", f"must be >= 1, got {pids!r}")


def validate_container_config(config: ContainerConfig) -> None:
    """Validate everything :func:`build_container_args` will put on the command line."""
    builds_image = bool(config.dockerfile or config.build_context)
    if not builds_image and (not config.image or not config.image.strip()):
        raise InvalidConfigError("image", "must be a non-empty image reference")

    if config.install_timeout is not None and config.install_timeout <= 0:
        raise InvalidConfigError("install_timeout", f"must be positive, got {config.install_timeout!r}")

    mode = config.network_mode
    if mode not in NETWORK_MODES and not mode.startswith("container:"):
        raise InvalidConfigError("network_mode", f"unsupported network mode {mode!r}")

    if config.resource_limits is not None:
        validate_resource_limits(config.resource_limits)
