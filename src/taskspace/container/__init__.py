"""Container lifecycle: configuration, runtime commands, stats and logs."""

from taskspace.container.logs import ContainerLogStream, LogEntry, LogStreamOptions
from taskspace.container.manager import ContainerManager, classify_failure
from taskspace.container.models import (
    ContainerConfig,
    ContainerInfo,
    ContainerOperationResult,
    ContainerStats,
    ContainerStatus,
    ExecOptions,
    ExecResult,
    FailureKind,
    ResourceLimits,
)
from taskspace.container.validation import validate_container_config, validate_resource_limits

__all__ = [
    "ContainerConfig",
    "ContainerInfo",
    "ContainerLogStream",
    "ContainerManager",
    "ContainerOperationResult",
    "ContainerStats",
    "ContainerStatus",
    "ExecOptions",
    "ExecResult",
    "FailureKind",
    "LogEntry",
    "LogStreamOptions",
    "ResourceLimits",
    "classify_failure",
    "validate_container_config",
    "validate_resource_limits",
]
