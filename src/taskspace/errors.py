"""Shared error types for workspace isolation."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskspace.container.models import FailureKind


class TaskspaceError(Exception):
    """Base error for all workspace isolation failures."""


class InvalidConfigError(TaskspaceError):
    """A container or resource configuration failed local validation.

    Raised before any runtime command is executed.
    """

    def __init__(self, field: str, detail: str = "") -> None:
        self.field = field
        self.detail = detail
        super().__init__(f"Invalid configuration for '{field}'" + (f": {detail}" if detail else ""))


class RuntimeUnavailableError(TaskspaceError):
    """No usable container runtime was found on the host."""

    def __init__(self, detail: str = "", remediation: str = "") -> None:
        self.detail = detail or "No container runtime available"
        self.remediation = remediation
        msg = self.detail
        if remediation:
            msg += f". {remediation}"
        super().__init__(msg)


class ContainerOperationError(TaskspaceError):
    """A runtime invocation failed."""

    def __init__(self, detail: str = "", failure_kind: FailureKind | None = None) -> None:
        self.detail = detail
        self.failure_kind = failure_kind
        super().__init__(f"{self._label}" + (f": {detail}" if detail else ""))

    _label = "Container operation failed"


class CreationFailedError(ContainerOperationError):
    _label = "Container creation failed"


class ExecFailedError(ContainerOperationError):
    _label = "Container exec failed"


class StatsUnavailableError(ContainerOperationError):
    _label = "Container stats unavailable"


class RemovalFailedError(ContainerOperationError):
    _label = "Container removal failed"


class ContainerStateError(TaskspaceError):
    """Illegal change to container state (bad transition, task reassignment)."""


class LogStreamError(TaskspaceError):
    """The log subprocess could not be spawned or exited abnormally."""

    def __init__(self, container_id: str, detail: str = "") -> None:
        self.container_id = container_id
        self.detail = detail
        super().__init__(f"Log stream for {container_id} failed" + (f": {detail}" if detail else ""))


class WorkspaceError(TaskspaceError):
    """A workspace could not be materialized or torn down."""


class ConfigError(TaskspaceError):
    """Raised when a settings file fails parsing or validation."""
