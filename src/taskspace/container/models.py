"""Data models for container configuration, state and results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from taskspace.errors import (
    ContainerOperationError,
    ContainerStateError,
    ExecFailedError,
)

MEMORY_PATTERN = r"^\d+[kKmMgG]?$"
NETWORK_MODES = ("bridge", "host", "none", "container")

DEFAULT_NETWORK_MODE = "bridge"
DEFAULT_INSTALL_TIMEOUT_MS = 300_000


class _ConfigModel(BaseModel):
    """Accepts both snake_case and camelCase keys (settings files use camelCase)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResourceLimits(_ConfigModel):
    """Optional resource caps; an unset field means "runtime default"."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    cpu: float | None = Field(default=None, gt=0, le=64, description="Fractional CPU cores.")
    memory: str | None = Field(default=None, pattern=MEMORY_PATTERN, description="Hard memory limit, e.g. '512m'.")
    memory_reservation: str | None = Field(default=None, pattern=MEMORY_PATTERN)
    memory_swap: str | None = Field(default=None, pattern=MEMORY_PATTERN)
    cpu_shares: int | None = Field(default=None, ge=2, le=262144, description="Relative CPU weight.")
    pids_limit: int | None = Field(default=None, ge=1, description="Maximum process count.")


class ContainerConfig(_ConfigModel):
    """Declarative description of a task container.

    ``image`` is optional at the schema level so that partial blocks
    (project defaults, task overrides) validate on their own; container
    creation requires it to be non-empty.
    """

    image: str | None = None
    dockerfile: str | None = None
    build_context: str | None = None
    image_tag: str | None = None
    volumes: dict[str, str] = Field(default_factory=dict, description="Host path -> container path.")
    environment: dict[str, str] = Field(default_factory=dict)
    resource_limits: ResourceLimits | None = None
    network_mode: str = DEFAULT_NETWORK_MODE
    working_dir: str | None = None
    user: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    entrypoint: list[str] | None = None
    command: list[str] | None = None
    auto_remove: bool = True
    privileged: bool = False
    security_opts: list[str] = Field(default_factory=list)
    cap_add: list[str] = Field(default_factory=list)
    cap_drop: list[str] = Field(default_factory=list)
    auto_dependency_install: bool = True
    custom_install_command: str | None = None
    install_timeout: int | None = Field(default=None, gt=0, description="Milliseconds.")
    install_retries: int = Field(default=0, ge=0)

    @field_validator("network_mode")
    @classmethod
    def _check_network_mode(cls, value: str) -> str:
        if value in NETWORK_MODES or value.startswith("container:"):
            return value
        msg = f"network_mode must be one of {', '.join(NETWORK_MODES)} (got {value!r})"
        raise ValueError(msg)


class ContainerStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    REMOVING = "removing"
    EXITED = "exited"
    DEAD = "dead"


TERMINAL_STATUSES = frozenset({ContainerStatus.EXITED, ContainerStatus.DEAD})

# created -> exited/dead covers a container that ran and stopped between two observations.
_TRANSITIONS: dict[ContainerStatus, frozenset[ContainerStatus]] = {
    ContainerStatus.CREATED: frozenset(
        {ContainerStatus.RUNNING, ContainerStatus.EXITED, ContainerStatus.DEAD, ContainerStatus.REMOVING}
    ),
    ContainerStatus.RUNNING: frozenset(
        {
            ContainerStatus.PAUSED,
            ContainerStatus.RESTARTING,
            ContainerStatus.EXITED,
            ContainerStatus.DEAD,
            ContainerStatus.REMOVING,
        }
    ),
    ContainerStatus.PAUSED: frozenset({ContainerStatus.RUNNING, ContainerStatus.REMOVING}),
    ContainerStatus.RESTARTING: frozenset(
        {ContainerStatus.RUNNING, ContainerStatus.EXITED, ContainerStatus.DEAD, ContainerStatus.REMOVING}
    ),
    ContainerStatus.EXITED: frozenset({ContainerStatus.REMOVING}),
    ContainerStatus.DEAD: frozenset({ContainerStatus.REMOVING}),
    ContainerStatus.REMOVING: frozenset({ContainerStatus.EXITED, ContainerStatus.DEAD}),
}


def can_transition(current: ContainerStatus, new: ContainerStatus) -> bool:
    return current == new or new in _TRANSITIONS[current]


class ContainerStats(BaseModel):
    """One-shot resource usage sample.  ``cpu_percent`` of N00 means N cores busy."""

    cpu_percent: float = Field(default=0.0, ge=0)
    memory_usage: int = 0
    memory_limit: int = 0
    memory_percent: float = 0.0
    network_rx_bytes: int = 0
    network_tx_bytes: int = 0
    block_read_bytes: int = 0
    block_write_bytes: int = 0
    pids: int = 0


class ContainerInfo(BaseModel):
    """Registry record for one live container."""

    id: str
    name: str
    image: str
    status: ContainerStatus
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    exit_code: int | None = None
    task_id: str | None = None
    stats: ContainerStats | None = None
    auto_remove: bool = False

    def bind_task(self, task_id: str) -> None:
        """Record the owning task.  A task id is assigned at most once."""
        if self.task_id is not None and self.task_id != task_id:
            msg = f"Container {self.id} already belongs to task {self.task_id}"
            raise ContainerStateError(msg)
        self.task_id = task_id

    def with_status(self, status: ContainerStatus) -> ContainerInfo:
        """Return a copy in *status*, enforcing the lifecycle state machine."""
        if not can_transition(self.status, status):
            msg = f"Container {self.id}: illegal transition {self.status.value} -> {status.value}"
            raise ContainerStateError(msg)
        return self.model_copy(update={"status": status})

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class FailureKind(str, Enum):
    """Best-effort classification of a failed runtime command."""

    GENERIC = "generic"
    MEMORY_LIMIT = "memory_limit"
    PROCESS_LIMIT = "process_limit"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    RUNTIME_UNAVAILABLE = "runtime_unavailable"


class ContainerOperationResult(BaseModel):
    """Outcome of create/start/stop/remove."""

    success: bool
    container_id: str | None = None
    container_info: ContainerInfo | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None
    command: str | None = None
    output: str | None = None

    def raise_for_failure(self, error_cls: type[ContainerOperationError] = ContainerOperationError) -> None:
        """Raise *error_cls* carrying the error text when the operation failed."""
        if not self.success:
            raise error_cls(self.error or "", self.failure_kind)


class ExecOptions(BaseModel):
    """Options for :meth:`ContainerManager.exec_command`."""

    timeout: float = Field(default=30.0, gt=0, description="Seconds before the exec is killed.")
    working_dir: str | None = None
    user: str | None = None
    environment: dict[str, str] = Field(default_factory=dict)


class ExecResult(BaseModel):
    """Outcome of running a command inside a container."""

    success: bool
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    failure_kind: FailureKind | None = None
    command: str | None = None

    def raise_for_failure(self) -> None:
        if not self.success:
            detail = self.error or self.stderr.strip() or f"exit code {self.exit_code}"
            raise ExecFailedError(detail, self.failure_kind)
