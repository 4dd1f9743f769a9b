"""Workspace configuration, handles and disposal results."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from taskspace.container.models import ContainerConfig
from taskspace.runtime.models import RuntimeType


class WorkspaceStrategy(str, Enum):
    """How a task's working files are isolated."""

    WORKTREE = "worktree"
    CONTAINER = "container"
    DIRECTORY = "directory"
    NONE = "none"


class TaskOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class WorkspaceConfig(BaseModel):
    """Per-task isolation request (also the shape of a project default block)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    strategy: WorkspaceStrategy
    path: str | None = None
    container: ContainerConfig | None = None
    cleanup: bool
    preserve_on_failure: bool = False

    @model_validator(mode="after")
    def _container_required(self) -> WorkspaceConfig:
        if self.strategy is WorkspaceStrategy.CONTAINER and self.container is None:
            msg = "container configuration is required when strategy is 'container'"
            raise ValueError(msg)
        return self


class WorkspaceHandle(BaseModel):
    """What :meth:`WorkspaceManager.create_workspace` hands back to the caller."""

    task_id: str
    strategy: WorkspaceStrategy
    path: Path
    success: bool = True
    error: str | None = None
    container_id: str | None = None
    runtime: RuntimeType | None = None
    container_config: ContainerConfig | None = None
    cleanup: bool = True
    preserve_on_failure: bool = False
    warnings: list[str] = Field(default_factory=list)


class DisposeResult(BaseModel):
    task_id: str
    disposed: bool = Field(description="True when teardown actually ran.")
    preserved: bool = False
    success: bool = True
    error: str | None = None
