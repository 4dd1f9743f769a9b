"""Workspace manager: strategy dispatch, configuration merge and cleanup policy."""

from taskspace.workspace.dependencies import detect_install_command
from taskspace.workspace.manager import DEFAULT_CONTAINER_IMAGE, WorkspaceManager
from taskspace.workspace.merge import merge_container_config
from taskspace.workspace.models import (
    DisposeResult,
    TaskOutcome,
    WorkspaceConfig,
    WorkspaceHandle,
    WorkspaceStrategy,
)
from taskspace.workspace.providers import (
    DirectoryProvider,
    GitWorktreeProvider,
    LocalDirectoryProvider,
    WorktreeProvider,
)

__all__ = [
    "DEFAULT_CONTAINER_IMAGE",
    "DirectoryProvider",
    "DisposeResult",
    "GitWorktreeProvider",
    "LocalDirectoryProvider",
    "TaskOutcome",
    "WorkspaceConfig",
    "WorkspaceHandle",
    "WorkspaceManager",
    "WorkspaceStrategy",
    "WorktreeProvider",
    "detect_install_command",
    "merge_container_config",
]
