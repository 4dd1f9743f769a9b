"""taskspace: per-task workspace isolation with worktrees, directories and containers."""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from taskspace.config import ProjectSettings as ProjectSettings
    from taskspace.config import SettingsLoader as SettingsLoader
    from taskspace.container.logs import ContainerLogStream as ContainerLogStream
    from taskspace.container.manager import ContainerManager as ContainerManager
    from taskspace.runtime.catalog import RuntimeCatalog as RuntimeCatalog
    from taskspace.workspace.manager import WorkspaceManager as WorkspaceManager

_LAZY_EXPORTS = {
    "ContainerLogStream": "taskspace.container.logs",
    "ContainerManager": "taskspace.container.manager",
    "ProjectSettings": "taskspace.config",
    "RuntimeCatalog": "taskspace.runtime.catalog",
    "SettingsLoader": "taskspace.config",
    "WorkspaceManager": "taskspace.workspace.manager",
}


def __getattr__(name: str) -> object:
    module_path = _LAZY_EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'taskspace' has no attribute {name!r}")
