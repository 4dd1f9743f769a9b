"""Collaborators that materialize worktree and directory workspaces.

The :class:`WorkspaceManager` only depends on the two protocols; the git and
local-filesystem implementations here are the defaults used when the host
does not inject its own.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

from taskspace.errors import WorkspaceError
from taskspace.process import CommandRunner, SubprocessRunner

logger = logging.getLogger(__name__)

_GIT_TIMEOUT = 120.0


@runtime_checkable
class WorktreeProvider(Protocol):
    """Creates and destroys version-control working trees."""

    async def create(self, task_id: str, path: Path) -> Path: ...

    async def remove(self, path: Path) -> None: ...


@runtime_checkable
class DirectoryProvider(Protocol):
    """Creates and destroys plain directories."""

    async def create(self, path: Path) -> Path: ...

    async def remove(self, path: Path) -> None: ...


class GitWorktreeProvider:
    """``git worktree add``/``remove`` against the project repository.

    Each task gets its own branch, ``<branch_prefix><task id>``, created from
    *base_ref*.
    """

    def __init__(
        self,
        repo_path: Path | str,
        runner: CommandRunner | None = None,
        *,
        branch_prefix: str = "taskspace/",
        base_ref: str = "HEAD",
    ) -> None:
        self._repo = Path(repo_path)
        self._runner = runner or SubprocessRunner()
        self._branch_prefix = branch_prefix
        self._base_ref = base_ref

    def branch_for(self, task_id: str) -> str:
        return f"{self._branch_prefix}{task_id}"

    async def create(self, task_id: str, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        await self._run_git(["worktree", "add", "-B", self.branch_for(task_id), str(path), self._base_ref])
        logger.info("Created worktree %s for task %s", path, task_id)
        return path

    async def remove(self, path: Path) -> None:
        try:
            await self._run_git(["worktree", "remove", "--force", str(path)])
        except WorkspaceError:
            if not path.exists():
                raise
            # Not registered as a worktree (e.g. already pruned); drop the files.
            logger.warning("git worktree remove failed for %s; deleting directory", path)
            await asyncio.to_thread(shutil.rmtree, path)

    async def _run_git(self, args: list[str]) -> str:
        argv = ["git", "-C", str(self._repo), *args]
        try:
            out = await self._runner.run(argv, timeout=_GIT_TIMEOUT)
        except OSError as exc:
            msg = f"Failed to run git: {exc}"
            raise WorkspaceError(msg) from exc
        if not out.ok:
            msg = f"Git command failed: {out.stderr or out.stdout}"
            raise WorkspaceError(msg)
        return out.stdout


class LocalDirectoryProvider:
    """Plain directories on the local filesystem."""

    async def create(self, path: Path) -> Path:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Cannot create workspace directory {path}: {exc}"
            raise WorkspaceError(msg) from exc
        return path

    async def remove(self, path: Path) -> None:
        if path.exists():
            await asyncio.to_thread(shutil.rmtree, path)
