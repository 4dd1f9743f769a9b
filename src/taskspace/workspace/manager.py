"""WorkspaceManager: merges configuration, picks a strategy and applies cleanup policy."""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from taskspace.container.manager import ContainerManager
from taskspace.container.models import DEFAULT_INSTALL_TIMEOUT_MS, ContainerConfig, ExecOptions, ExecResult
from taskspace.errors import WorkspaceError
from taskspace.process import CommandRunner, SubprocessRunner
from taskspace.runtime.catalog import RuntimeCatalog
from taskspace.runtime.models import RuntimeType
from taskspace.utils.telemetry import (
    ATTR_CONTAINER_ID,
    ATTR_OUTCOME,
    ATTR_STRATEGY,
    ATTR_SUCCESS,
    ATTR_TASK_ID,
    configure_telemetry,
    get_tracer,
)
from taskspace.workspace.dependencies import detect_install_command
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

if TYPE_CHECKING:
    from taskspace.config import ProjectSettings

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

DEFAULT_CONTAINER_IMAGE = "node:20-alpine"
DEFAULT_CONTAINER_WORKDIR = "/workspace"
WORKSPACE_DIRNAME = ".taskspace"


class WorkspaceManager:
    """Create, use and dispose one isolated workspace per task.

    Operations on the same task are serialized by a per-task lock; different
    tasks proceed concurrently.

    Usage::

        manager = WorkspaceManager(".", default_strategy="container",
                                   container_defaults=ContainerConfig(image="python:3.12"))
        handle = await manager.create_workspace("task-1")
        await manager.exec_in_workspace("task-1", "pytest -q")
        await manager.dispose_workspace("task-1", TaskOutcome.SUCCESS)
    """

    def __init__(
        self,
        project_path: Path | str,
        *,
        default_strategy: WorkspaceStrategy | str | None = None,
        container_defaults: ContainerConfig | None = None,
        default_cleanup: bool = True,
        default_preserve_on_failure: bool = False,
        runtime_preference: RuntimeType | str | None = None,
        catalog: RuntimeCatalog | None = None,
        container_manager: ContainerManager | None = None,
        worktrees: WorktreeProvider | None = None,
        directories: DirectoryProvider | None = None,
        dependency_detector: Callable[[Path], str | None] | None = None,
        workspace_root: Path | str | None = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.project_path = Path(project_path).resolve()
        self._runner = runner or SubprocessRunner()
        self._default_strategy = WorkspaceStrategy(default_strategy) if default_strategy else None
        self._container_defaults = container_defaults
        self._default_cleanup = default_cleanup
        self._default_preserve = default_preserve_on_failure
        preference = RuntimeType(runtime_preference) if runtime_preference else None
        # An injected container manager keeps its own catalog and runtime preference.
        self._containers = container_manager or ContainerManager(
            catalog or RuntimeCatalog(self._runner), self._runner, runtime_preference=preference
        )
        self._worktrees = worktrees or GitWorktreeProvider(self.project_path, self._runner)
        self._directories = directories or LocalDirectoryProvider()
        self._detect_dependencies = dependency_detector or detect_install_command
        self._root = Path(workspace_root) if workspace_root else self.project_path / WORKSPACE_DIRNAME

        self._workspaces: dict[str, WorkspaceHandle] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    @classmethod
    def from_settings(cls, project_path: Path | str, settings: ProjectSettings, **kwargs: Any) -> WorkspaceManager:
        """Build a manager from loaded :class:`~taskspace.config.ProjectSettings`.

        Enables span export when the settings turn telemetry on.
        """
        if settings.telemetry and settings.telemetry.enabled:
            configure_telemetry(otlp_endpoint=settings.telemetry.otlp_endpoint)
        if "catalog" not in kwargs and "container_manager" not in kwargs:
            kwargs["catalog"] = RuntimeCatalog(kwargs.get("runner"), ttl=settings.cache_ttl)
        return cls(
            project_path,
            default_strategy=settings.default_strategy,
            container_defaults=settings.container,
            default_cleanup=settings.cleanup,
            default_preserve_on_failure=settings.preserve_on_failure,
            runtime_preference=settings.runtime,
            workspace_root=settings.workspace_root,
            **kwargs,
        )

    @property
    def container_manager(self) -> ContainerManager:
        return self._containers

    @asynccontextmanager
    async def _lock(self, task_id: str) -> AsyncIterator[None]:
        # The lock outlives its users only while the task holds a workspace.
        lock = self._locks.get(task_id)
        if lock is None:
            lock = self._locks[task_id] = asyncio.Lock()
        self._lock_users[task_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[task_id] -= 1
            if not self._lock_users[task_id] and task_id not in self._workspaces:
                del self._lock_users[task_id]
                del self._locks[task_id]

    def get_workspace(self, task_id: str) -> WorkspaceHandle | None:
        return self._workspaces.get(task_id)

    def list_workspaces(self) -> list[WorkspaceHandle]:
        return list(self._workspaces.values())

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_workspace(self, task_id: str, override: WorkspaceConfig | None = None) -> WorkspaceHandle:
        """Materialize the workspace for *task_id*.

        A failed container creation is reported on the returned handle
        (``success=False``) and the task is not tracked.

        Raises:
            RuntimeUnavailableError: Container strategy and no usable runtime.
            InvalidConfigError: The effective container config is invalid.
            WorkspaceError: The task already has a live workspace, or a
                worktree/directory provider failed.
        """
        async with self._lock(task_id):
            if task_id in self._workspaces:
                raise WorkspaceError(f"Workspace for task {task_id!r} already exists")

            strategy = override.strategy if override else (self._default_strategy or WorkspaceStrategy.NONE)
            cleanup = override.cleanup if override else self._default_cleanup
            preserve = self._default_preserve
            if override is not None and "preserve_on_failure" in override.model_fields_set:
                preserve = override.preserve_on_failure

            with _tracer.start_as_current_span("workspace.create") as span:
                span.set_attribute(ATTR_TASK_ID, task_id)
                span.set_attribute(ATTR_STRATEGY, strategy.value)

                if strategy is WorkspaceStrategy.CONTAINER:
                    handle = await self._create_container_workspace(task_id, override)
                elif strategy is WorkspaceStrategy.WORKTREE:
                    path = self._workspace_path(override, "worktrees", task_id)
                    path = await self._worktrees.create(task_id, path)
                    handle = WorkspaceHandle(task_id=task_id, strategy=strategy, path=path)
                elif strategy is WorkspaceStrategy.DIRECTORY:
                    path = self._workspace_path(override, "directories", task_id)
                    path = await self._directories.create(path)
                    handle = WorkspaceHandle(task_id=task_id, strategy=strategy, path=path)
                else:
                    handle = WorkspaceHandle(task_id=task_id, strategy=strategy, path=self.project_path)

                handle.cleanup = cleanup
                handle.preserve_on_failure = preserve
                span.set_attribute(ATTR_SUCCESS, handle.success)
                if handle.success:
                    self._workspaces[task_id] = handle
                    logger.info("Created %s workspace for task %s at %s", strategy.value, task_id, handle.path)
                else:
                    logger.warning("Workspace creation for task %s failed: %s", task_id, handle.error)
                return handle

    def _workspace_path(self, override: WorkspaceConfig | None, kind: str, task_id: str) -> Path:
        if override is not None and override.path:
            path = Path(override.path)
            return path if path.is_absolute() else self.project_path / path
        return self._root / kind / f"task-{task_id}"

    async def _create_container_workspace(self, task_id: str, override: WorkspaceConfig | None) -> WorkspaceHandle:
        config = merge_container_config(self._container_defaults, override.container if override else None)

        runtime = await self._containers.resolve_runtime()

        warnings: list[str] = []
        if not config.image and not (config.dockerfile or config.build_context):
            warning = (
                f"No container image configured; using default image '{DEFAULT_CONTAINER_IMAGE}'. "
                "Set container.image in the project or task configuration to choose one."
            )
            logger.warning("Task %s: %s", task_id, warning)
            warnings.append(warning)
            config = config.model_copy(update={"image": DEFAULT_CONTAINER_IMAGE})

        workdir = config.working_dir or DEFAULT_CONTAINER_WORKDIR
        config = config.model_copy(
            update={"working_dir": workdir, "volumes": {str(self.project_path): workdir, **config.volumes}}
        )

        result = await self._containers.create_container(config, task_id, auto_start=True)
        if not result.success:
            return WorkspaceHandle(
                task_id=task_id,
                strategy=WorkspaceStrategy.CONTAINER,
                path=self.project_path,
                success=False,
                error=result.error,
                runtime=runtime,
                container_config=config,
                warnings=warnings,
            )

        handle = WorkspaceHandle(
            task_id=task_id,
            strategy=WorkspaceStrategy.CONTAINER,
            path=self.project_path,
            container_id=result.container_id,
            runtime=runtime,
            container_config=config,
            warnings=warnings,
        )
        if config.auto_dependency_install:
            await self._install_dependencies(handle, config)
        return handle

    async def _install_dependencies(self, handle: WorkspaceHandle, config: ContainerConfig) -> None:
        command = config.custom_install_command or self._detect_dependencies(self.project_path)
        if not command or handle.container_id is None:
            logger.debug("No dependency install command for task %s", handle.task_id)
            return

        timeout = (config.install_timeout or DEFAULT_INSTALL_TIMEOUT_MS) / 1000
        options = ExecOptions(timeout=timeout, working_dir=config.working_dir)
        attempts = 1 + config.install_retries
        result: ExecResult | None = None
        for attempt in range(1, attempts + 1):
            result = await self._containers.exec_command(handle.container_id, command, options)
            if result.success:
                logger.info("Installed dependencies for task %s with %r", handle.task_id, command)
                return
            logger.warning(
                "Dependency install for task %s failed (attempt %d/%d): %s",
                handle.task_id,
                attempt,
                attempts,
                result.error,
            )
        assert result is not None
        handle.warnings.append(f"Dependency installation failed: {result.error or result.stderr}")

    # ------------------------------------------------------------------
    # Use
    # ------------------------------------------------------------------

    async def exec_in_workspace(
        self,
        task_id: str,
        command: str | list[str],
        timeout: float = 30.0,
    ) -> ExecResult:
        """Run *command* inside the task's workspace (its container, or on the host in its path)."""
        async with self._lock(task_id):
            handle = self._workspaces.get(task_id)
            if handle is None:
                raise WorkspaceError(f"No workspace for task {task_id!r}")

            if handle.strategy is WorkspaceStrategy.CONTAINER and handle.container_id:
                workdir = handle.container_config.working_dir if handle.container_config else None
                return await self._containers.exec_command(
                    handle.container_id, command, ExecOptions(timeout=timeout, working_dir=workdir)
                )

            script = command if isinstance(command, str) else shlex.join(command)
            argv = ["sh", "-c", f"cd {shlex.quote(str(handle.path))} && {script}"]
            rendered = shlex.join(argv)
            try:
                out = await self._runner.run(argv, timeout=timeout)
            except OSError as exc:
                return ExecResult(success=False, error=f"Failed to run command: {exc}", command=rendered)
            error = None
            if out.timed_out:
                error = f"Command timed out after {timeout:g}s"
            elif not out.ok:
                error = out.stderr or f"Command exited with code {out.returncode}"
            return ExecResult(
                success=out.ok,
                exit_code=out.returncode,
                stdout=out.stdout,
                stderr=out.stderr,
                error=error,
                command=rendered,
            )

    # ------------------------------------------------------------------
    # Dispose
    # ------------------------------------------------------------------

    async def dispose_workspace(
        self,
        task_id: str,
        outcome: TaskOutcome | str = TaskOutcome.SUCCESS,
    ) -> DisposeResult:
        """Apply cleanup policy and stop tracking *task_id*.

        A failed task whose workspace has ``preserve_on_failure`` keeps
        everything, whatever ``cleanup`` says.  Otherwise teardown runs only
        when ``cleanup`` is set.  Unknown tasks are a no-op.
        """
        outcome = TaskOutcome(outcome)
        async with self._lock(task_id):
            handle = self._workspaces.get(task_id)
            if handle is None:
                return DisposeResult(task_id=task_id, disposed=False)

            with _tracer.start_as_current_span("workspace.dispose") as span:
                span.set_attribute(ATTR_TASK_ID, task_id)
                span.set_attribute(ATTR_STRATEGY, handle.strategy.value)
                span.set_attribute(ATTR_OUTCOME, outcome.value)

                if outcome is TaskOutcome.FAILURE and handle.preserve_on_failure:
                    logger.info("Preserving workspace of failed task %s at %s", task_id, handle.path)
                    del self._workspaces[task_id]
                    return DisposeResult(task_id=task_id, disposed=False, preserved=True)
                if not handle.cleanup:
                    logger.debug("Cleanup disabled; leaving workspace of task %s", task_id)
                    del self._workspaces[task_id]
                    return DisposeResult(task_id=task_id, disposed=False)

                # A teardown that raises leaves the task tracked for a retry.
                result = await self._teardown(handle)
                del self._workspaces[task_id]
                span.set_attribute(ATTR_SUCCESS, result.success)
                return result

    async def _teardown(self, handle: WorkspaceHandle) -> DisposeResult:
        task_id = handle.task_id
        if handle.strategy is WorkspaceStrategy.CONTAINER and handle.container_id:
            with _tracer.start_as_current_span("workspace.teardown") as span:
                span.set_attribute(ATTR_CONTAINER_ID, handle.container_id)
                removed = await self._containers.remove_container(handle.container_id, force=True)
            if not removed.success:
                return DisposeResult(task_id=task_id, disposed=False, success=False, error=removed.error)
        elif handle.strategy is WorkspaceStrategy.WORKTREE:
            try:
                await self._worktrees.remove(handle.path)
            except WorkspaceError as exc:
                return DisposeResult(task_id=task_id, disposed=False, success=False, error=str(exc))
        elif handle.strategy is WorkspaceStrategy.DIRECTORY:
            try:
                await self._directories.remove(handle.path)
            except (WorkspaceError, OSError) as exc:
                return DisposeResult(task_id=task_id, disposed=False, success=False, error=str(exc))
        logger.info("Disposed %s workspace of task %s", handle.strategy.value, task_id)
        return DisposeResult(task_id=task_id, disposed=True)

    async def dispose_all(self, outcome: TaskOutcome | str = TaskOutcome.SUCCESS) -> list[DisposeResult]:
        """Dispose every tracked workspace concurrently."""
        task_ids = list(self._workspaces)
        return list(await asyncio.gather(*(self.dispose_workspace(t, outcome) for t in task_ids)))
