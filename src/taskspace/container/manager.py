"""ContainerManager: drives task containers through the runtime CLI.

Every runtime call goes through the injected :class:`CommandRunner`, so the
manager never talks to a daemon API directly.  Validation and runtime
availability problems are raised; expected command failures are returned
as result models carrying ``error`` and a best-effort :class:`FailureKind`.
"""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from taskspace.container.commands import (
    build_build_command,
    build_create_command,
    build_exec_command,
    build_inspect_command,
    build_stats_command,
)
from taskspace.container.logs import ContainerLogStream, LogStreamOptions, parse_timestamp
from taskspace.container.models import (
    ContainerConfig,
    ContainerInfo,
    ContainerOperationResult,
    ContainerStats,
    ContainerStatus,
    ExecOptions,
    ExecResult,
    FailureKind,
    can_transition,
)
from taskspace.container.stats import parse_stats_output
from taskspace.container.validation import validate_container_config
from taskspace.errors import RuntimeUnavailableError, StatsUnavailableError
from taskspace.process import CommandOutput, CommandRunner, SubprocessRunner
from taskspace.runtime.catalog import INSTALL_REMEDIATION, NO_RUNTIME_DETAIL, RuntimeCatalog
from taskspace.runtime.models import RuntimeType
from taskspace.utils.telemetry import (
    ATTR_CONTAINER_ID,
    ATTR_FAILURE_KIND,
    ATTR_IMAGE,
    ATTR_RUNTIME,
    ATTR_SUCCESS,
    ATTR_TASK_ID,
    get_tracer,
)

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

MANAGED_LABEL = "taskspace.managed"
TASK_LABEL = "taskspace.task-id"
DEFAULT_PREFIX = "taskspace"

_CREATE_TIMEOUT = 300.0
_BUILD_TIMEOUT = 1800.0
_COMMAND_TIMEOUT = 60.0
_STOP_GRACE = 30.0

_NAME_UNSAFE = re.compile(r"[^a-z0-9_.-]+")
_OOM_WORDS = re.compile(r"\boom\b|oomkilled|out of memory|memory limit|cannot allocate memory")
_PROCESS_WORDS = re.compile(r"process limit|pids|resource temporarily unavailable|fork: retry")
_NOT_FOUND_WORDS = re.compile(r"no such container|no such object|executable file not found")
_DAEMON_WORDS = re.compile(r"cannot connect to the docker daemon|is the docker daemon running|podman.sock")

# Podman reports a few states docker does not have.
_STATUS_ALIASES = {"configured": ContainerStatus.CREATED, "stopped": ContainerStatus.EXITED}

_LIMIT_PREFIXES = {
    FailureKind.MEMORY_LIMIT: "Container memory limit exceeded",
    FailureKind.PROCESS_LIMIT: "Container process limit reached",
}

_PS_FORMAT = '{{.ID}}|{{.Names}}|{{.Image}}|{{.State}}|{{.Label "' + TASK_LABEL + '"}}'


def classify_failure(out: CommandOutput) -> FailureKind:
    """Best-effort mapping of a failed command to a :class:`FailureKind`.

    CPU throttling never fails a command, so it has no kind of its own.
    """
    if out.timed_out:
        return FailureKind.TIMEOUT
    text = f"{out.stderr}\n{out.stdout}".lower()
    if out.returncode == 137 or _OOM_WORDS.search(text):
        return FailureKind.MEMORY_LIMIT
    if _PROCESS_WORDS.search(text):
        return FailureKind.PROCESS_LIMIT
    if out.returncode == 127 or _NOT_FOUND_WORDS.search(text):
        return FailureKind.NOT_FOUND
    if _DAEMON_WORDS.search(text):
        return FailureKind.RUNTIME_UNAVAILABLE
    return FailureKind.GENERIC


def _error_text(out: CommandOutput, default: str) -> str:
    return out.stderr.strip() or out.stdout.strip() or f"{default} (exit code {out.returncode})"


def _parse_time(value: str) -> datetime | None:
    parsed = parse_timestamp(value)
    # The zero time means "never" (e.g. FinishedAt of a running container).
    if parsed is None or parsed.year <= 1:
        return None
    return parsed


def _parse_status(value: str) -> ContainerStatus:
    value = value.strip().lower()
    if value in _STATUS_ALIASES:
        return _STATUS_ALIASES[value]
    return ContainerStatus(value)


class ContainerManager:
    """Lifecycle operations on task containers plus an in-memory registry.

    The registry maps container id to its last known :class:`ContainerInfo`.
    It is only touched from the event loop, between subprocess awaits.
    """

    def __init__(
        self,
        catalog: RuntimeCatalog | None = None,
        runner: CommandRunner | None = None,
        *,
        prefix: str = DEFAULT_PREFIX,
        runtime_preference: RuntimeType | str | None = None,
        log_spawner: Callable[..., Any] | None = None,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._catalog = catalog or RuntimeCatalog(self._runner)
        self._prefix = prefix
        self._preference = RuntimeType(runtime_preference) if runtime_preference else None
        self._log_spawner = log_spawner
        self._containers: dict[str, ContainerInfo] = {}

    @property
    def containers(self) -> dict[str, ContainerInfo]:
        """Snapshot of the registry."""
        return dict(self._containers)

    # ------------------------------------------------------------------
    # Naming / lookup
    # ------------------------------------------------------------------

    def generate_container_name(self, task_id: str) -> str:
        """``<prefix>-<task id>`` reduced to characters the runtimes accept."""
        safe = _NAME_UNSAFE.sub("-", task_id.lower()).strip("-._") or "task"
        return f"{self._prefix}-{safe}"

    def get_task_container(self, task_id: str) -> ContainerInfo | None:
        for info in self._containers.values():
            if info.task_id == task_id:
                return info
        return None

    def _lookup(self, container_id: str) -> str | None:
        """Resolve a full id, short id prefix or name to a registry key."""
        if container_id in self._containers:
            return container_id
        for key, info in self._containers.items():
            if key.startswith(container_id) or info.name == container_id:
                return key
        return None

    async def resolve_runtime(self) -> RuntimeType:
        """The runtime every command of this manager uses.

        Raises :class:`RuntimeUnavailableError` when none is installed.
        """
        runtime = await self._catalog.get_best_runtime(self._preference)
        if runtime is RuntimeType.NONE:
            raise RuntimeUnavailableError(NO_RUNTIME_DETAIL, INSTALL_REMEDIATION)
        return runtime

    def _set_status(self, key: str, status: ContainerStatus, **updates: Any) -> None:
        info = self._containers.get(key)
        if info is None:
            return
        if not can_transition(info.status, status):
            logger.warning(
                "Container %s observed %s -> %s; adopting observed state",
                key,
                info.status.value,
                status.value,
            )
        self._containers[key] = info.model_copy(update={"status": status, **updates})

    # ------------------------------------------------------------------
    # Create / start / stop / remove
    # ------------------------------------------------------------------

    async def create_container(
        self,
        config: ContainerConfig,
        task_id: str,
        *,
        auto_start: bool = False,
        name_override: str | None = None,
    ) -> ContainerOperationResult:
        """Create (and with *auto_start*, start) a container for *task_id*.

        Raises
        ------
        InvalidConfigError
            Before any command runs, if *config* is invalid.
        RuntimeUnavailableError
            If no container runtime is usable.
        """
        validate_container_config(config)
        runtime = await self.resolve_runtime()
        name = name_override or self.generate_container_name(task_id)

        with _tracer.start_as_current_span("container.create") as span:
            span.set_attribute(ATTR_RUNTIME, runtime.value)
            span.set_attribute(ATTR_TASK_ID, task_id)

            image = config.image
            if config.dockerfile or config.build_context:
                built = await self._build_image(runtime, config, task_id)
                if not built.success:
                    span.set_attribute(ATTR_SUCCESS, False)
                    return built
                image = built.output
            span.set_attribute(ATTR_IMAGE, image or "")

            argv = build_create_command(
                runtime.value,
                config,
                name,
                start=auto_start,
                extra_labels={MANAGED_LABEL: "true", TASK_LABEL: task_id},
                image=image,
            )
            command = shlex.join(argv)
            logger.debug("Creating container: %s", command)

            try:
                out = await self._runner.run(argv, timeout=_CREATE_TIMEOUT)
            except OSError as exc:
                span.set_attribute(ATTR_SUCCESS, False)
                return ContainerOperationResult(
                    success=False,
                    error=f"Failed to run {runtime.value}: {exc}",
                    failure_kind=FailureKind.RUNTIME_UNAVAILABLE,
                    command=command,
                )

            if not out.ok:
                kind = classify_failure(out)
                span.set_attribute(ATTR_SUCCESS, False)
                span.set_attribute(ATTR_FAILURE_KIND, kind.value)
                logger.warning("Container creation for task %s failed: %s", task_id, _error_text(out, "create"))
                return ContainerOperationResult(
                    success=False,
                    error=_error_text(out, "Container creation failed"),
                    failure_kind=kind,
                    command=command,
                    output=out.stdout,
                )

            lines = [line for line in out.stdout.splitlines() if line.strip()]
            container_id = lines[-1].strip() if lines else name
            now = datetime.now(UTC)
            info = ContainerInfo(
                id=container_id,
                name=name,
                image=image or "",
                status=ContainerStatus.RUNNING if auto_start else ContainerStatus.CREATED,
                created_at=now,
                started_at=now if auto_start else None,
                task_id=task_id,
                auto_remove=config.auto_remove,
            )
            self._containers[container_id] = info
            span.set_attribute(ATTR_CONTAINER_ID, container_id)
            span.set_attribute(ATTR_SUCCESS, True)
            logger.info("Created container %s (%s) for task %s", name, container_id[:12], task_id)
            return ContainerOperationResult(
                success=True,
                container_id=container_id,
                container_info=info,
                command=command,
                output=out.stdout,
            )

    async def _build_image(
        self, runtime: RuntimeType, config: ContainerConfig, task_id: str
    ) -> ContainerOperationResult:
        """Build from ``dockerfile``/``build_context``; on success ``output`` is the tag."""
        tag = config.image_tag or f"{self.generate_container_name(task_id)}:latest"
        argv = build_build_command(runtime.value, tag, config.build_context or ".", config.dockerfile)
        command = shlex.join(argv)
        logger.info("Building image %s for task %s", tag, task_id)
        with _tracer.start_as_current_span("container.build") as span:
            span.set_attribute(ATTR_IMAGE, tag)
            try:
                out = await self._runner.run(argv, timeout=_BUILD_TIMEOUT)
            except OSError as exc:
                return ContainerOperationResult(
                    success=False,
                    error=f"Failed to run {runtime.value}: {exc}",
                    failure_kind=FailureKind.RUNTIME_UNAVAILABLE,
                    command=command,
                )
            if not out.ok:
                return ContainerOperationResult(
                    success=False,
                    error=f"Image build failed: {_error_text(out, 'build')}",
                    failure_kind=classify_failure(out),
                    command=command,
                )
            return ContainerOperationResult(success=True, command=command, output=tag)

    async def _run_action(
        self,
        action: str,
        argv: list[str],
        container_id: str,
        *,
        timeout: float = _COMMAND_TIMEOUT,
    ) -> ContainerOperationResult:
        command = shlex.join(argv)
        try:
            out = await self._runner.run(argv, timeout=timeout)
        except OSError as exc:
            return ContainerOperationResult(
                success=False,
                container_id=container_id,
                error=f"Failed to run {argv[0]}: {exc}",
                failure_kind=FailureKind.RUNTIME_UNAVAILABLE,
                command=command,
            )
        if not out.ok:
            return ContainerOperationResult(
                success=False,
                container_id=container_id,
                error=_error_text(out, f"{action} failed"),
                failure_kind=classify_failure(out),
                command=command,
                output=out.stdout,
            )
        return ContainerOperationResult(success=True, container_id=container_id, command=command, output=out.stdout)

    async def start_container(self, container_id: str) -> ContainerOperationResult:
        runtime = await self.resolve_runtime()
        result = await self._run_action("start", [runtime.value, "start", container_id], container_id)
        key = self._lookup(container_id)
        if result.success and key is not None:
            self._set_status(key, ContainerStatus.RUNNING, started_at=datetime.now(UTC))
        return result

    async def stop_container(self, container_id: str, timeout: int = 10) -> ContainerOperationResult:
        """``stop -t <timeout>``; auto-remove containers leave the registry."""
        runtime = await self.resolve_runtime()
        argv = [runtime.value, "stop", "-t", str(timeout), container_id]
        result = await self._run_action("stop", argv, container_id, timeout=timeout + _STOP_GRACE)
        key = self._lookup(container_id)
        if result.success and key is not None:
            if self._containers[key].auto_remove:
                self._containers.pop(key)
            else:
                self._set_status(key, ContainerStatus.EXITED, finished_at=datetime.now(UTC))
        return result

    async def remove_container(self, container_id: str, *, force: bool = False) -> ContainerOperationResult:
        """Stop (if running) and remove.  Removing a missing container succeeds."""
        runtime = await self.resolve_runtime()
        key = self._lookup(container_id)

        with _tracer.start_as_current_span("container.remove") as span:
            span.set_attribute(ATTR_CONTAINER_ID, container_id)
            span.set_attribute(ATTR_RUNTIME, runtime.value)

            info = self._containers.get(key) if key is not None else None
            if info is not None and info.status is ContainerStatus.RUNNING and not force:
                stopped = await self.stop_container(container_id)
                if not stopped.success:
                    logger.warning("Stopping %s before removal failed: %s", container_id, stopped.error)
                key = self._lookup(container_id)
            if key is not None:
                self._set_status(key, ContainerStatus.REMOVING)

            argv = [runtime.value, "rm"]
            if force:
                argv.append("-f")
            argv.append(container_id)
            result = await self._run_action("remove", argv, container_id)

            if not result.success and result.failure_kind is FailureKind.NOT_FOUND:
                logger.debug("Container %s already gone", container_id)
                result = ContainerOperationResult(success=True, container_id=container_id, command=result.command)

            span.set_attribute(ATTR_SUCCESS, result.success)
            if result.success:
                if key is not None:
                    self._containers.pop(key, None)
                logger.info("Removed container %s", container_id)
            else:
                logger.warning("Failed to remove container %s: %s", container_id, result.error)
            return result

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def get_container_info(self, container_id: str) -> ContainerInfo | None:
        """Refresh one container from ``inspect``; ``None`` if the runtime does not know it."""
        runtime = await self.resolve_runtime()
        key = self._lookup(container_id)
        argv = build_inspect_command(runtime.value, container_id)
        try:
            out = await self._runner.run(argv, timeout=_COMMAND_TIMEOUT)
        except OSError as exc:
            logger.warning("Failed to inspect %s: %s", container_id, exc)
            return self._containers.get(key) if key is not None else None

        if not out.ok:
            if classify_failure(out) is FailureKind.NOT_FOUND:
                if key is not None:
                    self._containers.pop(key, None)
                return None
            logger.warning("Failed to inspect %s: %s", container_id, _error_text(out, "inspect"))
            return self._containers.get(key) if key is not None else None

        fields = out.stdout.strip().splitlines()[-1].split("|") if out.stdout.strip() else []
        if len(fields) < 9:
            logger.warning("Unrecognized inspect output for %s: %r", container_id, out.stdout)
            return self._containers.get(key) if key is not None else None

        full_id, name, image, status, created, started, finished, exit_code, auto_remove = (
            f.strip() for f in fields[:9]
        )
        try:
            observed = _parse_status(status)
        except ValueError:
            logger.warning("Unknown container status %r for %s", status, container_id)
            return self._containers.get(key) if key is not None else None

        previous = self._containers.get(key) if key is not None else None
        info = ContainerInfo(
            id=full_id,
            name=name.lstrip("/"),
            image=image,
            status=observed,
            created_at=_parse_time(created) or (previous.created_at if previous else datetime.now(UTC)),
            started_at=_parse_time(started),
            finished_at=_parse_time(finished),
            exit_code=int(exit_code) if exit_code.lstrip("-").isdigit() else None,
            task_id=previous.task_id if previous else None,
            stats=previous.stats if previous else None,
            auto_remove=auto_remove.lower() == "true",
        )
        if previous is not None:
            if not can_transition(previous.status, observed):
                logger.warning(
                    "Container %s observed %s -> %s; adopting observed state",
                    container_id,
                    previous.status.value,
                    observed.value,
                )
            if key != full_id:
                self._containers.pop(key, None)
            self._containers[full_id] = info
        return info

    async def list_managed_containers(self, include_exited: bool = False) -> list[ContainerInfo]:
        """Containers carrying the management label, running only unless *include_exited*."""
        runtime = await self.resolve_runtime()
        argv = [runtime.value, "ps"]
        if include_exited:
            argv.append("-a")
        argv.extend(["--filter", f"label={MANAGED_LABEL}=true", "--format", _PS_FORMAT])
        try:
            out = await self._runner.run(argv, timeout=_COMMAND_TIMEOUT)
        except OSError as exc:
            logger.warning("Failed to list containers: %s", exc)
            return []
        if not out.ok:
            logger.warning("Failed to list containers: %s", _error_text(out, "ps"))
            return []

        results: list[ContainerInfo] = []
        for line in out.stdout.splitlines():
            fields = [f.strip() for f in line.split("|")]
            if len(fields) < 4 or not fields[0]:
                continue
            short_id, name, image, status = fields[:4]
            task_id = fields[4] if len(fields) > 4 and fields[4] and fields[4] != "<no value>" else None
            try:
                observed = _parse_status(status)
            except ValueError:
                logger.debug("Skipping %s with unknown status %r", short_id, status)
                continue
            key = self._lookup(short_id)
            known = self._containers.get(key) if key is not None else None
            if known is not None:
                results.append(known.model_copy(update={"status": observed}))
            else:
                results.append(
                    ContainerInfo(
                        id=short_id,
                        name=name,
                        image=image,
                        status=observed,
                        created_at=datetime.now(UTC),
                        task_id=task_id,
                    )
                )
        return results

    # ------------------------------------------------------------------
    # Exec / stats / logs
    # ------------------------------------------------------------------

    async def exec_command(
        self,
        container_id: str,
        command: str | list[str],
        options: ExecOptions | None = None,
    ) -> ExecResult:
        """Run *command* inside the container.

        A string runs through ``sh -c``; a list runs as-is.  Non-zero exits
        and timeouts are returned with ``success=False``, never raised.
        """
        opts = options or ExecOptions()
        runtime = await self.resolve_runtime()
        argv = build_exec_command(runtime.value, container_id, command, opts)
        rendered = shlex.join(argv)

        with _tracer.start_as_current_span("container.exec") as span:
            span.set_attribute(ATTR_CONTAINER_ID, container_id)
            logger.debug("Exec: %s", rendered)
            try:
                out = await self._runner.run(argv, timeout=opts.timeout)
            except OSError as exc:
                span.set_attribute(ATTR_SUCCESS, False)
                return ExecResult(
                    success=False,
                    error=f"Failed to run {runtime.value}: {exc}",
                    failure_kind=FailureKind.RUNTIME_UNAVAILABLE,
                    command=rendered,
                )

            if out.ok:
                span.set_attribute(ATTR_SUCCESS, True)
                return ExecResult(
                    success=True,
                    exit_code=out.returncode,
                    stdout=out.stdout,
                    stderr=out.stderr,
                    command=rendered,
                )

            kind = classify_failure(out)
            span.set_attribute(ATTR_SUCCESS, False)
            span.set_attribute(ATTR_FAILURE_KIND, kind.value)
            if out.timed_out:
                error = f"Command timed out after {opts.timeout:g}s"
            else:
                error = out.stderr.strip() or f"Command exited with code {out.returncode}"
            if kind in _LIMIT_PREFIXES:
                error = f"{_LIMIT_PREFIXES[kind]}: {error}"
            return ExecResult(
                success=False,
                exit_code=out.returncode,
                stdout=out.stdout,
                stderr=out.stderr,
                error=error,
                failure_kind=kind,
                command=rendered,
            )

    async def get_stats(self, container_id: str) -> ContainerStats:
        """One-shot resource sample; also stored on the registry entry.

        Raises
        ------
        StatsUnavailableError
            If the command fails or prints no recognizable row.
        """
        runtime = await self.resolve_runtime()
        argv = build_stats_command(runtime.value, container_id)
        with _tracer.start_as_current_span("container.stats") as span:
            span.set_attribute(ATTR_CONTAINER_ID, container_id)
            try:
                out = await self._runner.run(argv, timeout=_COMMAND_TIMEOUT)
            except OSError as exc:
                raise StatsUnavailableError(str(exc), FailureKind.RUNTIME_UNAVAILABLE) from exc
            if not out.ok:
                raise StatsUnavailableError(_error_text(out, "stats failed"), classify_failure(out))

            stats = parse_stats_output(out.stdout)
            if stats is None:
                raise StatsUnavailableError(f"unrecognized stats output for {container_id}")

            key = self._lookup(container_id)
            if key is not None:
                self._containers[key] = self._containers[key].model_copy(update={"stats": stats})
            return stats

    async def stream_logs(self, container_id: str, options: LogStreamOptions | None = None) -> ContainerLogStream:
        """Return a started :class:`ContainerLogStream` for *container_id*."""
        runtime = await self.resolve_runtime()
        stream = ContainerLogStream(container_id, options, runtime, spawner=self._log_spawner)
        return await stream.start()
