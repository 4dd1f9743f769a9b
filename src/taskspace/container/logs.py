"""ContainerLogStream: a live, structured view of ``<runtime> logs``.

Wraps a long-lived log subprocess and exposes each output line as a
:class:`LogEntry` in two ways that share one cancellation state:

* push: ``stream.on("data", callback)`` plus ``error``, ``exit`` and ``end``
  events;
* pull: ``async for entry in stream`` (single use), which terminates when
  the subprocess exits or :meth:`ContainerLogStream.end` is called.

Usage::

    async with ContainerLogStream("abc123", LogStreamOptions(follow=True, tail=100)) as stream:
        async for entry in stream:
            print(entry.stream, entry.message)
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from taskspace.errors import LogStreamError
from taskspace.runtime.models import RuntimeType

logger = logging.getLogger(__name__)

LogEvent = Literal["data", "error", "exit", "end"]
LOG_EVENTS: tuple[LogEvent, ...] = ("data", "error", "exit", "end")

DEFAULT_BUFFER_SIZE = 10_000
_TERMINATE_GRACE = 5.0
_DRAIN_CHUNK = 65536

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})"
    r"(?:[T ](\d{2}:\d{2}(?::\d{2})?)(?:\.(\d+))?)?"
    r"(Z|[+-]\d{2}:?\d{2})?$"
)


class LogStreamOptions(BaseModel):
    """What to ask the runtime for.  ``stdout``/``stderr`` select channels."""

    follow: bool = False
    timestamps: bool = False
    tail: int | Literal["all"] | None = Field(default=None, description="Only the last N lines.")
    since: datetime | str | None = None
    until: datetime | str | None = None
    stdout: bool = True
    stderr: bool = True


class LogEntry(BaseModel):
    """One line of container output."""

    message: str
    stream: Literal["stdout", "stderr"]
    raw: str
    timestamp: datetime | None = None


def parse_timestamp(text: str) -> datetime | None:
    """Parse an RFC 3339 instant (nanosecond precision allowed) into an aware datetime."""
    match = _TIMESTAMP_RE.match(text.strip())
    if not match:
        return None
    date, clock, fraction, offset = match.groups()
    clock = clock or "00:00:00"
    if clock.count(":") == 1:
        clock += ":00"
    micros = (fraction or "")[:6].ljust(6, "0")
    if not offset or offset == "Z":
        offset = "+00:00"
    elif ":" not in offset:
        offset = f"{offset[:3]}:{offset[3:]}"
    try:
        return datetime.fromisoformat(f"{date}T{clock}.{micros}{offset}")
    except ValueError:
        return None


def format_instant(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. ``2024-01-01T12:00:00.000Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond // 1000:03d}Z"


def normalize_time(value: datetime | str | int | float) -> str:
    """Concrete instants become ISO-8601; relative expressions like ``"1h"`` pass through."""
    if isinstance(value, datetime):
        return format_instant(value)
    if isinstance(value, (int, float)):
        return str(value)
    parsed = parse_timestamp(value)
    if parsed is not None:
        return format_instant(parsed)
    return value.strip()


def build_logs_command(runtime: RuntimeType | str, container_id: str, options: LogStreamOptions) -> list[str]:
    """``<rt> logs [--follow] [--timestamps] [--tail N] [--since T] [--until T] <id>``."""
    cmd = [RuntimeType(runtime).value, "logs"]
    if options.follow:
        cmd.append("--follow")
    if options.timestamps:
        cmd.append("--timestamps")
    if options.tail is not None:
        cmd.extend(["--tail", str(options.tail)])
    if options.since is not None:
        cmd.extend(["--since", normalize_time(options.since)])
    if options.until is not None:
        cmd.extend(["--until", normalize_time(options.until)])
    cmd.append(container_id)
    return cmd


def parse_log_line(line: str, stream: Literal["stdout", "stderr"], *, timestamps: bool) -> LogEntry:
    """Build a :class:`LogEntry`; a bad timestamp degrades to the raw line."""
    if timestamps:
        token, _, rest = line.partition(" ")
        ts = parse_timestamp(token)
        if ts is not None:
            return LogEntry(message=rest, stream=stream, raw=line, timestamp=ts)
    return LogEntry(message=line, stream=stream, raw=line)


class ContainerLogStream:
    """Cancellable log subprocess exposed as events and as an async iterator."""

    def __init__(
        self,
        container_id: str,
        options: LogStreamOptions | None = None,
        runtime_type: RuntimeType | str = RuntimeType.DOCKER,
        *,
        spawner: Callable[..., Any] | None = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ) -> None:
        runtime = RuntimeType(runtime_type)
        if runtime is RuntimeType.NONE:
            msg = "ContainerLogStream requires a container runtime"
            raise ValueError(msg)
        self.container_id = container_id
        self.options = options or LogStreamOptions()
        self.runtime_type = runtime
        self.command = build_logs_command(runtime, container_id, self.options)
        self.is_active = False
        self.exit_code: int | None = None
        self.last_error: LogStreamError | None = None
        self.entry_count = 0

        self._spawner = spawner or asyncio.create_subprocess_exec
        self._listeners: dict[str, list[Callable[..., Any]]] = {event: [] for event in LOG_EVENTS}
        self._queue: asyncio.Queue[LogEntry | None] = asyncio.Queue()
        self._buffer_size = buffer_size
        self._process: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task[None]] = []
        self._watcher: asyncio.Task[None] | None = None
        self._started = False
        self._ended = False
        self._iterated = False

    # -- events ------------------------------------------------------------

    def on(self, event: LogEvent, callback: Callable[..., Any]) -> None:
        """Register *callback* for ``data``, ``error``, ``exit`` or ``end``."""
        if event not in self._listeners:
            msg = f"Unknown log stream event: {event!r}"
            raise ValueError(msg)
        self._listeners[event].append(callback)

    def off(self, event: LogEvent, callback: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def _emit(self, event: LogEvent, *args: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception:
                logger.exception("Log stream %r listener failed for %s", event, self.container_id)

    # -- lifecycle ---------------------------------------------------------

    @property
    def ended(self) -> bool:
        return self._ended

    async def start(self) -> ContainerLogStream:
        """Spawn the log subprocess.  Spawn failure emits ``error`` and ends the stream."""
        if self._started or self._ended:
            return self
        self._started = True
        logger.debug("Streaming logs: %s", " ".join(self.command))
        try:
            self._process = await self._spawner(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            self.last_error = LogStreamError(self.container_id, str(exc))
            logger.warning("%s", self.last_error)
            self._emit("error", self.last_error)
            self._finish()
            return self

        self.is_active = True
        proc = self._process
        if self.options.stdout and proc.stdout is not None:
            self._readers.append(asyncio.create_task(self._pump(proc.stdout, "stdout")))
        elif proc.stdout is not None:
            self._readers.append(asyncio.create_task(self._drain(proc.stdout)))
        if self.options.stderr and proc.stderr is not None:
            self._readers.append(asyncio.create_task(self._pump(proc.stderr, "stderr")))
        elif proc.stderr is not None:
            self._readers.append(asyncio.create_task(self._drain(proc.stderr)))
        self._watcher = asyncio.create_task(self._watch())
        return self

    def end(self) -> None:
        """Terminate the subprocess and stop delivering entries.  Idempotent.

        Safe to call from inside a ``data`` listener.  Use :meth:`aclose` to
        also wait for the child to be reaped.
        """
        if self._ended:
            return
        proc = self._process
        if proc is not None and proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
        current = asyncio.current_task() if self._readers or self._watcher else None
        for task in [*self._readers, self._watcher]:
            if task is not None and task is not current and not task.done():
                task.cancel()
        # Entries not yet consumed are dropped: nothing is delivered after end().
        while not self._queue.empty():
            self._queue.get_nowait()
        self._finish()

    async def aclose(self) -> None:
        """:meth:`end` the stream and wait for the subprocess to exit."""
        self.end()
        proc = self._process
        if proc is None or proc.returncode is not None:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_GRACE)
        except TimeoutError:
            logger.warning("Log subprocess for %s ignored SIGTERM; killing", self.container_id)
            proc.kill()
            await proc.wait()

    async def __aenter__(self) -> ContainerLogStream:
        return await self.start()

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    def __aiter__(self) -> AsyncIterator[LogEntry]:
        if self._iterated:
            msg = "ContainerLogStream can only be iterated once"
            raise RuntimeError(msg)
        self._iterated = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[LogEntry]:
        if not self._started:
            await self.start()
        while True:
            entry = await self._queue.get()
            if entry is None:
                return
            yield entry

    # -- internals ---------------------------------------------------------

    def _finish(self) -> None:
        if self._ended:
            return
        self._ended = True
        self.is_active = False
        self._queue.put_nowait(None)
        self._emit("end")

    def _deliver(self, entry: LogEntry) -> None:
        if self._ended:
            return
        if self._queue.qsize() >= self._buffer_size:
            self._queue.get_nowait()
        self.entry_count += 1
        self._queue.put_nowait(entry)
        self._emit("data", entry)

    async def _pump(self, reader: asyncio.StreamReader, stream: Literal["stdout", "stderr"]) -> None:
        # A line past the reader limit yields one entry from its first chunk; the rest is skipped.
        skipping = False
        while not self._ended:
            at_eof = False
            try:
                raw = await reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as exc:
                raw, at_eof = exc.partial, True
            except asyncio.LimitOverrunError as exc:
                chunk = await reader.read(max(exc.consumed, 1))
                if not skipping:
                    skipping = True
                    logger.debug("Truncating oversized %s line from %s", stream, self.container_id)
                    self._deliver_raw(chunk, stream)
                continue
            if skipping:
                skipping = False
            elif raw:
                self._deliver_raw(raw, stream)
            if at_eof:
                return

    def _deliver_raw(self, raw: bytes, stream: Literal["stdout", "stderr"]) -> None:
        line = raw.decode(errors="replace").rstrip("\r\n")
        if line.strip():
            self._deliver(parse_log_line(line, stream, timestamps=self.options.timestamps))

    @staticmethod
    async def _drain(reader: asyncio.StreamReader) -> None:
        # Deselected channel: keep reading so the child never blocks on a full pipe.
        while await reader.read(_DRAIN_CHUNK):
            pass

    async def _watch(self) -> None:
        results = await asyncio.gather(*self._readers, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not self._ended:
                self.last_error = LogStreamError(self.container_id, f"reading output failed: {result}")
                logger.warning("%s", self.last_error)
                self._emit("error", self.last_error)
        assert self._process is not None
        code = await self._process.wait()
        if self._ended:
            return
        self.exit_code = code
        if code != 0:
            logger.warning("Log subprocess for %s exited with code %s", self.container_id, code)
        self._emit("exit", code)
        self._finish()
