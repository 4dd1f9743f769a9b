"""Shared fakes: a scripted CommandRunner and a scripted log subprocess."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from taskspace.process import CommandOutput

DOCKER_VERSION = "Docker version 24.0.7, build afdd53b"
PODMAN_VERSION = "podman version 4.9.3"


class FakeRunner:
    """:class:`CommandRunner` that answers from rules matched by argv prefix.

    The most recently added matching rule wins.  A rule's responses are
    consumed in order; the last one repeats.  Unmatched commands succeed
    with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.timeouts: list[float | None] = []
        self._rules: list[tuple[tuple[str, ...], list[CommandOutput | BaseException]]] = []

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = "",
           timed_out: bool = False, exc: BaseException | None = None) -> FakeRunner:
        response: CommandOutput | BaseException = exc or CommandOutput(
            returncode, stdout, stderr, timed_out=timed_out
        )
        self._rules.append((prefix, [response]))
        return self

    def sequence(self, *prefix: str, responses: list[CommandOutput | BaseException]) -> FakeRunner:
        self._rules.append((prefix, list(responses)))
        return self

    def with_docker(self) -> FakeRunner:
        self.on("docker", "--version", stdout=DOCKER_VERSION)
        self.on("docker", "info", stdout="Server Version: 24.0.7")
        self.on("podman", exc=FileNotFoundError(2, "No such file or directory", "podman"))
        return self

    def with_podman_only(self) -> FakeRunner:
        self.on("docker", exc=FileNotFoundError(2, "No such file or directory", "docker"))
        self.on("podman", "--version", stdout=PODMAN_VERSION)
        self.on("podman", "info", stdout="host: {}")
        return self

    def without_runtimes(self) -> FakeRunner:
        self.on("docker", exc=FileNotFoundError(2, "No such file or directory", "docker"))
        self.on("podman", exc=FileNotFoundError(2, "No such file or directory", "podman"))
        return self

    def calls_to(self, *prefix: str) -> list[list[str]]:
        return [c for c in self.calls if c[: len(prefix)] == list(prefix)]

    async def run(self, argv: list[str], *, timeout: float | None = None) -> CommandOutput:
        self.calls.append(list(argv))
        self.timeouts.append(timeout)
        for prefix, responses in reversed(self._rules):
            if argv[: len(prefix)] == list(prefix):
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(response, BaseException):
                    raise response
                return response
        return CommandOutput()


class FakeLogProcess:
    """Stand-in for :class:`asyncio.subprocess.Process` fed from lists of lines."""

    def __init__(self, stdout: list[bytes] | None = None, stderr: list[bytes] | None = None,
                 returncode: int = 0, *, hold_open: bool = False) -> None:
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode: int | None = None
        self.terminated = False
        self._exit_code = returncode
        self._done = asyncio.Event()
        for line in stdout or []:
            self.stdout.feed_data(line)
        for line in stderr or []:
            self.stderr.feed_data(line)
        if not hold_open:
            self.finish()

    def feed(self, line: bytes, stream: str = "stdout") -> None:
        getattr(self, stream).feed_data(line)

    def finish(self, returncode: int | None = None) -> None:
        if returncode is not None:
            self._exit_code = returncode
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._done.set()

    def terminate(self) -> None:
        self.terminated = True
        self.finish(-15)

    def kill(self) -> None:
        self.terminate()

    async def wait(self) -> int:
        await self._done.wait()
        self.returncode = self._exit_code
        return self._exit_code


class FakeSpawner:
    """Records the argv of each spawn and hands out a prepared process."""

    def __init__(self, process: FakeLogProcess | None = None, exc: BaseException | None = None) -> None:
        self.process = process
        self.exc = exc
        self.argv: list[str] | None = None

    async def __call__(self, *argv: str, **kwargs: Any) -> FakeLogProcess:
        self.argv = list(argv)
        if self.exc is not None:
            raise self.exc
        assert self.process is not None
        return self.process


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def docker_runner() -> FakeRunner:
    return FakeRunner().with_docker()
