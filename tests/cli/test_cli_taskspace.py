"""Tests for the ``taskspace`` CLI commands."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from taskspace.cli import main
from taskspace.container.logs import LogEntry, LogStreamOptions
from taskspace.container.models import ContainerStats, FailureKind
from taskspace.errors import RuntimeUnavailableError, StatsUnavailableError
from taskspace.runtime.models import RuntimeDescriptor, RuntimeType

_DESCRIPTORS = [
    RuntimeDescriptor(
        type=RuntimeType.DOCKER,
        available=True,
        version="24.0.7",
        full_version="Docker version 24.0.7, build afdd53b",
    ),
    RuntimeDescriptor(type=RuntimeType.PODMAN, available=False, error="podman is not installed"),
]


class FakeStream:
    def __init__(self, messages: list[str], exit_code: int | None = 0) -> None:
        self._messages = messages
        self.exit_code = exit_code
        self.last_error = None
        self.closed = False

    def __aiter__(self) -> AsyncIterator[LogEntry]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[LogEntry]:
        for message in self._messages:
            yield LogEntry(message=message, stream="stdout", raw=message)

    async def aclose(self) -> None:
        self.closed = True


def test_version() -> None:
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


class TestRuntimes:
    def test_table(self) -> None:
        with patch("taskspace.cli_commands.runtimes.RuntimeCatalog") as catalog_cls:
            catalog = catalog_cls.return_value
            catalog.detect_runtimes = AsyncMock(return_value=_DESCRIPTORS)
            catalog.get_best_runtime = AsyncMock(return_value=RuntimeType.DOCKER)

            result = CliRunner().invoke(main, ["runtimes"])

        assert result.exit_code == 0
        assert "24.0.7" in result.output
        assert "Selected runtime: docker" in result.output

    def test_no_runtime(self) -> None:
        with patch("taskspace.cli_commands.runtimes.RuntimeCatalog") as catalog_cls:
            catalog = catalog_cls.return_value
            catalog.detect_runtimes = AsyncMock(return_value=[])
            catalog.get_best_runtime = AsyncMock(return_value=RuntimeType.NONE)

            result = CliRunner().invoke(main, ["runtimes"])

        assert result.exit_code == 0
        assert "No usable container runtime found." in result.output

    def test_json_with_preference(self) -> None:
        with patch("taskspace.cli_commands.runtimes.RuntimeCatalog") as catalog_cls:
            catalog = catalog_cls.return_value
            catalog.detect_runtimes = AsyncMock(return_value=_DESCRIPTORS)
            catalog.get_best_runtime = AsyncMock(return_value=RuntimeType.DOCKER)

            result = CliRunner().invoke(main, ["runtimes", "--prefer", "podman", "--json"])

        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert payload["selected"] == "docker"
        assert [r["type"] for r in payload["runtimes"]] == ["docker", "podman"]
        catalog.get_best_runtime.assert_awaited_once_with("podman")


class TestStats:
    def test_table(self) -> None:
        with patch("taskspace.cli_commands.container.ContainerManager") as manager_cls:
            manager_cls.return_value.get_stats = AsyncMock(return_value=ContainerStats(cpu_percent=12.5, pids=3))

            result = CliRunner().invoke(main, ["stats", "abc"])

        assert result.exit_code == 0
        assert "12.50%" in result.output
        manager_cls.return_value.get_stats.assert_awaited_once_with("abc")

    def test_json(self) -> None:
        with patch("taskspace.cli_commands.container.ContainerManager") as manager_cls:
            manager_cls.return_value.get_stats = AsyncMock(return_value=ContainerStats(pids=3))

            result = CliRunner().invoke(main, ["stats", "abc", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["pids"] == 3

    def test_unavailable(self) -> None:
        with patch("taskspace.cli_commands.container.ContainerManager") as manager_cls:
            manager_cls.return_value.get_stats = AsyncMock(
                side_effect=StatsUnavailableError("No such container: abc", FailureKind.NOT_FOUND)
            )

            result = CliRunner().invoke(main, ["stats", "abc"])

        assert result.exit_code == 1
        assert "Error" in result.output


class TestLogs:
    def test_prints_entries(self) -> None:
        stream = FakeStream(["hello", "world"])
        with patch("taskspace.cli_commands.container.ContainerManager") as manager_cls:
            manager_cls.return_value.stream_logs = AsyncMock(return_value=stream)

            result = CliRunner().invoke(main, ["logs", "abc", "--tail", "10", "-f"])

        assert result.exit_code == 0
        assert "hello" in result.output
        assert "world" in result.output
        assert stream.closed
        container, options = manager_cls.return_value.stream_logs.await_args.args
        assert container == "abc"
        assert options == LogStreamOptions(follow=True, tail=10)

    def test_bad_tail(self) -> None:
        result = CliRunner().invoke(main, ["logs", "abc", "--tail", "ten"])
        assert result.exit_code == 2

    def test_exit_code_propagates(self) -> None:
        with patch("taskspace.cli_commands.container.ContainerManager") as manager_cls:
            manager_cls.return_value.stream_logs = AsyncMock(return_value=FakeStream([], exit_code=3))

            result = CliRunner().invoke(main, ["logs", "abc"])

        assert result.exit_code == 3

    def test_no_runtime(self) -> None:
        with patch("taskspace.cli_commands.container.ContainerManager") as manager_cls:
            manager_cls.return_value.stream_logs = AsyncMock(
                side_effect=RuntimeUnavailableError("No container runtime available")
            )

            result = CliRunner().invoke(main, ["logs", "abc"])

        assert result.exit_code == 1
        assert "No container runtime available" in result.output


class TestConfigCheck:
    def test_valid(self, tmp_path: Path) -> None:
        f = tmp_path / "taskspace.yaml"
        f.write_text("defaultStrategy: container\ncontainer:\n  image: alpine\n")

        result = CliRunner().invoke(main, ["config", "check", str(f)])

        assert result.exit_code == 0
        assert "Settings are valid." in result.output
        assert "container" in result.output

    def test_json(self, tmp_path: Path) -> None:
        f = tmp_path / "taskspace.yaml"
        f.write_text("defaultStrategy: worktree\n")

        result = CliRunner().invoke(main, ["config", "check", str(f), "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["default_strategy"] == "worktree"

    def test_invalid(self, tmp_path: Path) -> None:
        f = tmp_path / "taskspace.yaml"
        f.write_text("defaultStrategy: vm\n")

        result = CliRunner().invoke(main, ["config", "check", str(f)])

        assert result.exit_code == 1
        assert "Invalid settings" in result.output
