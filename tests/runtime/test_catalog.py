"""Tests for RuntimeCatalog (runtime CLIs faked through a CommandRunner)."""

from __future__ import annotations

import asyncio

import pytest

from taskspace.process import CommandOutput
from taskspace.runtime.cache import DetectionCache
from taskspace.runtime.catalog import RuntimeCatalog, parse_version
from taskspace.runtime.models import CompatibilityRequirement, RuntimeType
from tests.conftest import FakeRunner


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class GatedRunner(FakeRunner):
    """Blocks every command until ``gate`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def run(self, argv: list[str], *, timeout: float | None = None) -> CommandOutput:
        await self.gate.wait()
        return await super().run(argv, timeout=timeout)


class TestParseVersion:
    def test_docker_with_build(self) -> None:
        assert parse_version(RuntimeType.DOCKER, "Docker version 24.0.7, build afdd53b") == ("24.0.7", "afdd53b")

    def test_docker_without_build(self) -> None:
        assert parse_version(RuntimeType.DOCKER, "Docker version 20.10.21") == ("20.10.21", None)

    def test_podman(self) -> None:
        assert parse_version(RuntimeType.PODMAN, "podman version 4.9.3") == ("4.9.3", None)

    def test_generic_fallback(self) -> None:
        assert parse_version(RuntimeType.DOCKER, "Docker Engine - Community 25.0.1-rc2") == ("25.0.1", None)

    def test_unparsable(self) -> None:
        assert parse_version(RuntimeType.PODMAN, "podman (dev build)") == (None, None)


class TestDetectRuntimes:
    async def test_docker_available_podman_missing(self, docker_runner: FakeRunner) -> None:
        catalog = RuntimeCatalog(docker_runner)
        runtimes = {d.type: d for d in await catalog.detect_runtimes()}

        docker = runtimes[RuntimeType.DOCKER]
        assert docker.available
        assert docker.version == "24.0.7"
        assert docker.build_info == "afdd53b"
        assert docker.full_version == "Docker version 24.0.7, build afdd53b"
        assert docker.command == "docker --version"

        podman = runtimes[RuntimeType.PODMAN]
        assert not podman.available
        assert podman.error == "podman is not installed"

    async def test_version_probe_failure_records_stderr(self, fake_runner: FakeRunner) -> None:
        fake_runner.on("docker", "--version", returncode=1, stderr="permission denied")
        fake_runner.on("podman", exc=FileNotFoundError("podman"))
        desc = await RuntimeCatalog(fake_runner).get_runtime_info("docker")
        assert not desc.available
        assert desc.error == "permission denied"

    async def test_unparsable_version_still_available(self, fake_runner: FakeRunner) -> None:
        fake_runner.on("docker", "--version", stdout="Docker (custom build)")
        fake_runner.on("podman", exc=FileNotFoundError("podman"))
        desc = await RuntimeCatalog(fake_runner).get_runtime_info(RuntimeType.DOCKER)
        assert desc.available
        assert desc.version is None
        assert desc.full_version == "Docker (custom build)"

    async def test_daemon_down_is_unavailable(self, fake_runner: FakeRunner) -> None:
        fake_runner.on("docker", "--version", stdout="Docker version 24.0.7, build afdd53b")
        fake_runner.on("docker", "info", returncode=1, stderr="Cannot connect to the Docker daemon")
        fake_runner.on("podman", exc=FileNotFoundError("podman"))
        desc = await RuntimeCatalog(fake_runner).get_runtime_info(RuntimeType.DOCKER)
        assert not desc.available
        assert desc.version == "24.0.7"
        assert desc.error == "docker is installed but not functional: Cannot connect to the Docker daemon"

    async def test_probe_timeout(self, fake_runner: FakeRunner) -> None:
        fake_runner.on("docker", "--version", returncode=-9, timed_out=True)
        fake_runner.on("podman", exc=FileNotFoundError("podman"))
        desc = await RuntimeCatalog(fake_runner).get_runtime_info(RuntimeType.DOCKER)
        assert not desc.available
        assert "timeout" in (desc.error or "")


class TestCaching:
    async def test_second_call_within_ttl_runs_nothing(self, docker_runner: FakeRunner) -> None:
        catalog = RuntimeCatalog(docker_runner)
        first = await catalog.detect_runtimes()
        calls = len(docker_runner.calls)

        second = await catalog.detect_runtimes()
        assert second == first
        assert len(docker_runner.calls) == calls

    async def test_expired_cache_reprobes(self, docker_runner: FakeRunner) -> None:
        clock = FakeClock()
        catalog = RuntimeCatalog(docker_runner, cache=DetectionCache(ttl=60, clock=clock))
        await catalog.detect_runtimes()
        calls = len(docker_runner.calls)

        clock.now += 61
        await catalog.detect_runtimes()
        assert len(docker_runner.calls) > calls

    async def test_clear_cache_forces_refresh(self, docker_runner: FakeRunner) -> None:
        catalog = RuntimeCatalog(docker_runner)
        await catalog.detect_runtimes()
        calls = len(docker_runner.calls)

        catalog.clear_cache()
        await catalog.detect_runtimes()
        assert len(docker_runner.calls) == 2 * calls

    async def test_concurrent_callers_share_one_refresh(self, docker_runner: FakeRunner) -> None:
        catalog = RuntimeCatalog(docker_runner)
        results = await asyncio.gather(*(catalog.detect_runtimes() for _ in range(5)))

        assert all(r == results[0] for r in results)
        assert len(docker_runner.calls_to("docker", "--version")) == 1

    async def test_stale_snapshot_served_during_refresh(self) -> None:
        runner = GatedRunner().with_docker()
        runner.gate.set()
        clock = FakeClock()
        catalog = RuntimeCatalog(runner, cache=DetectionCache(ttl=60, clock=clock))
        original = await catalog.detect_runtimes()

        clock.now += 120
        runner.gate.clear()
        refresh = asyncio.create_task(catalog.detect_runtimes())
        for _ in range(5):
            await asyncio.sleep(0)

        calls = len(runner.calls)
        served = await catalog.detect_runtimes()
        assert served == original
        assert len(runner.calls) == calls

        runner.gate.set()
        await refresh


class TestBestRuntime:
    async def test_docker_preferred_by_default(self, fake_runner: FakeRunner) -> None:
        fake_runner.on("docker", "--version", stdout="Docker version 24.0.7, build afdd53b")
        fake_runner.on("podman", "--version", stdout="podman version 4.9.3")
        assert await RuntimeCatalog(fake_runner).get_best_runtime() is RuntimeType.DOCKER

    async def test_preference_honoured_when_available(self, fake_runner: FakeRunner) -> None:
        fake_runner.on("docker", "--version", stdout="Docker version 24.0.7, build afdd53b")
        fake_runner.on("podman", "--version", stdout="podman version 4.9.3")
        assert await RuntimeCatalog(fake_runner).get_best_runtime("podman") is RuntimeType.PODMAN

    async def test_unavailable_preference_falls_back(self) -> None:
        runner = FakeRunner().with_docker()
        assert await RuntimeCatalog(runner).get_best_runtime(RuntimeType.PODMAN) is RuntimeType.DOCKER

    async def test_podman_when_docker_missing(self) -> None:
        runner = FakeRunner().with_podman_only()
        assert await RuntimeCatalog(runner).get_best_runtime() is RuntimeType.PODMAN

    async def test_none_when_nothing_installed(self) -> None:
        runner = FakeRunner().without_runtimes()
        assert await RuntimeCatalog(runner).get_best_runtime("docker") is RuntimeType.NONE


class TestAvailabilityAndInfo:
    async def test_none_never_available(self, docker_runner: FakeRunner) -> None:
        catalog = RuntimeCatalog(docker_runner)
        assert not await catalog.is_runtime_available(RuntimeType.NONE)
        assert await catalog.is_runtime_available("docker")
        assert not await catalog.is_runtime_available("podman")

    async def test_info_for_none(self, docker_runner: FakeRunner) -> None:
        desc = await RuntimeCatalog(docker_runner).get_runtime_info(RuntimeType.NONE)
        assert not desc.available
        assert desc.error == "No container runtime specified"
        assert docker_runner.calls == []

    async def test_unknown_runtime_name_rejected(self, docker_runner: FakeRunner) -> None:
        with pytest.raises(ValueError):
            await RuntimeCatalog(docker_runner).get_runtime_info("containerd")


class TestValidateCompatibility:
    async def test_compatible(self, docker_runner: FakeRunner) -> None:
        report = await RuntimeCatalog(docker_runner).validate_compatibility(
            "docker", CompatibilityRequirement(min_version="20.10.0", required_features=["buildkit"])
        )
        assert report.compatible
        assert report.issues == []

    async def test_version_too_old(self, docker_runner: FakeRunner) -> None:
        report = await RuntimeCatalog(docker_runner).validate_compatibility(
            "docker", CompatibilityRequirement(min_version="25.0.0")
        )
        assert not report.compatible
        assert not report.version_compatible
        assert report.features_compatible
        assert "below minimum" in report.issues[0]

    async def test_version_too_new(self, docker_runner: FakeRunner) -> None:
        report = await RuntimeCatalog(docker_runner).validate_compatibility(
            "docker", CompatibilityRequirement(max_version="23.0.0")
        )
        assert not report.version_compatible

    async def test_missing_feature(self, docker_runner: FakeRunner) -> None:
        report = await RuntimeCatalog(docker_runner).validate_compatibility(
            "docker", CompatibilityRequirement(required_features=["pods"])
        )
        assert not report.compatible
        assert not report.features_compatible
        assert "pods" in report.issues[0]

    async def test_unavailable_runtime(self, docker_runner: FakeRunner) -> None:
        report = await RuntimeCatalog(docker_runner).validate_compatibility("podman")
        assert not report.compatible
        assert report.recommendations

    async def test_none_runtime(self, docker_runner: FakeRunner) -> None:
        report = await RuntimeCatalog(docker_runner).validate_compatibility(RuntimeType.NONE)
        assert not report.compatible
        assert report.issues == ["No container runtime specified"]
