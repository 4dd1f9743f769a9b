"""RuntimeCatalog: detects docker/podman on the host and picks the best one.

Probe failures are recorded on the returned :class:`RuntimeDescriptor`
(``available=False``) and never raised; it is up to callers that actually
need a runtime to escalate the absence of one.
"""

from __future__ import annotations

import asyncio
import logging
import re

from taskspace.process import CommandOutput, CommandRunner, SubprocessRunner
from taskspace.runtime.cache import DEFAULT_TTL, DetectionCache
from taskspace.runtime.models import (
    CompatibilityReport,
    CompatibilityRequirement,
    RuntimeDescriptor,
    RuntimeType,
)
from taskspace.utils.telemetry import ATTR_CACHE_HIT, ATTR_RUNTIME, get_tracer

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

# Preference order when the caller expresses none.
RUNTIME_PRIORITY: tuple[RuntimeType, ...] = (RuntimeType.DOCKER, RuntimeType.PODMAN)

_VERSION_PATTERNS: dict[RuntimeType, re.Pattern[str]] = {
    RuntimeType.DOCKER: re.compile(r"docker version\s+(\d+\.\d+\.\d+)(?:[^,]*)?(?:,\s*build\s+(\w+))?", re.I),
    RuntimeType.PODMAN: re.compile(r"podman version\s+(\d+\.\d+\.\d+)", re.I),
}
_GENERIC_VERSION = re.compile(r"(\d+(?:\.\d+)+)")

_FEATURES: dict[RuntimeType, frozenset[str]] = {
    RuntimeType.DOCKER: frozenset(
        {"volumes", "networks", "resource-limits", "exec", "stats", "logs", "build", "buildkit"}
    ),
    RuntimeType.PODMAN: frozenset(
        {"volumes", "networks", "resource-limits", "exec", "stats", "logs", "build", "rootless", "pods"}
    ),
}

NO_RUNTIME_DETAIL = "No container runtime available: Docker or Podman is required for container workspaces"
INSTALL_REMEDIATION = (
    "Install Docker (https://docs.docker.com/get-docker/) or Podman (https://podman.io/docs/installation), "
    "then check that 'docker info' or 'podman info' succeeds"
)

_VERSION_TIMEOUT = 10.0
_INFO_TIMEOUT = 15.0


def parse_version(runtime: RuntimeType, output: str) -> tuple[str | None, str | None]:
    """Extract ``(version, build_info)`` from a ``--version`` probe.

    Tries the runtime-specific pattern first, then the first dotted-number
    run anywhere in the output.  Returns ``(None, None)`` when neither matches.
    """
    specific = _VERSION_PATTERNS.get(runtime)
    if specific is not None:
        match = specific.search(output)
        if match:
            build = match.group(2) if specific.groups >= 2 else None
            return match.group(1), build
    generic = _GENERIC_VERSION.search(output)
    if generic:
        return generic.group(1), None
    return None, None


def _version_tuple(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", version))


class RuntimeCatalog:
    """Answers "which container runtime can I use, and how good is it?".

    Detection results are cached for ``ttl`` seconds in an injectable
    :class:`DetectionCache`.  Concurrent callers share one refresh; a caller
    arriving while a refresh is in flight gets the previous snapshot if one
    exists.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        cache: DetectionCache | None = None,
        ttl: float = DEFAULT_TTL,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._cache = cache or DetectionCache(ttl=ttl)
        self._refresh_lock = asyncio.Lock()

    @property
    def cache(self) -> DetectionCache:
        return self._cache

    def clear_cache(self) -> None:
        """Force the next :meth:`detect_runtimes` call to re-probe."""
        self._cache.invalidate()

    async def detect_runtimes(self) -> list[RuntimeDescriptor]:
        """Probe every known runtime (or return the cached snapshot)."""
        with _tracer.start_as_current_span("runtime.detect") as span:
            cached = self._cache.get()
            if cached is not None:
                span.set_attribute(ATTR_CACHE_HIT, True)
                return cached

            stale = self._cache.stale()
            if stale is not None and self._refresh_lock.locked():
                span.set_attribute(ATTR_CACHE_HIT, True)
                return stale

            span.set_attribute(ATTR_CACHE_HIT, False)
            async with self._refresh_lock:
                cached = self._cache.get()
                if cached is not None:
                    return cached
                snapshot = list(await asyncio.gather(*(self._probe(rt) for rt in RUNTIME_PRIORITY)))
                self._cache.put(snapshot)

            for desc in snapshot:
                if desc.available:
                    logger.debug("Detected %s %s", desc.type.value, desc.version or "(unknown version)")
                else:
                    logger.debug("Runtime %s unavailable: %s", desc.type.value, desc.error)
            return snapshot

    async def get_best_runtime(self, preference: RuntimeType | str | None = None) -> RuntimeType:
        """Return the preferred runtime if usable, else docker, podman, then ``none``.

        ``none`` must be treated as a hard failure by anything that needs a
        runtime.
        """
        runtimes = {d.type: d for d in await self.detect_runtimes()}
        if preference is not None:
            pref = RuntimeType(preference)
            desc = runtimes.get(pref)
            if desc is not None and desc.available:
                return pref
        for rt in RUNTIME_PRIORITY:
            desc = runtimes.get(rt)
            if desc is not None and desc.available:
                return rt
        return RuntimeType.NONE

    async def is_runtime_available(self, runtime: RuntimeType | str) -> bool:
        rt = RuntimeType(runtime)
        if rt is RuntimeType.NONE:
            return False
        desc = await self.get_runtime_info(rt)
        return desc.available

    async def get_runtime_info(self, runtime: RuntimeType | str) -> RuntimeDescriptor:
        """Return the cached descriptor for *runtime*."""
        rt = RuntimeType(runtime)
        if rt is RuntimeType.NONE:
            return RuntimeDescriptor(type=rt, available=False, error="No container runtime specified")
        for desc in await self.detect_runtimes():
            if desc.type is rt:
                return desc
        return RuntimeDescriptor(type=rt, available=False, error=f"{rt.value} is not a known runtime")

    async def validate_compatibility(
        self,
        runtime: RuntimeType | str,
        requirement: CompatibilityRequirement | None = None,
    ) -> CompatibilityReport:
        """Check *runtime* against version bounds and required features."""
        rt = RuntimeType(runtime)
        req = requirement or CompatibilityRequirement()

        if rt is RuntimeType.NONE:
            return CompatibilityReport(
                runtime=rt,
                compatible=False,
                version_compatible=False,
                features_compatible=False,
                issues=["No container runtime specified"],
                recommendations=["Install Docker or Podman to enable container workspaces"],
            )

        desc = await self.get_runtime_info(rt)
        if not desc.available:
            return CompatibilityReport(
                runtime=rt,
                compatible=False,
                version_compatible=False,
                features_compatible=False,
                issues=[f"{rt.value} is not available or not functional"],
                recommendations=[f"Install or fix {rt.value} installation"],
            )

        issues: list[str] = []
        recommendations: list[str] = []

        version_ok = True
        if desc.version is not None:
            current = _version_tuple(desc.version)
            if req.min_version and current < _version_tuple(req.min_version):
                version_ok = False
                issues.append(f"{rt.value} version {desc.version} is below minimum {req.min_version}")
                recommendations.append(f"Upgrade {rt.value} to version {req.min_version} or later")
            if req.max_version and current > _version_tuple(req.max_version):
                version_ok = False
                issues.append(f"{rt.value} version {desc.version} is above maximum {req.max_version}")
                recommendations.append(f"Downgrade {rt.value} to version {req.max_version} or earlier")
        elif req.min_version or req.max_version:
            version_ok = False
            issues.append(f"Could not determine {rt.value} version")
            recommendations.append(f"Check the output of '{rt.value} --version'")

        missing = [f for f in req.required_features if f not in _FEATURES.get(rt, frozenset())]
        if missing:
            issues.append(f"{rt.value} does not support required features: {', '.join(missing)}")

        compatible = version_ok and not missing
        if compatible:
            recommendations.append(f"{rt.value} is compatible and ready to use")

        return CompatibilityReport(
            runtime=rt,
            compatible=compatible,
            version_compatible=version_ok,
            features_compatible=not missing,
            issues=issues,
            recommendations=recommendations,
        )

    async def _probe(self, runtime: RuntimeType) -> RuntimeDescriptor:
        """Run ``<bin> --version`` then ``<bin> info`` for one runtime."""
        binary = runtime.value
        command = f"{binary} --version"
        with _tracer.start_as_current_span("runtime.probe") as span:
            span.set_attribute(ATTR_RUNTIME, binary)
            try:
                out = await self._runner.run([binary, "--version"], timeout=_VERSION_TIMEOUT)
            except OSError:
                return RuntimeDescriptor(
                    type=runtime, available=False, error=f"{binary} is not installed", command=command
                )

            if not out.ok:
                return RuntimeDescriptor(
                    type=runtime, available=False, error=self._probe_error(binary, out), command=command
                )

            full_version = out.stdout.strip() or out.stderr.strip()
            version, build = parse_version(runtime, full_version)
            desc = RuntimeDescriptor(
                type=runtime,
                available=True,
                version=version,
                full_version=full_version,
                build_info=build,
                command=command,
            )

            try:
                info = await self._runner.run([binary, "info"], timeout=_INFO_TIMEOUT)
            except OSError as exc:
                return desc.model_copy(
                    update={"available": False, "error": f"{binary} is installed but not functional: {exc}"}
                )
            if not info.ok:
                detail = info.stderr.strip() or info.stdout.strip() or "info command failed"
                if info.timed_out:
                    detail = "timeout"
                return desc.model_copy(
                    update={"available": False, "error": f"{binary} is installed but not functional: {detail}"}
                )
            return desc

    @staticmethod
    def _probe_error(binary: str, out: CommandOutput) -> str:
        if out.timed_out:
            return f"{binary} --version: timeout"
        lowered = out.stderr.lower()
        if "not found" in lowered or "no such file" in lowered:
            return f"{binary} is not installed"
        return out.stderr.strip() or f"{binary} --version exited with code {out.returncode}"
