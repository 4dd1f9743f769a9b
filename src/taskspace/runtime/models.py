"""Data models for container runtime detection."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class RuntimeType(str, Enum):
    """Container runtime CLIs the catalog knows how to drive."""

    DOCKER = "docker"
    PODMAN = "podman"
    NONE = "none"


class RuntimeDescriptor(BaseModel):
    """Outcome of probing one runtime binary."""

    type: RuntimeType
    available: bool = False
    version: str | None = Field(default=None, description="Parsed semantic version, e.g. '24.0.7'.")
    full_version: str | None = Field(default=None, description="Raw output of the version probe.")
    build_info: str | None = Field(default=None, description="Build hash when the runtime reports one.")
    error: str | None = Field(default=None, description="Why the runtime is unusable.")
    command: str | None = Field(default=None, description="Probe command that was executed.")


class CompatibilityRequirement(BaseModel):
    """Version/feature constraints a caller places on a runtime."""

    min_version: str | None = None
    max_version: str | None = None
    required_features: list[str] = Field(default_factory=list)


class CompatibilityReport(BaseModel):
    """Result of checking a runtime against a :class:`CompatibilityRequirement`."""

    runtime: RuntimeType
    compatible: bool
    version_compatible: bool
    features_compatible: bool
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
