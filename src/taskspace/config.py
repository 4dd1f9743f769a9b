"""Project settings: the defaults every task's workspace request falls back to."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from taskspace.container.models import ContainerConfig
from taskspace.errors import ConfigError
from taskspace.runtime.cache import DEFAULT_TTL
from taskspace.runtime.models import RuntimeType
from taskspace.workspace.models import WorkspaceStrategy


class _SettingsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class TelemetrySettings(_SettingsModel):
    """Optional OpenTelemetry export."""

    enabled: bool = False
    otlp_endpoint: str | None = None


class ProjectSettings(_SettingsModel):
    """Project-wide workspace defaults.

    Example YAML::

        defaultStrategy: container
        cleanup: true
        preserveOnFailure: true
        runtime: podman
        container:
          image: node:20-alpine
          resourceLimits: {cpu: 2, memory: 2g}
          environment: {NODE_ENV: test}
    """

    default_strategy: WorkspaceStrategy = WorkspaceStrategy.NONE
    cleanup: bool = True
    preserve_on_failure: bool = False
    container: ContainerConfig | None = Field(default=None, description="Container defaults.")
    runtime: RuntimeType | None = Field(default=None, description="Preferred runtime when available.")
    cache_ttl: float = Field(default=DEFAULT_TTL, gt=0, description="Runtime detection cache TTL, seconds.")
    workspace_root: str | None = Field(
        default=None, description="Parent of worktree/directory workspaces; defaults to <project>/.taskspace."
    )
    telemetry: TelemetrySettings | None = None


class SettingsLoader:
    """Load and validate a settings YAML file into :class:`ProjectSettings`."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    def load(self) -> ProjectSettings:
        """Read YAML, interpolate env vars, and validate.

        ``${VAR}`` and ``$VAR`` are expanded with :func:`os.path.expandvars`
        before parsing.  An empty file yields the defaults.

        Raises:
            ConfigError: On read, YAML parse or schema validation failures.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Cannot read {self._path}: {exc}") from exc

        expanded = os.path.expandvars(raw)

        try:
            data: Any = yaml.safe_load(expanded)
        except yaml.YAMLError as exc:
            raise ConfigError(f"YAML parse error: {exc}") from exc

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Settings YAML must be a mapping")

        try:
            return ProjectSettings.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(str(exc)) from exc
