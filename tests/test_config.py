"""Tests for SettingsLoader."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path

from taskspace.config import ProjectSettings, SettingsLoader
from taskspace.container.models import ResourceLimits
from taskspace.errors import ConfigError
from taskspace.runtime.models import RuntimeType
from taskspace.workspace.models import WorkspaceStrategy

_VALID_YAML = """\
defaultStrategy: container
cleanup: true
preserveOnFailure: true
runtime: podman
cacheTtl: 5
container:
  image: node:20-alpine
  resourceLimits:
    cpu: 2
    memory: 2g
  environment:
    NODE_ENV: test
    TOKEN: ${TASKSPACE_TEST_TOKEN}
"""


class TestSettingsLoader:
    def test_load_valid(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TASKSPACE_TEST_TOKEN", "secret-123")
        f = tmp_path / "taskspace.yaml"
        f.write_text(_VALID_YAML)

        settings = SettingsLoader(f).load()

        assert settings.default_strategy is WorkspaceStrategy.CONTAINER
        assert settings.preserve_on_failure is True
        assert settings.runtime is RuntimeType.PODMAN
        assert settings.cache_ttl == 5
        assert settings.container is not None
        assert settings.container.resource_limits == ResourceLimits(cpu=2, memory="2g")
        assert settings.container.environment == {"NODE_ENV": "test", "TOKEN": "secret-123"}

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        f = tmp_path / "empty.yaml"
        f.write_text("")
        assert SettingsLoader(f).load() == ProjectSettings()

    def test_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Cannot read"):
            SettingsLoader(tmp_path / "missing.yaml").load()

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        f = tmp_path / "bad.yaml"
        f.write_text("{{{{invalid")
        with pytest.raises(ConfigError, match="YAML parse error"):
            SettingsLoader(f).load()

    def test_yaml_not_mapping(self, tmp_path: Path) -> None:
        f = tmp_path / "list.yaml"
        f.write_text("- item1\n- item2\n")
        with pytest.raises(ConfigError, match="must be a mapping"):
            SettingsLoader(f).load()

    @pytest.mark.parametrize(
        "content",
        [
            "defaultStrategy: vm\n",
            "unknownKey: 1\n",
            "cacheTtl: 0\n",
            "container:\n  resourceLimits:\n    memory: 1.5g\n",
        ],
    )
    def test_schema_errors(self, tmp_path: Path, content: str) -> None:
        f = tmp_path / "taskspace.yaml"
        f.write_text(content)
        with pytest.raises(ConfigError):
            SettingsLoader(f).load()
