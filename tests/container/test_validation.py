"""Tests for defensive validation of container configs."""

from __future__ import annotations

import pytest

from taskspace.container.models import ContainerConfig, ResourceLimits
from taskspace.container.validation import is_valid_memory, validate_container_config, validate_resource_limits
from taskspace.errors import InvalidConfigError


def _unchecked_limits(**values: object) -> ResourceLimits:
    return ResourceLimits.model_construct(**values)


class TestIsValidMemory:
    @pytest.mark.parametrize("value", ["1", "512m", "512M", "1g", "64k"])
    def test_accepts(self, value: str) -> None:
        assert is_valid_memory(value)

    @pytest.mark.parametrize("value", ["1.5g", "512mb", "g", "", " 1g", 512, None])
    def test_rejects(self, value: object) -> None:
        assert not is_valid_memory(value)


class TestValidateResourceLimits:
    def test_valid(self) -> None:
        validate_resource_limits(ResourceLimits(cpu=2, memory="1g", cpu_shares=1024, pids_limit=100))

    @pytest.mark.parametrize("cpu", [0, -0.5, 64.01, True, "2"])
    def test_bad_cpu(self, cpu: object) -> None:
        with pytest.raises(InvalidConfigError) as exc_info:
            validate_resource_limits(_unchecked_limits(cpu=cpu))
        assert exc_info.value.field == "resource_limits.cpu"

    def test_bad_memory_names_field(self) -> None:
        with pytest.raises(InvalidConfigError) as exc_info:
            validate_resource_limits(_unchecked_limits(memory_reservation="1.5g"))
        assert exc_info.value.field == "resource_limits.memory_reservation"

    def test_bad_cpu_shares(self) -> None:
        with pytest.raises(InvalidConfigError) as exc_info:
            validate_resource_limits(_unchecked_limits(cpu_shares=1))
        assert exc_info.value.field == "resource_limits.cpu_shares"

    def test_bad_pids_limit(self) -> None:
        with pytest.raises(InvalidConfigError) as exc_info:
            validate_resource_limits(_unchecked_limits(pids_limit=0))
        assert exc_info.value.field == "resource_limits.pids_limit"


class TestValidateContainerConfig:
    def test_requires_image(self) -> None:
        with pytest.raises(InvalidConfigError) as exc_info:
            validate_container_config(ContainerConfig())
        assert exc_info.value.field == "image"

    def test_blank_image(self) -> None:
        with pytest.raises(InvalidConfigError):
            validate_container_config(ContainerConfig(image="  "))

    def test_dockerfile_without_image(self) -> None:
        validate_container_config(ContainerConfig(dockerfile="Dockerfile", build_context="."))

    def test_bad_network_mode(self) -> None:
        config = ContainerConfig.model_construct(image="alpine", network_mode="overlay", install_timeout=None)
        with pytest.raises(InvalidConfigError) as exc_info:
            validate_container_config(config)
        assert exc_info.value.field == "network_mode"

    def test_nested_limits_checked(self) -> None:
        config = ContainerConfig(image="alpine", resource_limits=_unchecked_limits(cpu=100))
        with pytest.raises(InvalidConfigError):
            validate_container_config(config)
