"""Project-default / task-override merge for container configuration."""

from __future__ import annotations

from taskspace.container.models import ContainerConfig, ResourceLimits

# Merged key by key instead of replaced wholesale.
_KEYWISE = ("resource_limits", "environment")


def merge_resource_limits(base: ResourceLimits | None, override: ResourceLimits | None) -> ResourceLimits | None:
    if base is None:
        return override
    if override is None:
        return base
    values = base.model_dump(exclude_none=True)
    values.update(override.model_dump(exclude_none=True))
    return ResourceLimits(**values)


def merge_container_config(
    defaults: ContainerConfig | None,
    override: ContainerConfig | None,
) -> ContainerConfig:
    """Return the effective container configuration.

    A field the override explicitly set (``model_fields_set``) wins; any other
    field keeps the default's value.  ``resource_limits`` and ``environment``
    are merged key by key, with override keys winning.
    """
    if defaults is None and override is None:
        return ContainerConfig()
    if defaults is None:
        return override.model_copy(deep=True)  # type: ignore[union-attr]
    if override is None:
        return defaults.model_copy(deep=True)

    data = {name: getattr(defaults, name) for name in defaults.model_fields_set if name not in _KEYWISE}
    for name in override.model_fields_set:
        if name not in _KEYWISE:
            data[name] = getattr(override, name)

    environment = {**defaults.environment, **override.environment}
    if environment:
        data["environment"] = environment
    limits = merge_resource_limits(defaults.resource_limits, override.resource_limits)
    if limits is not None:
        data["resource_limits"] = limits
    return ContainerConfig.model_validate(data)
