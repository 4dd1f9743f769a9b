"""Runtime catalog: container runtime detection and selection."""

from taskspace.runtime.cache import DetectionCache
from taskspace.runtime.catalog import INSTALL_REMEDIATION, NO_RUNTIME_DETAIL, RuntimeCatalog, parse_version
from taskspace.runtime.models import (
    CompatibilityReport,
    CompatibilityRequirement,
    RuntimeDescriptor,
    RuntimeType,
)

__all__ = [
    "INSTALL_REMEDIATION",
    "NO_RUNTIME_DETAIL",
    "CompatibilityReport",
    "CompatibilityRequirement",
    "DetectionCache",
    "RuntimeCatalog",
    "RuntimeDescriptor",
    "RuntimeType",
    "parse_version",
]
