"""Default resource type registry factory."""

from __future__ import annotations

from infra_provisioner.engine.registry import ResourceTypeRegistry
from infra_provisioner.resources import ALL_RESOURCE_TYPES


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource types."""
    registry = ResourceTypeRegistry()
    for model in ALL_RESOURCE_TYPES:
        registry.register(model)
    return registry
