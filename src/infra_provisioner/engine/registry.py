"""Resource type registry.

Maps a ``resource_type`` string (``aws_subnet``) to its declaration model and
caches the schema facts the engine consults for every instance of that type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from infra_provisioner.engine.errors import UnknownResourceTypeError
from infra_provisioner.resources.markers import collect_compare_strategies, collect_force_new

if TYPE_CHECKING:
    from infra_provisioner.resources.base import Resource
    from infra_provisioner.resources.markers import CompareStrategy


@dataclass(frozen=True)
class ResourceTypeRegistration:
    resource_type: str
    model: type[Resource]
    force_new: frozenset[str]
    compare: dict[str, CompareStrategy]
    known_attributes: frozenset[str]


class ResourceTypeRegistry:
    def __init__(self) -> None:
        self._registrations: dict[str, ResourceTypeRegistration] = {}

    def register(self, model: type[Resource]) -> ResourceTypeRegistration:
        resource_type = getattr(model, "resource_type", None)
        if not isinstance(resource_type, str) or not resource_type:
            raise ValueError("Resource model must define a non-empty classvar `resource_type`")
        if resource_type in self._registrations:
            raise ValueError(f"Resource type already registered: {resource_type}")

        registration = ResourceTypeRegistration(
            resource_type=resource_type,
            model=model,
            force_new=collect_force_new(model),
            compare=collect_compare_strategies(model),
            known_attributes=model.known_attributes(),
        )
        self._registrations[resource_type] = registration
        return registration

    def get(self, resource_type: str) -> ResourceTypeRegistration:
        try:
            return self._registrations[resource_type]
        except KeyError as e:
            raise UnknownResourceTypeError(resource_type) from e

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._registrations

    def resource_types(self) -> list[str]:
        return sorted(self._registrations)
