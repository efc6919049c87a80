"""Resource graph construction.

Turns a flat list of declarations into a validated, immutable DAG. Edges come
from explicit ``depends_on`` addresses and from every ``Ref`` found anywhere
inside a resource's attribute values. Building is pure: no provider calls and
no state access.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from infra_provisioner.engine.errors import (
    DuplicateAddressError,
    UnresolvedReferenceError,
    ValidationError,
)
from infra_provisioner.engine.graph import DependencyGraph

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from infra_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
    from infra_provisioner.resources.base import Resource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceGraph:
    """Validated dependency graph of declared resources.

    Attributes:
        resources: Declarations in declaration order
        dependencies: address -> addresses it depends on (declaration order)
        order: Topological order, ties broken by declaration order
        ranks: address -> length of its longest dependency chain
        schemas: resource_type -> registration, for every declared type
    """

    resources: tuple[Resource, ...]
    dependencies: dict[str, tuple[str, ...]]
    order: tuple[str, ...]
    ranks: dict[str, int]
    schemas: dict[str, ResourceTypeRegistration]
    _by_address: dict[str, Resource] = field(repr=False)
    _dependents: dict[str, tuple[str, ...]] = field(repr=False)

    def __contains__(self, address: object) -> bool:
        return address in self._by_address

    def __len__(self) -> int:
        return len(self.resources)

    def __iter__(self) -> Iterator[Resource]:
        return (self._by_address[a] for a in self.order)

    @property
    def addresses(self) -> list[str]:
        return [r.address for r in self.resources]

    def get(self, address: str) -> Resource:
        return self._by_address[address]

    def dependents(self, address: str) -> tuple[str, ...]:
        """Direct dependents of *address*."""
        return self._dependents.get(address, ())


def _dependencies_of(resource: Resource) -> list[str]:
    deps: list[str] = []
    for dep in [*resource.depends_on, *(r.address for r in resource.references())]:
        if dep not in deps:
            deps.append(dep)
    return deps


def build_graph(resources: Sequence[Resource], registry: ResourceTypeRegistry) -> ResourceGraph:
    """Validate *resources* and build their dependency graph.

    Raises:
        UnknownResourceTypeError: A resource type is not registered.
        DuplicateAddressError: Two declarations share one address.
        UnresolvedReferenceError: References or ``depends_on`` entries point at
            undeclared resources or unknown attributes (all listed at once).
        ValidationError: ``lifecycle.ignore_changes`` names unknown attributes.
        CycleError: The dependencies contain a cycle (self-references included).
    """
    by_address: dict[str, Resource] = {}
    schemas: dict[str, ResourceTypeRegistration] = {}
    for r in resources:
        schemas[r.resource_type] = registry.get(r.resource_type)
        if r.address in by_address:
            raise DuplicateAddressError(r.address)
        by_address[r.address] = r

    problems: list[str] = []
    errors: list[str] = []
    dependencies: dict[str, tuple[str, ...]] = {}
    for r in resources:
        for dep in r.depends_on:
            if dep not in by_address:
                problems.append(f"{r.address}: depends_on unknown resource '{dep}'")
        for ref in r.references():
            target = by_address.get(ref.address)
            if target is None:
                problems.append(f"{r.address}: reference '{ref}' to undeclared resource")
            elif ref.attribute not in schemas[target.resource_type].known_attributes:
                problems.append(
                    f"{r.address}: reference '{ref}' to unknown attribute "
                    f"'{ref.attribute}' of {target.resource_type}"
                )
        unknown = sorted(set(r.lifecycle.ignore_changes) - set(r.attribute_names()))
        if unknown:
            errors.append(f"{r.address}: ignore_changes names unknown attributes {unknown}")
        dependencies[r.address] = tuple(_dependencies_of(r))

    if problems:
        raise UnresolvedReferenceError(problems)
    if errors:
        raise ValidationError(errors)

    priorities = {r.address: i for i, r in enumerate(resources)}
    graph = DependencyGraph(by_address, dependencies, priorities=priorities)
    order = tuple(graph.topological_order())
    ranks = graph.ranks()
    dependents = {
        addr: tuple(sorted(ds, key=priorities.__getitem__))
        for addr, ds in graph.dependents().items()
    }
    logger.debug("Built graph: %d resources, order=%s", len(order), list(order))
    return ResourceGraph(
        resources=tuple(resources),
        dependencies=dependencies,
        order=order,
        ranks=ranks,
        schemas=schemas,
        _by_address=by_address,
        _dependents=dependents,
    )
