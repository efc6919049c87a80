"""Dependency graph utilities."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

from infra_provisioner.engine.errors import CycleError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Ties in the topological order are broken by *priorities* (lower first),
    then by node name. Passing declaration indexes as priorities yields
    declaration order among independent nodes.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        priorities: Mapping[str, int] | None = None,
    ) -> None:
        self._nodes = set(nodes)
        self._priorities = priorities or {}
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = {d for d in deps if d in self._nodes}

    def _key(self, node: str) -> tuple[int, str]:
        return (self._priorities.get(node, 0), node)

    def dependents(self) -> dict[str, set[str]]:
        """Return node -> direct dependents."""
        out: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                out[dep].add(node)
        return out

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (priority, then lexicographic tie-break)."""
        indegree: dict[str, int] = {n: len(d) for n, d in self._deps.items()}
        dependents = self.dependents()

        ready: list[tuple[tuple[int, str], str]] = [
            (self._key(n), n) for n, deg in indegree.items() if deg == 0
        ]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in sorted(dependents[node]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self._key(child), child))

        if len(order) != len(self._nodes):
            remaining = self._nodes - set(order)
            raise CycleError(self._find_cycle(remaining))

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order

    def ranks(self) -> dict[str, int]:
        """Return node -> length of its longest dependency chain (roots are 0)."""
        rank: dict[str, int] = {}
        for node in self.topological_order():
            rank[node] = max((rank[d] + 1 for d in self._deps[node]), default=0)
        return rank

    def _find_cycle(self, candidates: set[str]) -> list[str]:
        """Return one closed cycle path among *candidates*."""
        # Every node left after Kahn's algorithm sits on or behind a cycle, so
        # following any remaining dependency edge must eventually revisit a node.
        start = min(candidates, key=self._key)
        path: list[str] = []
        seen: dict[str, int] = {}
        node = start
        while node not in seen:
            seen[node] = len(path)
            path.append(node)
            node = min((d for d in self._deps[node] if d in candidates), key=self._key)
        # Reads as "a depends on b depends on a".
        cycle = path[seen[node] :]
        return [*cycle, cycle[0]]
