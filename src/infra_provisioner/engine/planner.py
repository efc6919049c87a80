"""Plan computation: desired graph + recorded state -> ordered changes."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from infra_provisioner.engine.errors import PlanConflictError
from infra_provisioner.engine.graph import DependencyGraph
from infra_provisioner.engine.types import Action, ResourceChange
from infra_provisioner.resources.markers import KNOWN_AFTER_APPLY

if TYPE_CHECKING:
    from infra_provisioner.core.state import ResourceInstance, State
    from infra_provisioner.engine.builder import ResourceGraph
    from infra_provisioner.resources.base import Resource
    from infra_provisioner.resources.markers import CompareStrategy, Ref

logger = logging.getLogger(__name__)


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def contains_unknown(value: Any) -> bool:
    """Whether *value* holds a reference that can only be resolved during apply."""
    if isinstance(value, str):
        return value == KNOWN_AFTER_APPLY
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(contains_unknown(v) for v in value)
    return False


def _values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Check whether a desired value differs from the prior (stored) value.

    A desired value that is (or contains) ``KNOWN_AFTER_APPLY`` always
    differs. Otherwise comparison semantics depend on *strategy*:

    - ``strategy="set"``:
      - If both values are lists, they are compared as sets (order-insensitive).
        Items may be dicts; they are compared by canonical JSON.
      - Other types fall back to strict equality.
    - ``strategy="exact"``:
      - Values are compared with strict equality.
      - For dicts, extra or missing keys are treated as differences.
    - ``strategy=None`` or ``"partial"``:
      - For dict values, only keys present in *desired* are compared.
      - Extra keys present only in *prior* (provider-added defaults) are ignored.
      - Non-dict values use strict equality.
    """
    if contains_unknown(desired):
        return True

    if strategy == "set":
        if isinstance(desired, list) and isinstance(prior, list):
            return {_canonical_json(v) for v in desired} != {_canonical_json(v) for v in prior}
        return desired != prior

    if strategy == "exact":
        return desired != prior

    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(_values_differ(v, prior.get(k), strategy="partial") for k, v in desired.items())
    return desired != prior


class Planner:
    """Computes the ordered change list for one graph against one state."""

    def __init__(self, graph: ResourceGraph, state: State) -> None:
        self._graph = graph
        self._state = state
        # Addresses whose attributes are only known once apply has run.
        self._unknown: set[str] = set()
        self._planned: dict[str, dict[str, Any]] = {}

    def plan(self, *, destroy: bool = False) -> list[ResourceChange]:
        changes: list[ResourceChange] = []
        if destroy:
            changes.extend(self._plan_deletes(set(self._state.resources), deposed_of=None))
        else:
            for address in self._graph.order:
                changes.append(self._classify(self._graph.get(address)))
            removed = set(self._state.resources) - set(self._graph.order)
            changes.extend(self._plan_deletes(removed, deposed_of=set(self._state.resources)))

        seen: set[str] = set()
        for c in changes:
            if c.key in seen:
                raise PlanConflictError(f"Conflicting operations planned for {c.key}")
            seen.add(c.key)

        counts: dict[str, int] = {}
        for c in changes:
            counts[c.action.value] = counts.get(c.action.value, 0) + 1
        logger.debug("Planned %d changes: %s", len(changes), counts)
        return changes

    # ── desired resources ───────────────────────────────────────────

    def _resolve(self, ref: Ref) -> Any:
        if ref.address in self._unknown:
            return KNOWN_AFTER_APPLY
        planned = self._planned.get(ref.address, {})
        if ref.attribute != "id" and ref.attribute in planned:
            return planned[ref.attribute]
        record = self._state.resources.get(ref.address)
        value = record.get(ref.attribute) if record is not None else None
        return KNOWN_AFTER_APPLY if value is None else value

    def _classify(self, resource: Resource) -> ResourceChange:
        addr = resource.address
        desired = resource.model_dump(mode="json", exclude_none=True, exclude={"address"})
        planned = resource.attributes(self._resolve)
        record = self._state.resources.get(addr)
        common: dict[str, Any] = {
            "address": addr,
            "resource_type": resource.resource_type,
            "desired": desired,
            "create_before_destroy": resource.lifecycle.create_before_destroy,
            "rank": self._graph.ranks[addr],
            "dependencies": list(self._graph.dependencies[addr]),
        }

        if record is None:
            self._unknown.add(addr)
            self._planned[addr] = planned
            logger.debug("Classified %s as create", addr)
            return ResourceChange(action=Action.CREATE, planned=planned, **common)

        prior = dict(record.attributes)
        ignored = set(resource.lifecycle.ignore_changes)
        for name in ignored:
            if name in prior:
                planned[name] = prior[name]
            else:
                planned.pop(name, None)

        schema = self._graph.schemas[resource.resource_type]
        strategies = schema.compare
        diff = {
            k: {"from": prior.get(k), "to": v}
            for k, v in planned.items()
            if k not in ignored and _values_differ(v, prior.get(k), strategy=strategies.get(k))
        }
        replace_reasons = [k for k in diff if k in schema.force_new]

        if replace_reasons:
            action = Action.REPLACE
            self._unknown.add(addr)
        elif diff:
            action = Action.UPDATE
        else:
            action = Action.NOOP
        self._planned[addr] = planned
        logger.debug("Classified %s as %s", addr, action.value)
        return ResourceChange(
            action=action,
            id=record.id,
            prior=prior,
            planned=planned,
            diff=diff or None,
            replace_reasons=replace_reasons,
            **common,
        )

    # ── deletes ─────────────────────────────────────────────────────

    def _plan_deletes(
        self, addrs: set[str], *, deposed_of: set[str] | None
    ) -> list[ResourceChange]:
        """Deletes for *addrs* plus deposed cleanups, in reverse dependency order.

        *deposed_of* widens the set of records whose deposed objects are
        cleaned up; ``None`` means the same as *addrs*.
        """
        records = self._state.resources
        candidates = addrs | {
            a for a in (deposed_of if deposed_of is not None else addrs) if records[a].deposed
        }
        dep_map = {a: [d for d in records[a].dependencies if d in candidates] for a in candidates}
        graph = DependencyGraph(candidates, dep_map)
        ranks = graph.ranks()

        changes: list[ResourceChange] = []
        for addr in graph.reverse_topological_order():
            record = records[addr]
            for deposed_id in record.deposed:
                changes.append(self._delete_change(record, ranks[addr], deposed_id=deposed_id))
            if addr in addrs:
                changes.append(self._delete_change(record, ranks[addr]))
        return changes

    @staticmethod
    def _delete_change(
        record: ResourceInstance, rank: int, *, deposed_id: str | None = None
    ) -> ResourceChange:
        return ResourceChange(
            address=record.address,
            resource_type=record.resource_type,
            action=Action.DELETE,
            id=deposed_id or record.id,
            prior=dict(record.attributes),
            rank=rank,
            dependencies=list(record.dependencies),
            deposed_id=deposed_id,
        )


def plan_changes(
    graph: ResourceGraph, state: State, *, destroy: bool = False
) -> list[ResourceChange]:
    """Compute the ordered change list for *graph* against *state*.

    Creates, updates, replacements and no-ops come first, in topological order
    of the desired graph (ties broken by declaration order). Deletes follow in
    reverse topological order of the recorded dependencies.
    """
    return Planner(graph, state).plan(destroy=destroy)
