"""Apply operations.

Terraform runs apply by executing a graph of operations. This module
implements that idea: each planned change becomes one or two operations that
know how to apply themselves and list the operations they must wait for.

A ``replace`` becomes a create half and a destroy half. With
``create_before_destroy`` the new object is created first and committed with
the old id recorded as *deposed*; the destroy half then runs once every
dependent has been repointed. Otherwise the old object is destroyed (and its
record removed) before the new one is created.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from infra_provisioner.core.state import ResourceInstance
from infra_provisioner.engine.errors import PlanConflictError, UnresolvedReferenceError
from infra_provisioner.engine.graph import DependencyGraph
from infra_provisioner.engine.types import Action

if TYPE_CHECKING:
    from collections.abc import Sequence

    from infra_provisioner.core.provider import Provider
    from infra_provisioner.core.state import State, StateStore
    from infra_provisioner.engine.registry import ResourceTypeRegistry
    from infra_provisioner.engine.retry import RetryPolicy
    from infra_provisioner.engine.types import ResourceChange
    from infra_provisioner.resources.base import Resource
    from infra_provisioner.resources.markers import Ref

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyContext:
    """Everything an operation needs to run."""

    provider: Provider
    store: StateStore
    registry: ResourceTypeRegistry
    retry: RetryPolicy
    ready_timeout: float = 300.0


def _desired_object(change: ResourceChange, ctx: ApplyContext) -> Resource:
    if change.desired is None:
        raise ValueError(f"Missing desired config for {change.action.value}: {change.address}")

    model = ctx.registry.get(change.resource_type).model
    desired_obj = model.model_validate(change.desired)
    if desired_obj.address != change.address:
        raise ValueError(f"Desired address mismatch: {change.address} != {desired_obj.address}")
    return desired_obj


def _resolver(ctx: ApplyContext, address: str) -> Any:
    def resolve(ref: Ref) -> Any:
        record = ctx.store.get(ref.address)
        value = record.get(ref.attribute) if record is not None else None
        if value is None:
            raise UnresolvedReferenceError(
                [f"{address}: '{ref}' has no value in state (was {ref.address} applied?)"]
            )
        return value

    return resolve


def _provider_attributes(change: ResourceChange, ctx: ApplyContext) -> dict[str, Any]:
    desired_obj = _desired_object(change, ctx)
    attrs = desired_obj.attributes(_resolver(ctx, change.address))
    prior = ctx.store.get(change.address)
    if prior is not None:
        for name in desired_obj.lifecycle.ignore_changes:
            if name in prior.attributes:
                attrs[name] = prior.attributes[name]
    return attrs


def _wait_ready(ctx: ApplyContext, change: ResourceChange, id: str) -> dict[str, Any]:
    latest: dict[str, Any] = {}

    def is_ready() -> bool:
        attrs = ctx.provider.describe(change.resource_type, id)
        if attrs is None:
            return False
        latest.clear()
        latest.update(attrs)
        return ctx.provider.is_ready(change.resource_type, attrs)

    ctx.retry.wait_until(is_ready, what=change.address, timeout=ctx.ready_timeout)
    return dict(latest)


def _create(ctx: ApplyContext, change: ResourceChange, *, deposed: list[str]) -> None:
    attrs = _provider_attributes(change, ctx)
    id, out = ctx.retry.call(
        lambda: ctx.provider.create(change.resource_type, attrs), what=f"create {change.address}"
    )
    record = ResourceInstance(
        address=change.address,
        resource_type=change.resource_type,
        name=change.address.split(".", 1)[1],
        id=id,
        attributes=out,
        dependencies=list(change.dependencies),
        deposed=deposed,
    )
    # Commit before waiting so a timeout never orphans the new object.
    ctx.store.commit_record(record)
    ready = _wait_ready(ctx, change, id)
    if ready != record.attributes:
        record.attributes = ready
        ctx.store.commit_record(record)


@dataclass
class Operation:
    key: str
    change: ResourceChange
    deps: list[str] = field(default_factory=list)

    kind: ClassVar[str] = "operation"
    # Create-ish operations produce the object dependents reference.
    creates: ClassVar[bool] = False
    # Shown in progress and listed in ApplyResult.applied.
    reported: ClassVar[bool] = True

    @property
    def address(self) -> str:
        return self.change.address

    def run(self, ctx: ApplyContext) -> None:
        raise NotImplementedError


@dataclass
class CreateOperation(Operation):
    kind: ClassVar[str] = "create"
    creates: ClassVar[bool] = True

    def run(self, ctx: ApplyContext) -> None:
        _create(ctx, self.change, deposed=[])


@dataclass
class UpdateOperation(Operation):
    kind: ClassVar[str] = "update"
    creates: ClassVar[bool] = True

    def run(self, ctx: ApplyContext) -> None:
        record = ctx.store.get(self.address)
        if record is None:
            raise ValueError(f"Missing state for update operation: {self.address}")
        attrs = _provider_attributes(self.change, ctx)
        record.attributes = ctx.retry.call(
            lambda: ctx.provider.update(self.change.resource_type, record.id, attrs),
            what=f"update {self.address}",
        )
        record.dependencies = list(self.change.dependencies)
        ctx.store.commit_record(record)
        ready = _wait_ready(ctx, self.change, record.id)
        if ready != record.attributes:
            record.attributes = ready
            ctx.store.commit_record(record)


@dataclass
class DeleteOperation(Operation):
    kind: ClassVar[str] = "delete"

    def run(self, ctx: ApplyContext) -> None:
        record = ctx.store.get(self.address)
        if record is None:
            logger.debug("%s already absent from state", self.address)
            return
        ctx.retry.call(
            lambda: ctx.provider.delete(record.resource_type, record.id),
            what=f"delete {self.address}",
        )
        ctx.store.remove_record(self.address)


@dataclass
class DeleteDeposedOperation(Operation):
    """Delete an object left behind by a create-before-destroy replacement."""

    kind: ClassVar[str] = "delete-deposed"

    def run(self, ctx: ApplyContext) -> None:
        deposed_id = self.change.deposed_id or self.change.id
        assert deposed_id is not None
        ctx.retry.call(
            lambda: ctx.provider.delete(self.change.resource_type, deposed_id),
            what=f"delete {self.address} (deposed {deposed_id})",
        )
        _drop_deposed(ctx, self.address, deposed_id)


@dataclass
class ReplaceCreateOperation(Operation):
    kind: ClassVar[str] = "replace-create"
    creates: ClassVar[bool] = True

    def run(self, ctx: ApplyContext) -> None:
        deposed: list[str] = []
        if self.change.create_before_destroy:
            old = ctx.store.get(self.address)
            if old is not None:
                deposed = [*old.deposed, old.id]
        _create(ctx, self.change, deposed=deposed)


@dataclass
class ReplaceDestroyOperation(Operation):
    kind: ClassVar[str] = "replace-destroy"

    def run(self, ctx: ApplyContext) -> None:
        old_id = self.change.id
        assert old_id is not None
        ctx.retry.call(
            lambda: ctx.provider.delete(self.change.resource_type, old_id),
            what=f"destroy {self.address} ({old_id})",
        )
        if self.change.create_before_destroy:
            _drop_deposed(ctx, self.address, old_id)
        else:
            ctx.store.remove_record(self.address)


@dataclass
class RecordDependenciesOperation(Operation):
    """Rewrite the recorded dependencies of an up-to-date resource.

    Only ``depends_on`` changed, so the provider is not called. Delete
    ordering reads recorded dependencies, so they must follow the declaration.
    """

    kind: ClassVar[str] = "record-dependencies"
    reported: ClassVar[bool] = False

    def run(self, ctx: ApplyContext) -> None:
        record = ctx.store.get(self.address)
        if record is None:
            return
        record.dependencies = list(self.change.dependencies)
        ctx.store.commit_record(record)


def _drop_deposed(ctx: ApplyContext, address: str, deposed_id: str) -> None:
    record = ctx.store.get(address)
    if record is not None and deposed_id in record.deposed:
        record.deposed.remove(deposed_id)
        ctx.store.commit_record(record)


def build_operations(changes: Sequence[ResourceChange], state: State) -> dict[str, Operation]:
    """Turn planned changes into an operation graph (key -> operation with deps).

    Edges:

    - create-ish operations run after the create-ish operations of their
      dependencies
    - deleting X runs after every operation of resources whose recorded
      dependencies include X
    - a create-before-destroy destroy half (and a deposed cleanup) runs after
      the new object exists and every dependent has been repointed
    - a destroy-before-create destroy half runs after the deletes of its
      dependents; its create half runs after it
    - a record gets its new dependencies (create, update or
      dependency rewrite) only after each of those dependencies carries its
      own declared dependencies, so a partial apply never records a cycle

    Raises:
        PlanConflictError: Two operations share a key.
        CycleError: The edges above form a cycle.
    """
    ops: dict[str, Operation] = {}
    by_address: dict[str, list[Operation]] = {}

    def add(op: Operation) -> Operation:
        if op.key in ops:
            raise PlanConflictError(f"Duplicate operation key in plan: {op.key}")
        ops[op.key] = op
        by_address.setdefault(op.address, []).append(op)
        return op

    creating: dict[str, Operation] = {}
    rewriting: dict[str, Operation] = {}
    for c in changes:
        match c.action:
            case Action.NOOP:
                record = state.resources.get(c.address)
                if record is not None and record.dependencies != c.dependencies:
                    rewriting[c.address] = add(RecordDependenciesOperation(key=c.address, change=c))
            case Action.CREATE:
                creating[c.address] = add(CreateOperation(key=c.address, change=c))
            case Action.UPDATE:
                creating[c.address] = add(UpdateOperation(key=c.address, change=c))
            case Action.REPLACE:
                creating[c.address] = add(ReplaceCreateOperation(key=c.address, change=c))
                add(ReplaceDestroyOperation(key=f"{c.address}#{c.id}", change=c))
            case Action.DELETE if c.deposed_id is not None:
                add(DeleteDeposedOperation(key=c.key, change=c))
            case Action.DELETE:
                add(DeleteOperation(key=c.address, change=c))
            case _:
                raise ValueError(f"Unknown action: {c.action}")

    # Who referenced X: desired dependents (for repointing) and recorded ones.
    desired_dependents: dict[str, set[str]] = {}
    for addr, op in creating.items():
        for dep in op.change.dependencies:
            desired_dependents.setdefault(dep, set()).add(addr)
    recorded_dependents: dict[str, set[str]] = {}
    for addr, inst in state.resources.items():
        for dep in inst.dependencies:
            recorded_dependents.setdefault(dep, set()).add(addr)

    def after(op: Operation, others: list[Operation]) -> None:
        for other in others:
            if other.key != op.key and other.key not in op.deps:
                op.deps.append(other.key)

    for op in ops.values():
        addr = op.address
        if op.creates or isinstance(op, RecordDependenciesOperation):
            after(op, [creating[d] for d in op.change.dependencies if d in creating])
            after(op, [rewriting[d] for d in op.change.dependencies if d in rewriting])
            if isinstance(op, ReplaceCreateOperation) and not op.change.create_before_destroy:
                after(op, [o for o in by_address[addr] if isinstance(o, ReplaceDestroyOperation)])
            continue

        cbd_destroy = isinstance(op, DeleteDeposedOperation) or (
            isinstance(op, ReplaceDestroyOperation) and op.change.create_before_destroy
        )
        if cbd_destroy:
            if addr in creating:
                after(op, [creating[addr]])
            for dependent in sorted(desired_dependents.get(addr, set())):
                after(op, [creating[dependent]])
            for dependent in sorted(recorded_dependents.get(addr, set())):
                after(op, [o for o in by_address.get(dependent, []) if _is_removal(o)])
        elif isinstance(op, ReplaceDestroyOperation):
            for dependent in sorted(recorded_dependents.get(addr, set())):
                after(
                    op,
                    [
                        o
                        for o in by_address.get(dependent, [])
                        if _is_removal(o) and not isinstance(o, DeleteDeposedOperation)
                    ],
                )
        else:
            # Live delete of a resource that left the declaration.
            after(op, [o for o in by_address[addr] if isinstance(o, DeleteDeposedOperation)])
            for dependent in sorted(recorded_dependents.get(addr, set())):
                after(
                    op,
                    [
                        o
                        for o in by_address.get(dependent, [])
                        if not isinstance(o, RecordDependenciesOperation)
                    ],
                )

    # Validates acyclicity; raises CycleError with the offending path.
    DependencyGraph(ops, {k: op.deps for k, op in ops.items()}).topological_order()
    return ops


def _is_removal(op: Operation) -> bool:
    """Operations that make an old object stop existing (and so stop referencing)."""
    if isinstance(op, DeleteOperation | DeleteDeposedOperation):
        return True
    return isinstance(op, ReplaceDestroyOperation) and not op.change.create_before_destroy
