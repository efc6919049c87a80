"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from infra_provisioner import __version__
from infra_provisioner.core.state import (
    State,
    StateStore,
    compute_attributes_hash,
    compute_state_digest,
)
from infra_provisioner.engine.builder import build_graph
from infra_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    StalePlanError,
    StateStackMismatchError,
)
from infra_provisioner.engine.executor import DEFAULT_PARALLELISM, Executor
from infra_provisioner.engine.lock import DEFAULT_HEARTBEAT_INTERVAL, DEFAULT_STALE_AFTER, StateLock
from infra_provisioner.engine.operations import ApplyContext
from infra_provisioner.engine.planner import plan_changes
from infra_provisioner.engine.retry import RetryPolicy
from infra_provisioner.engine.types import ApplyResult, Plan, PlanMetadata, ResourceDrift

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from infra_provisioner.core.provider import Provider
    from infra_provisioner.engine.builder import ResourceGraph
    from infra_provisioner.engine.executor import ProgressEvent
    from infra_provisioner.engine.registry import ResourceTypeRegistry
    from infra_provisioner.engine.types import ResourceChange
    from infra_provisioner.resources.base import Resource

    ProgressCallback = Callable[[ResourceChange, ProgressEvent], None]

logger = logging.getLogger(__name__)


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _compute_config_digest(resources: Sequence[Resource]) -> str:
    items = [
        {
            "address": r.address,
            "resource_type": r.resource_type,
            "desired": r.model_dump(mode="json", exclude_none=True, exclude={"address"}),
        }
        for r in resources
    ]
    items.sort(key=lambda x: x["address"])
    return _sha256_hex(_canonical_json(items))


class ProvisioningEngine:
    """Terraform-like plan/apply engine for declared infrastructure."""

    def __init__(
        self,
        *,
        provider: Provider,
        stack: str,
        state_path: Path,
        registry: ResourceTypeRegistry,
        parallelism: int = DEFAULT_PARALLELISM,
        retry: RetryPolicy | None = None,
        ready_timeout: float = 300.0,
        lock_stale_after: float = DEFAULT_STALE_AFTER,
        lock_heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        self._provider = provider
        self._stack = stack
        self._state_path = state_path
        self._registry = registry
        self._parallelism = parallelism
        self._retry = retry or RetryPolicy()
        self._ready_timeout = ready_timeout
        self._lock_stale_after = lock_stale_after
        self._lock_heartbeat_interval = lock_heartbeat_interval

    @property
    def stack(self) -> str:
        return self._stack

    @property
    def state_path(self) -> Path:
        return self._state_path

    @property
    def provider(self) -> Provider:
        return self._provider

    @property
    def registry(self) -> ResourceTypeRegistry:
        return self._registry

    def _lock(self, operation: str) -> StateLock:
        return StateLock(
            self._state_path,
            operation=operation,
            stale_after=self._lock_stale_after,
            heartbeat_interval=self._lock_heartbeat_interval,
        )

    def _load_state(self) -> State:
        state = State.load_or_create(self._state_path, stack=self._stack)
        if state.stack != self._stack:
            raise StateStackMismatchError(self._stack, state.stack)
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    def _load_state_for_apply(self, plan: Plan) -> State:
        if self._state_path.exists():
            return self._load_state()
        # If no state exists, bootstrap from the plan metadata (saved-plan semantics).
        return State(
            stack=self._stack,
            lineage=plan.metadata.state_lineage,
            serial=plan.metadata.state_serial,
        )

    def _describe(self, resource_type: str, id: str, address: str) -> dict[str, Any] | None:
        return self._retry.call(
            lambda: self._provider.describe(resource_type, id), what=f"describe {address}"
        )

    def _refresh_state_in_place(self, state: State) -> bool:
        logger.debug("Refreshing state from provider %s", self._provider.name)
        changed = False

        for address, inst in list(state.resources.items()):
            attrs = self._describe(inst.resource_type, inst.id, address)
            if attrs is None:
                if inst.deposed:
                    # Keep the record so its deposed objects still get cleaned up.
                    logger.warning("%s (%s) no longer exists", address, inst.id)
                    continue
                logger.warning("%s (%s) no longer exists; dropping it from state", address, inst.id)
                del state.resources[address]
                changed = True
                continue

            new_hash = compute_attributes_hash(attrs)
            if attrs != inst.attributes or new_hash != inst.attributes_hash:
                inst.attributes = attrs
                inst.attributes_hash = new_hash
                inst.updated_at = datetime.now(UTC)
                changed = True

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from the provider. Returns (pre_refresh, post_refresh)."""
        with self._lock("refresh"):
            state = self._load_state()
            snapshot = state.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                StateStore(self._state_path, self._stack).replace_state(state)
            return snapshot, state

    def drift(self) -> list[ResourceDrift]:
        """Compare recorded attributes with what the provider reports, without writing."""
        state = self._load_state()
        report: list[ResourceDrift] = []
        for address, inst in sorted(state.resources.items()):
            attrs = self._describe(inst.resource_type, inst.id, address)
            if attrs is None:
                report.append(
                    ResourceDrift(
                        address=address,
                        resource_type=inst.resource_type,
                        id=inst.id,
                        status="deleted",
                    )
                )
                continue
            diff = {
                k: {"from": inst.attributes.get(k), "to": attrs.get(k)}
                for k in sorted(set(inst.attributes) | set(attrs))
                if inst.attributes.get(k) != attrs.get(k)
            }
            if diff:
                report.append(
                    ResourceDrift(
                        address=address,
                        resource_type=inst.resource_type,
                        id=inst.id,
                        status="modified",
                        diff=diff,
                    )
                )
        logger.info("Drift check: %d of %d resources drifted", len(report), len(state.resources))
        return report

    def validate(self, resources: Sequence[Resource]) -> ResourceGraph:
        """Build the dependency graph without touching state or the provider."""
        return build_graph(resources, self._registry)

    def plan(
        self, resources: Sequence[Resource], *, destroy: bool = False, refresh: bool = True
    ) -> Plan:
        logger.info(
            "Planning %d resources (destroy=%s, refresh=%s)", len(resources), destroy, refresh
        )
        # Build first so declaration errors abort before any provider call.
        graph = build_graph([] if destroy else resources, self._registry)

        # Only lock when refresh may write state.
        lock_cm = self._lock("plan") if refresh else contextlib.nullcontext()
        with lock_cm:
            state = self._load_state()

            if refresh and self._refresh_state_in_place(state):
                StateStore(self._state_path, self._stack).replace_state(state)

            changes = plan_changes(graph, state, destroy=destroy)

            metadata = PlanMetadata(
                stack=self._stack,
                created_at=datetime.now(UTC),
                destroy=destroy,
                refresh=refresh,
                state_lineage=state.lineage,
                state_serial=state.serial,
                state_digest=compute_state_digest(state),
                config_digest=_compute_config_digest([] if destroy else resources),
                engine_version=__version__,
            )

            return Plan(metadata=metadata, changes=changes)

    def apply(
        self,
        plan: Plan,
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> ApplyResult:
        """Apply *plan*.

        Raises:
            StalePlanError: State changed since the plan was computed.
            ApplyError: Some operations failed or were blocked.
            ApplyCanceled: The run was interrupted; in-flight work was committed.
        """
        with self._lock("apply"):
            state = self._load_state_for_apply(plan)
            if plan.metadata.stack != self._stack:
                raise StateStackMismatchError(self._stack, plan.metadata.stack)

            # Stale plan detection
            if state.lineage != plan.metadata.state_lineage:
                raise StalePlanError("State lineage changed; re-run plan")
            if state.serial != plan.metadata.state_serial:
                raise StalePlanError("State serial changed; re-run plan")
            if compute_state_digest(state) != plan.metadata.state_digest:
                raise StalePlanError("State digest changed; re-run plan")

            store = StateStore(self._state_path, self._stack)
            store.adopt(state)
            ctx = ApplyContext(
                provider=self._provider,
                store=store,
                registry=self._registry,
                retry=self._retry,
                ready_timeout=self._ready_timeout,
            )
            executor = Executor(
                ctx, parallelism=self._parallelism, cancel=cancel, progress=progress
            )
            result = executor.run(plan.changes, state.model_copy(deep=True))

        summary = result.summary()
        logger.info("Apply finished: %s", {k: v for k, v in summary.items() if v})
        if executor.canceled:
            raise ApplyCanceled(result)
        if not result.ok:
            raise ApplyError(result)
        return result
