"""Parallel execution of the apply operation graph.

Ready operations run on a bounded ``ThreadPoolExecutor``. An operation starts
only once every operation it depends on has succeeded. When one fails, every
operation that transitively depends on it is reported as blocked and never
attempted; independent branches keep going. Each operation commits its own
state record, so state always reflects exactly what was applied.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Literal

from infra_provisioner.engine.errors import RetryExhaustedError
from infra_provisioner.engine.graph import DependencyGraph
from infra_provisioner.engine.operations import build_operations
from infra_provisioner.engine.types import ApplyResult, BlockedOperation, OperationFailure

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from infra_provisioner.core.state import State
    from infra_provisioner.engine.operations import ApplyContext, Operation
    from infra_provisioner.engine.types import ResourceChange

logger = logging.getLogger(__name__)

ProgressEvent = Literal["start", "done", "failed"]

DEFAULT_PARALLELISM = 10


class Executor:
    """Runs planned changes against a provider.

    Args:
        ctx: Provider, state store, registry and retry policy.
        parallelism: Maximum number of operations in flight.
        cancel: Set it (or press Ctrl-C) to stop starting new operations.
            In-flight operations finish and commit; the rest are reported
            as canceled.
        progress: Called with ``"start"`` when a change's first operation
            starts, ``"done"`` once all of its operations succeeded and
            ``"failed"`` when one of them failed.
    """

    def __init__(
        self,
        ctx: ApplyContext,
        *,
        parallelism: int = DEFAULT_PARALLELISM,
        cancel: threading.Event | None = None,
        progress: Callable[[ResourceChange, ProgressEvent], None] | None = None,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self._ctx = ctx
        self._parallelism = parallelism
        self._cancel = cancel or threading.Event()
        self._progress = progress

    @property
    def canceled(self) -> bool:
        return self._cancel.is_set()

    def run(self, changes: Sequence[ResourceChange], state: State) -> ApplyResult:
        ops = build_operations(changes, state)
        rank = {c.key: c.rank for c in changes}
        priorities = {k: rank.get(op.change.key, 0) for k, op in ops.items()}
        order = DependencyGraph(
            ops, {k: op.deps for k, op in ops.items()}, priorities=priorities
        ).topological_order()
        position = {k: i for i, k in enumerate(order)}
        logger.info("Applying %d operations (parallelism=%d)", len(ops), self._parallelism)

        waiting = {k: len(op.deps) for k, op in ops.items()}
        dependents: dict[str, list[str]] = {k: [] for k in ops}
        for k, op in ops.items():
            for dep in op.deps:
                dependents[dep].append(k)
        ops_left = {c.key: 0 for c in changes}
        for op in ops.values():
            ops_left[op.change.key] += 1

        result = ApplyResult()
        started: set[str] = set()
        finished: set[str] = set()
        ready = sorted((k for k, n in waiting.items() if n == 0), key=position.__getitem__)
        in_flight: dict[Future[None], str] = {}

        def block_dependents(root: str) -> None:
            cause = ops[root].address
            stack = list(dependents[root])
            while stack:
                key = stack.pop()
                if key in finished:
                    continue
                finished.add(key)
                op = ops[key]
                logger.warning("Skipping %s %s: blocked by %s", op.kind, op.address, cause)
                result.blocked.append(
                    BlockedOperation(address=op.address, operation=op.kind, cause=cause)
                )
                stack.extend(dependents[key])

        with ThreadPoolExecutor(
            max_workers=self._parallelism, thread_name_prefix="apply"
        ) as pool:
            while ready or in_flight:
                while ready and len(in_flight) < self._parallelism and not self.canceled:
                    key = ready.pop(0)
                    op = ops[key]
                    if op.reported and op.change.key not in started:
                        started.add(op.change.key)
                        self._notify(op.change, "start")
                    logger.debug("Starting %s %s", op.kind, op.address)
                    in_flight[pool.submit(op.run, self._ctx)] = key

                if not in_flight:
                    break

                try:
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    logger.warning(
                        "Interrupted; waiting for %d in-flight operations", len(in_flight)
                    )
                    self._cancel.set()
                    continue

                for future in sorted(done, key=lambda f: position[in_flight[f]]):
                    key = in_flight.pop(future)
                    op = ops[key]
                    finished.add(key)
                    error = future.exception()
                    if error is None:
                        logger.info("%s %s: done", op.kind, op.address)
                        ops_left[op.change.key] -= 1
                        if ops_left[op.change.key] == 0 and op.reported:
                            result.applied.append(op.change)
                            self._notify(op.change, "done")
                        for child in dependents[key]:
                            waiting[child] -= 1
                            if waiting[child] == 0 and child not in finished:
                                ready.append(child)
                        ready.sort(key=position.__getitem__)
                        continue

                    attempts = error.attempts if isinstance(error, RetryExhaustedError) else 1
                    logger.error("%s %s failed: %s", op.kind, op.address, error)
                    result.failed.append(
                        OperationFailure(
                            address=op.address,
                            operation=op.kind,
                            error=str(error),
                            attempts=attempts,
                        )
                    )
                    if op.reported:
                        self._notify(op.change, "failed")
                    block_dependents(key)
                    ready = [k for k in ready if k not in finished]

        for key in order:
            if key not in finished:
                address = ops[key].address
                if address not in result.canceled:
                    result.canceled.append(address)
        if result.canceled:
            logger.warning("Canceled before starting: %s", ", ".join(result.canceled))
        return result

    def _notify(self, change: ResourceChange, event: ProgressEvent) -> None:
        if self._progress is not None:
            self._progress(change, event)
