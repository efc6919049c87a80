"""Engine error types."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from infra_provisioner.engine.types import ApplyResult


class EngineError(Exception):
    """Base exception for engine errors."""


class UnknownResourceTypeError(EngineError):
    """Raised when a resource type has no registration."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateAddressError(EngineError):
    """Raised when multiple desired resources share the same address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Duplicate resource address: {address}")
        self.address = address


class CycleError(EngineError):
    """Raised when dependencies contain a cycle.

    ``cycle`` is the closed path, e.g. ``["a", "b", "a"]``.
    """

    def __init__(self, cycle: list[str]) -> None:
        msg = "Dependency cycle detected"
        if cycle:
            msg += f": {' -> '.join(cycle)}"
        super().__init__(msg)
        self.cycle = cycle


class UnresolvedReferenceError(EngineError):
    """Raised when a declaration references an undeclared resource or attribute."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        msg = "Unresolved references:\n" + "\n".join(f"  - {p}" for p in problems)
        super().__init__(msg)


class PlanConflictError(EngineError):
    """Raised when one resource is targeted by contradictory operations.

    The planner never produces such a plan; seeing this means a bug or a
    hand-edited plan file.
    """


class StateStackMismatchError(EngineError):
    """Raised when the on-disk state belongs to a different stack."""

    def __init__(self, expected: str, got: str) -> None:
        super().__init__(f"State stack mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class LockHeldError(StateLockError):
    """Raised when another run holds the state lock."""

    def __init__(self, info: dict[str, Any], *, stale: bool) -> None:
        self.info = info
        self.stale = stale
        holder = info.get("holder", "unknown")
        lock_id = info.get("id", "unknown")
        msg = f"State is locked by {holder} (lock id {lock_id})"
        if stale:
            msg += (
                f"; last heartbeat at {info.get('heartbeat_at', 'unknown')} looks stale. "
                f"If the holder is gone, run: infra-provisioner state unlock {lock_id}"
            )
        super().__init__(msg)


class ValidationError(EngineError):
    """One or more resources failed plan validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class ApplyError(EngineError):
    """Raised when an apply finishes with failed or blocked operations.

    Carries the full result (applied, failed, blocked) so callers can report
    every root cause. State already reflects every applied change.
    """

    def __init__(self, result: ApplyResult) -> None:
        self.result = result
        failed = ", ".join(f.address for f in result.failed) or "none"
        super().__init__(
            f"Apply failed on {len(result.failed)} resource(s) ({failed}); "
            f"{len(result.blocked)} blocked"
        )


class ApplyCanceled(EngineError):
    """Raised when an apply is canceled (e.g., Ctrl-C).

    In-flight operations were allowed to finish and were committed.
    """

    def __init__(self, result: ApplyResult | None = None) -> None:
        self.result = result
        super().__init__("Apply canceled")


class RetryExhaustedError(EngineError):
    """Raised when a transient provider failure persists through every attempt."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"{last_error} (gave up after {attempts} attempts)")
        self.last_error = last_error
        self.attempts = attempts


class ReadinessTimeoutError(EngineError):
    """Raised when a resource does not become ready within the configured timeout."""

    def __init__(self, address: str, timeout: float) -> None:
        super().__init__(f"{address} not ready after {timeout:g}s")
        self.address = address
        self.timeout = timeout
