"""Plan and apply engine for declared infrastructure."""

from infra_provisioner.engine.builder import ResourceGraph, build_graph
from infra_provisioner.engine.engine import ProvisioningEngine
from infra_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    CycleError,
    DuplicateAddressError,
    EngineError,
    LockHeldError,
    PlanConflictError,
    ReadinessTimeoutError,
    RetryExhaustedError,
    StalePlanError,
    StateLockError,
    StateStackMismatchError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
    ValidationError,
)
from infra_provisioner.engine.executor import Executor
from infra_provisioner.engine.lock import StateLock
from infra_provisioner.engine.planner import KNOWN_AFTER_APPLY, plan_changes
from infra_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from infra_provisioner.engine.retry import RetryPolicy
from infra_provisioner.engine.types import (
    Action,
    ApplyResult,
    BlockedOperation,
    OperationFailure,
    Plan,
    PlanMetadata,
    ResourceChange,
    ResourceDrift,
)

__all__ = [
    "KNOWN_AFTER_APPLY",
    "Action",
    "ApplyCanceled",
    "ApplyError",
    "ApplyResult",
    "BlockedOperation",
    "CycleError",
    "DuplicateAddressError",
    "EngineError",
    "Executor",
    "LockHeldError",
    "OperationFailure",
    "Plan",
    "PlanConflictError",
    "PlanMetadata",
    "ProvisioningEngine",
    "ReadinessTimeoutError",
    "ResourceChange",
    "ResourceDrift",
    "ResourceGraph",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "RetryExhaustedError",
    "RetryPolicy",
    "StalePlanError",
    "StateLock",
    "StateLockError",
    "StateStackMismatchError",
    "UnknownResourceTypeError",
    "UnresolvedReferenceError",
    "ValidationError",
    "build_graph",
    "plan_changes",
]
