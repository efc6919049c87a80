"""Engine types (plan, changes, metadata, apply results)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REPLACE = "replace"
    NOOP = "no-op"


class PlanMetadata(BaseModel):
    stack: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    refresh: bool
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    """One planned change.

    ``desired`` is the declaration as written (references unresolved),
    ``planned`` the attributes the provider will receive as far as they are
    known at plan time, and ``prior`` the last-applied attributes from state.
    ``deposed_id`` is set only for deletes of objects left behind by an
    interrupted create-before-destroy replacement.
    """

    address: str
    resource_type: str
    action: Action
    id: str | None = None
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    replace_reasons: list[str] = Field(default_factory=list)
    create_before_destroy: bool = False
    rank: int = 0
    dependencies: list[str] = Field(default_factory=list)
    deposed_id: str | None = None

    @property
    def key(self) -> str:
        """Operation key; deposed cleanups get their own key next to the live object."""
        if self.deposed_id is not None:
            return f"{self.address}#{self.deposed_id}"
        return self.address


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        return counts

    def has_changes(self) -> bool:
        return any(c.action != Action.NOOP for c in self.changes)

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class OperationFailure(BaseModel):
    address: str
    operation: str
    error: str
    attempts: int = 1


class BlockedOperation(BaseModel):
    address: str
    operation: str
    cause: str


class ApplyResult(BaseModel):
    """Outcome of an apply.

    ``applied`` holds every change whose operations all succeeded. A change
    whose operations failed is listed in ``failed``; operations that were
    never attempted because a predecessor failed are ``blocked`` (with the
    address of the root cause), and those skipped by a cancellation are
    ``canceled``.
    """

    applied: list[ResourceChange] = Field(default_factory=list)
    failed: list[OperationFailure] = Field(default_factory=list)
    blocked: list[BlockedOperation] = Field(default_factory=list)
    canceled: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.failed or self.blocked or self.canceled)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.applied:
            counts[c.action.value] += 1
        counts["failed"] = len(self.failed)
        counts["blocked"] = len(self.blocked)
        counts["canceled"] = len(self.canceled)
        return counts


class ResourceDrift(BaseModel):
    """Difference between the recorded state and what the provider reports."""

    address: str
    resource_type: str
    id: str
    status: Literal["modified", "deleted"]
    diff: dict[str, Any] = Field(default_factory=dict)
