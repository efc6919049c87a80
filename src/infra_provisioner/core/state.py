"""State management for tracking provisioned resources."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from infra_provisioner.core.errors import CorruptStateError

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


def _canonical_json(obj: Any) -> str:
    # Stable encoding for hashes/digests. `default=str` keeps it robust for
    # datetimes/paths/etc while staying deterministic enough for our use.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's stored attributes."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResourceInstance(BaseModel):
    """A tracked resource record in the state file.

    Attributes:
        address: Unique resource address (e.g., "aws_subnet.public_a")
        resource_type: Type of the resource (e.g., "aws_subnet")
        name: Resource name (e.g., "public_a")
        id: Provider-assigned identifier
        attributes: Last-applied attribute values as reported by the provider
        attributes_hash: SHA256 hash for change detection
        dependencies: Addresses this resource depended on when last applied
        deposed: Ids of replaced objects that still have to be deleted
        created_at: When the resource was created
        updated_at: When the resource was last updated
    """

    address: str
    resource_type: str
    name: str
    id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    deposed: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def get(self, attribute: str) -> Any:
        """Look up an attribute; ``id`` always resolves to the provider id."""
        if attribute == "id":
            return self.id
        return self.attributes.get(attribute)


class State(BaseModel):
    """Terraform-style state file for tracking provisioned resources.

    Attributes:
        version: State file format version
        stack: Name of the stack this state belongs to
        serial: Incremented on every persisted change
        lineage: Random id fixed when the state is first created
        resources: Mapping of resource addresses to records
    """

    version: int = 1
    stack: str
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceInstance] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        content = json.dumps(data, indent=2, sort_keys=True) + "\n"

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        """Load state from a JSON file.

        Raises:
            CorruptStateError: If the file is not valid JSON or not a valid state.
        """
        try:
            state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        except (PydanticValidationError, UnicodeDecodeError) as exc:
            raise CorruptStateError(path, str(exc)) from exc
        for address, inst in state.resources.items():
            if inst.address != address:
                raise CorruptStateError(path, f"record key {address} holds {inst.address}")
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path, stack: str) -> "State":
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("Created new state for stack %s", stack)
        return cls(stack=stack)


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection. Timestamps are excluded so that they never
    force a re-plan on their own.
    """
    resources = []
    for address, inst in sorted(state.resources.items(), key=lambda kv: kv[0]):
        resources.append(
            {
                "address": address,
                "resource_type": inst.resource_type,
                "name": inst.name,
                "id": inst.id,
                "attributes_hash": inst.attributes_hash,
                "dependencies": sorted(inst.dependencies),
                "deposed": sorted(inst.deposed),
            }
        )

    digestable = {
        "version": state.version,
        "stack": state.stack,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class StateStore:
    """Durable, thread-safe access to one state file.

    Every mutation is persisted immediately and atomically, so a crash in the
    middle of a run loses at most the operations that were still in flight.
    Cross-process exclusion is the job of :class:`~infra_provisioner.engine.lock.StateLock`.
    """

    def __init__(self, path: Path, stack: str) -> None:
        self._path = Path(path)
        self._stack = stack
        self._mutex = threading.RLock()
        self._state: State | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def state(self) -> State:
        if self._state is None:
            return self.load()
        return self._state

    def load(self) -> State:
        """Load the state from disk (empty state when no file exists yet)."""
        with self._mutex:
            self._state = State.load_or_create(self._path, stack=self._stack)
            logger.debug(
                "State loaded: serial=%d, %d resources",
                self._state.serial,
                len(self._state.resources),
            )
            return self._state

    def adopt(self, state: State) -> None:
        """Use *state* as the in-memory state without persisting it."""
        with self._mutex:
            self._state = state

    def get(self, address: str) -> ResourceInstance | None:
        with self._mutex:
            inst = self.state.resources.get(address)
            return inst.model_copy(deep=True) if inst is not None else None

    def snapshot(self) -> State:
        """Deep copy of the current in-memory state."""
        with self._mutex:
            return self.state.model_copy(deep=True)

    def commit_record(self, record: ResourceInstance) -> None:
        """Insert or replace one record and persist the whole state atomically."""
        with self._mutex:
            state = self.state
            prior = state.resources.get(record.address)
            if prior is not None:
                record.created_at = prior.created_at
            record.attributes_hash = compute_attributes_hash(record.attributes)
            record.updated_at = _now()
            state.resources[record.address] = record
            self._persist(state)
        logger.debug("Committed %s (id=%s)", record.address, record.id)

    def remove_record(self, address: str) -> None:
        """Remove one record and persist atomically. Missing records are a no-op."""
        with self._mutex:
            state = self.state
            if state.resources.pop(address, None) is None:
                return
            self._persist(state)
        logger.debug("Removed %s", address)

    def replace_state(self, state: State) -> None:
        """Persist *state* wholesale (used after a refresh)."""
        with self._mutex:
            self._state = state
            self._persist(state)

    def _persist(self, state: State) -> None:
        state.serial += 1
        state.save(self._path)
