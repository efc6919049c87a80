"""Advisory state locking.

The lock is a sidecar file (``<state>.lock``) created exclusively. Its JSON
body identifies the holder and carries a heartbeat timestamp refreshed by a
background thread while the lock is held. A crashed holder leaves the file
behind: the next run reports it (flagged stale once the heartbeat is older
than ``stale_after``) but never removes it on its own. An operator releases
it with :meth:`StateLock.force_release` after checking the lock id.
"""

from __future__ import annotations

import contextlib
import getpass
import json
import logging
import os
import socket
import threading
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from infra_provisioner.engine.errors import LockHeldError, StateLockError

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = 300.0
DEFAULT_HEARTBEAT_INTERVAL = 30.0


def lock_path_for(state_path: Path) -> Path:
    return Path(str(state_path) + ".lock")


def read_lock_info(state_path: Path) -> dict[str, Any] | None:
    """Return the current lock holder info, or ``None`` when unlocked."""
    try:
        raw = lock_path_for(state_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        info = json.loads(raw)
    except json.JSONDecodeError:
        # Holder crashed between create and first write.
        return {"id": "unknown", "holder": "unknown", "heartbeat_at": None}
    return info if isinstance(info, dict) else {"id": "unknown", "holder": "unknown"}


def is_stale(info: dict[str, Any], *, stale_after: float = DEFAULT_STALE_AFTER) -> bool:
    """Whether the holder's last heartbeat is older than *stale_after* seconds."""
    heartbeat = info.get("heartbeat_at")
    if not heartbeat:
        return True
    try:
        last = datetime.fromisoformat(heartbeat)
    except (TypeError, ValueError):
        return True
    return datetime.now(UTC) - last > timedelta(seconds=stale_after)


class StateLock:
    """Exclusive advisory lock for a state file."""

    def __init__(
        self,
        state_path: Path,
        *,
        operation: str = "",
        stale_after: float = DEFAULT_STALE_AFTER,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        self._state_path = Path(state_path)
        self._lock_path = lock_path_for(self._state_path)
        self._operation = operation
        self._stale_after = stale_after
        self._heartbeat_interval = heartbeat_interval
        self._info: dict[str, Any] | None = None
        self._stop = threading.Event()
        self._heartbeat: threading.Thread | None = None

    @property
    def lock_id(self) -> str | None:
        return self._info["id"] if self._info else None

    def __enter__(self) -> StateLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def acquire(self) -> None:
        """Create the lock file or raise ``LockHeldError`` if someone holds it."""
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        now = datetime.now(UTC).isoformat()
        info = {
            "id": str(uuid.uuid4()),
            "holder": f"{_user()}@{socket.gethostname()}",
            "pid": os.getpid(),
            "operation": self._operation,
            "acquired_at": now,
            "heartbeat_at": now,
        }
        try:
            fd = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            held = read_lock_info(self._state_path) or {}
            raise LockHeldError(held, stale=is_stale(held, stale_after=self._stale_after)) from None
        except OSError as e:
            raise StateLockError(f"Cannot create lock file {self._lock_path}: {e}") from e

        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(info, f)
        self._info = info
        logger.debug("Acquired state lock %s (%s)", info["id"], self._lock_path)

        if self._heartbeat_interval > 0:
            self._stop.clear()
            self._heartbeat = threading.Thread(
                target=self._beat, name="state-lock-heartbeat", daemon=True
            )
            self._heartbeat.start()

    def release(self) -> None:
        if self._info is None:
            return
        self._stop.set()
        if self._heartbeat is not None:
            self._heartbeat.join()
            self._heartbeat = None
        current = read_lock_info(self._state_path)
        if current is not None and current.get("id") == self._info["id"]:
            with contextlib.suppress(FileNotFoundError):
                self._lock_path.unlink()
        else:
            logger.warning("State lock %s was force-released while held", self._info["id"])
        logger.debug("Released state lock %s", self._info["id"])
        self._info = None

    def _beat(self) -> None:
        while not self._stop.wait(self._heartbeat_interval):
            self._touch()

    def _touch(self) -> None:
        if self._info is None:
            return
        current = read_lock_info(self._state_path)
        if current is None or current.get("id") != self._info["id"]:
            # Someone force-released us; do not resurrect the file.
            return
        self._info["heartbeat_at"] = datetime.now(UTC).isoformat()
        tmp = self._lock_path.with_name(f".{self._lock_path.name}.{os.getpid()}")
        tmp.write_text(json.dumps(self._info), encoding="utf-8")
        tmp.replace(self._lock_path)

    @staticmethod
    def force_release(state_path: Path, lock_id: str) -> dict[str, Any]:
        """Remove a lock left behind by a crashed run. Operator action only.

        Raises:
            StateLockError: If the state is not locked or *lock_id* does not match.
        """
        info = read_lock_info(state_path)
        if info is None:
            raise StateLockError("State is not locked")
        if info.get("id") != lock_id:
            raise StateLockError(f"Lock id mismatch: state is locked with id {info.get('id')}")
        lock_path_for(state_path).unlink()
        logger.warning("Force-released state lock %s held by %s", lock_id, info.get("holder"))
        return info


def _user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"
