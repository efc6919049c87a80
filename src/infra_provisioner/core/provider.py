"""Provider boundary and the built-in local (simulated) cloud."""

from __future__ import annotations

import contextlib
import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any

from infra_provisioner.core.errors import ProviderPermanentError

logger = logging.getLogger(__name__)


class Provider:
    """Base class for provider integrations.

    A provider translates generic resource operations into calls against a
    real cloud API. The resource type is passed on every call so a concrete
    integration can dispatch; the engine never builds request shapes itself.

    Raise :class:`~infra_provisioner.core.errors.ProviderTransientError` for
    failures worth retrying (throttling, eventual consistency) and
    :class:`~infra_provisioner.core.errors.ProviderPermanentError` for the rest.
    """

    name: str = "provider"

    def create(self, resource_type: str, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Create a resource. Return ``(id, attributes)`` as reported by the cloud."""
        raise NotImplementedError

    def update(self, resource_type: str, id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Update a resource in place. Return the new attributes."""
        raise NotImplementedError

    def delete(self, resource_type: str, id: str) -> None:
        """Delete a resource. Deleting an already-absent resource is not an error."""
        raise NotImplementedError

    def describe(self, resource_type: str, id: str) -> dict[str, Any] | None:
        """Read a resource. Return ``None`` if it no longer exists."""
        raise NotImplementedError

    def is_ready(self, resource_type: str, attributes: dict[str, Any]) -> bool:
        """Whether a freshly created or updated resource is usable by dependents."""
        _ = resource_type, attributes
        return True


_ID_PREFIXES: dict[str, str] = {
    "aws_vpc": "vpc",
    "aws_subnet": "subnet",
    "aws_internet_gateway": "igw",
    "aws_eip": "eipalloc",
    "aws_nat_gateway": "nat",
    "aws_route_table": "rtb",
    "aws_route_table_association": "rtbassoc",
    "aws_security_group": "sg",
    "aws_instance": "i",
    "aws_launch_template": "lt",
    "aws_autoscaling_group": "asg",
    "aws_lb": "lb",
    "aws_lb_target_group": "tg",
    "aws_lb_listener": "lbl",
    "aws_db_subnet_group": "dbsubnet",
    "aws_db_instance": "db",
    "aws_secretsmanager_secret": "secret",
}

# Resources whose id is one of their own (unique) attributes.
_NATURAL_IDS: dict[str, str] = {
    "aws_s3_bucket": "bucket",
    "aws_cloudwatch_log_group": "log_group_name",
}

_DB_PORTS = {"mysql": 3306, "mariadb": 3306, "postgres": 5432}


class LocalProvider(Provider):
    """A simulated cloud kept in a JSON file (or in memory when *path* is None).

    Useful for dry runs, demos and tests. Objects get AWS-looking ids and the
    computed outputs (ARNs, endpoints, IPs) a real cloud would report.

    ``ready_after`` simulates slow provisioning: a new or updated object
    reports ``status: pending`` for that many ``describe`` calls before it
    becomes ``available``.
    """

    name = "local"

    def __init__(
        self,
        path: Path | None = None,
        *,
        region: str = "local-1",
        account_id: str = "000000000000",
        ready_after: int = 0,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._region = region
        self._account_id = account_id
        self._ready_after = ready_after
        self._mutex = threading.Lock()
        self._objects: dict[str, dict[str, Any]] = {}
        self._pending: dict[str, int] = {}
        self._serial = 0
        if self._path is not None and self._path.exists():
            self._load()

    # ── Provider API ────────────────────────────────────────────────

    def create(self, resource_type: str, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        with self._mutex:
            natural = _NATURAL_IDS.get(resource_type)
            if natural is not None:
                id = str(attributes.get(natural, ""))
                if not id:
                    raise ProviderPermanentError(f"{resource_type}: missing {natural}")
            else:
                prefix = _ID_PREFIXES.get(resource_type, resource_type.removeprefix("aws_"))
                id = f"{prefix}-{uuid.uuid4().hex[:17]}"
            if id in self._objects:
                raise ProviderPermanentError(f"{resource_type} {id} already exists")

            attrs = copy.deepcopy(attributes)
            attrs.update(self._computed(resource_type, id, attrs))
            attrs["status"] = "pending" if self._ready_after else "available"
            self._objects[id] = {"type": resource_type, "attributes": attrs}
            self._pending[id] = self._ready_after
            self._save()
            logger.debug("local: created %s %s", resource_type, id)
            return id, copy.deepcopy(attrs)

    def update(self, resource_type: str, id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        with self._mutex:
            obj = self._lookup(resource_type, id)
            if obj is None:
                raise ProviderPermanentError(f"{resource_type} {id} not found")
            computed = {k: v for k, v in obj["attributes"].items() if k not in attributes}
            attrs = {**computed, **copy.deepcopy(attributes)}
            if resource_type == "aws_launch_template":
                attrs["latest_version"] = int(computed.get("latest_version", 1)) + 1
            attrs["status"] = "pending" if self._ready_after else "available"
            obj["attributes"] = attrs
            self._pending[id] = self._ready_after
            self._save()
            logger.debug("local: updated %s %s", resource_type, id)
            return copy.deepcopy(attrs)

    def delete(self, resource_type: str, id: str) -> None:
        with self._mutex:
            if self._lookup(resource_type, id) is None:
                logger.debug("local: %s %s already gone", resource_type, id)
                return
            del self._objects[id]
            self._pending.pop(id, None)
            self._save()
            logger.debug("local: deleted %s %s", resource_type, id)

    def describe(self, resource_type: str, id: str) -> dict[str, Any] | None:
        with self._mutex:
            obj = self._lookup(resource_type, id)
            if obj is None:
                return None
            remaining = self._pending.get(id, 0)
            if remaining > 0:
                self._pending[id] = remaining - 1
            elif obj["attributes"].get("status") == "pending":
                obj["attributes"]["status"] = "available"
                self._save()
            return copy.deepcopy(obj["attributes"])

    def is_ready(self, resource_type: str, attributes: dict[str, Any]) -> bool:
        return attributes.get("status", "available") == "available"

    # ── Inspection helpers ──────────────────────────────────────────

    def ids(self, resource_type: str | None = None) -> list[str]:
        with self._mutex:
            return sorted(
                id
                for id, obj in self._objects.items()
                if resource_type is None or obj["type"] == resource_type
            )

    def tamper(self, id: str, **changes: Any) -> None:
        """Change an object behind the engine's back (simulates console edits)."""
        with self._mutex:
            self._objects[id]["attributes"].update(changes)
            self._save()

    def forget(self, id: str) -> None:
        """Remove an object behind the engine's back."""
        with self._mutex:
            self._objects.pop(id, None)
            self._save()

    # ── Internals ───────────────────────────────────────────────────

    def _lookup(self, resource_type: str, id: str) -> dict[str, Any] | None:
        obj = self._objects.get(id)
        if obj is None or obj["type"] != resource_type:
            return None
        return obj

    def _arn(self, resource_type: str, id: str) -> str:
        service = resource_type.removeprefix("aws_").split("_", 1)[0]
        return f"arn:aws:{service}:{self._region}:{self._account_id}:{resource_type}/{id}"

    def _fake_ip(self, prefix: str) -> str:
        self._serial += 1
        return f"{prefix}.{(self._serial >> 8) & 0xFF}.{self._serial & 0xFF}"

    def _computed(self, resource_type: str, id: str, attrs: dict[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {"arn": self._arn(resource_type, id)}
        match resource_type:
            case "aws_vpc":
                out["default_route_table_id"] = f"rtb-{uuid.uuid4().hex[:17]}"
            case "aws_eip":
                out["allocation_id"] = id
                out["public_ip"] = self._fake_ip("198.51")
            case "aws_instance":
                out["private_ip"] = self._fake_ip("10.0")
                out["public_ip"] = self._fake_ip("203.0")
            case "aws_launch_template":
                out["latest_version"] = 1
            case "aws_lb":
                out["dns_name"] = f"{attrs.get('name', id)}-{id[-8:]}.{self._region}.elb.local"
                out["zone_id"] = "ZLOCAL000000"
            case "aws_lb_target_group":
                out["arn_suffix"] = f"targetgroup/{attrs.get('name', id)}/{id[-8:]}"
            case "aws_db_instance":
                port = _DB_PORTS.get(str(attrs.get("engine")), 3306)
                address = f"{attrs.get('name', id)}.{id[-8:]}.{self._region}.rds.local"
                out.update(address=address, port=port, endpoint=f"{address}:{port}")
            case "aws_s3_bucket":
                out["bucket_domain_name"] = f"{id}.s3.local"
        return out

    def _load(self) -> None:
        assert self._path is not None
        data = json.loads(self._path.read_text(encoding="utf-8"))
        self._objects = data.get("objects", {})
        self._serial = int(data.get("serial", 0))

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps({"serial": self._serial, "objects": self._objects}, indent=2)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=str(self._path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content + "\n")
            tmp_file.replace(self._path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
