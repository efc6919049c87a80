"""Instance health endpoint.

Served by ``infra-provisioner bootstrap health`` under systemd, independent of
how the bootstrap run went. ``GET /health`` reports the host's view of
itself; load balancer target groups point their health checks at it.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import urlparse

import requests

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
DEFAULT_BIND = "0.0.0.0"
PROC_UPTIME = Path("/proc/uptime")


def service_active(name: str) -> bool:
    """Whether systemd reports unit *name* as active."""
    try:
        proc = subprocess.run(
            ["systemctl", "is-active", "--quiet", name],
            capture_output=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return proc.returncode == 0


def lookup_instance_id(metadata_url: str, *, timeout: float = 2.0) -> str:
    """Best-effort instance id from the metadata service; ``"unknown"`` when unreachable."""
    base = metadata_url.rstrip("/")
    try:
        token = requests.put(
            f"{base}/api/token",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": "60"},
            timeout=timeout,
        )
        headers = {"X-aws-ec2-metadata-token": token.text} if token.ok else {}
        resp = requests.get(f"{base}/meta-data/instance-id", headers=headers, timeout=timeout)
        resp.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.warning("Instance metadata unavailable: %s", e)
        return "unknown"
    return resp.text.strip()


@dataclass
class HealthStatus:
    environment: str
    instance_id: str = "unknown"
    services: list[str] = field(default_factory=lambda: ["docker"])
    checker: Callable[[str], bool] = service_active
    clock: Callable[[], float] = time.monotonic
    started_at: float = field(default_factory=time.monotonic)

    def uptime_seconds(self) -> float:
        try:
            return float(PROC_UPTIME.read_text(encoding="utf-8").split()[0])
        except (OSError, ValueError, IndexError):
            return self.clock() - self.started_at

    def document(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "environment": self.environment,
            "instance_id": self.instance_id,
            "uptime": f"{self.uptime_seconds():.0f} seconds",
            "services": {name: self.checker(name) for name in self.services},
        }


class HealthHandler(BaseHTTPRequestHandler):
    """Request handler; ``status`` is bound per server by :class:`HealthServer`."""

    status: ClassVar[HealthStatus | None] = None

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def send_json(self, data: dict[str, Any], status: int = 200) -> None:
        body = json.dumps(data, indent=2).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:
        path = urlparse(self.path).path
        if path == "/health":
            if self.status is None:
                self.send_json({"error": "Health status not configured"}, 500)
                return
            self.send_json(self.status.document())
            return
        if path == "/":
            self.send_response(302)
            self.send_header("Location", "/health")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        self.send_json({"error": "Not found", "path": path}, 404)


class HealthServer:
    """Threaded HTTP server for the health endpoint."""

    def __init__(
        self,
        status: HealthStatus,
        *,
        bind: str = DEFAULT_BIND,
        port: int = DEFAULT_PORT,
    ) -> None:
        handler = type("BoundHealthHandler", (HealthHandler,), {"status": status})
        self.httpd = ThreadingHTTPServer((bind, port), handler)

    @property
    def port(self) -> int:
        return self.httpd.server_address[1]

    def serve_forever(self) -> None:
        logger.info("Health endpoint listening on port %d", self.port)
        try:
            self.httpd.serve_forever()
        except KeyboardInterrupt:
            logger.info("Health endpoint shutting down")
        finally:
            self.httpd.server_close()

    def shutdown(self) -> None:
        self.httpd.shutdown()
