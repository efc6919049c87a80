"""Tests for the instance health endpoint, served on an ephemeral port."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from infra_provisioner.bootstrap.health import HealthServer, HealthStatus, lookup_instance_id


@pytest.fixture
def status() -> HealthStatus:
    return HealthStatus(
        environment="prod",
        instance_id="i-123",
        services=["docker", "nginx"],
        checker=lambda name: name == "docker",
    )


@pytest.fixture
def base_url(status: HealthStatus):
    server = HealthServer(status, bind="127.0.0.1", port=0)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.port}"
    server.shutdown()
    thread.join(timeout=5)


class TestHealthStatus:
    def test_document(self, status: HealthStatus) -> None:
        doc = status.document()
        assert doc["status"] == "healthy"
        assert doc["environment"] == "prod"
        assert doc["instance_id"] == "i-123"
        assert doc["services"] == {"docker": True, "nginx": False}
        assert doc["uptime"].endswith(" seconds")
        assert "timestamp" in doc

    def test_uptime_falls_back_to_clock(self, clock, tmp_path) -> None:
        status = HealthStatus(environment="dev", clock=clock, started_at=0.0)
        clock.sleep(42)
        with patch("infra_provisioner.bootstrap.health.PROC_UPTIME", tmp_path / "missing"):
            assert status.uptime_seconds() == 42


@pytest.fixture
def http():
    session = requests.Session()
    session.trust_env = False
    yield session
    session.close()


@pytest.mark.slow
class TestHealthEndpoint:
    def test_health(self, base_url: str, http) -> None:
        resp = http.get(f"{base_url}/health", timeout=5)
        assert resp.status_code == 200
        assert resp.headers["Content-Type"] == "application/json"
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["instance_id"] == "i-123"
        assert body["services"] == {"docker": True, "nginx": False}

    def test_root_redirects(self, base_url: str, http) -> None:
        resp = http.get(f"{base_url}/", timeout=5, allow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["Location"] == "/health"

    def test_unknown_path(self, base_url: str, http) -> None:
        resp = http.get(f"{base_url}/nope?x=1", timeout=5)
        assert resp.status_code == 404
        assert resp.json() == {"error": "Not found", "path": "/nope"}


class TestInstanceLookup:
    def test_uses_token(self) -> None:
        token = MagicMock(ok=True, text="tok")
        ident = MagicMock(text="i-abc\n")
        with (
            patch("requests.put", return_value=token),
            patch("requests.get", return_value=ident) as get,
        ):
            assert lookup_instance_id("http://imds/latest/") == "i-abc"
        get.assert_called_once_with(
            "http://imds/latest/meta-data/instance-id",
            headers={"X-aws-ec2-metadata-token": "tok"},
            timeout=2.0,
        )

    def test_unreachable(self) -> None:
        with patch("requests.put", side_effect=requests.exceptions.ConnectionError()):
            assert lookup_instance_id("http://imds/latest") == "unknown"
