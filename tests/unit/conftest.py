"""Shared fixtures for unit tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from infra_provisioner.config import load
from infra_provisioner.config.registry import default_registry
from infra_provisioner.core.provider import LocalProvider
from infra_provisioner.engine import ProvisioningEngine
from infra_provisioner.engine.retry import RetryPolicy
from infra_provisioner.resources import (
    InstanceResource,
    Ref,
    SecurityGroupResource,
    SubnetResource,
    VpcResource,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from infra_provisioner.config.schema import Config
    from infra_provisioner.resources import Resource

_ENV_PREFIXES = ("INFRA_", "BOOTSTRAP_")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove INFRA_* / BOOTSTRAP_* env vars so unit tests don't leak host config."""
    for var in list(os.environ):
        if var.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(var, raising=False)


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_retry(clock: FakeClock) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=3, base_delay=1.0, max_delay=4.0, sleep=clock.sleep, clock=clock
    )


@pytest.fixture
def provider() -> LocalProvider:
    return LocalProvider()


@pytest.fixture
def make_engine(
    tmp_path: Path, provider: LocalProvider, fast_retry: RetryPolicy
) -> Callable[..., ProvisioningEngine]:
    def _make(**kwargs: object) -> ProvisioningEngine:
        options: dict[str, object] = {
            "provider": provider,
            "stack": "test",
            "state_path": tmp_path / "state.json",
            "registry": default_registry(),
            "retry": fast_retry,
            "ready_timeout": 30.0,
            "lock_heartbeat_interval": 0,
        }
        options.update(kwargs)
        return ProvisioningEngine(**options)  # type: ignore[arg-type]

    return _make


def _network_stack(
    *, instance_type: str = "t3.micro", cidr: str = "10.0.0.0/16"
) -> list[Resource]:
    """VPC -> subnet -> security group -> instance."""
    vpc = VpcResource(name="main", cidr_block=cidr)
    subnet = SubnetResource(name="public_a", vpc_id=vpc.ref(), cidr_block="10.0.1.0/24")
    sg = SecurityGroupResource(name="web", vpc_id=vpc.ref())
    instance = InstanceResource(
        name="web",
        ami="ami-123",
        instance_type=instance_type,
        subnet_id=Ref.to(subnet.address),
        security_group_ids=[sg.ref()],
    )
    return [vpc, subnet, sg, instance]


@pytest.fixture
def network_stack() -> Callable[..., list[Resource]]:
    return _network_stack


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(
        yaml_str: str, *, dotenv: str | None = None, variables: dict[str, str] | None = None
    ) -> Config:
        (tmp_path / "infra.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "infra.yaml", variables=variables)

    return _make
