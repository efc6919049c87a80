"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from infra_provisioner.config.loader import ConfigError, load_config
from infra_provisioner.config.plugins import ProviderPluginError, load_provider
from infra_provisioner.config.registry import default_registry
from infra_provisioner.config.schema import Config, ExecutorConfig, LockConfig, ProviderConfig
from infra_provisioner.core.state import State, StateStore
from infra_provisioner.engine.builder import build_graph
from infra_provisioner.engine.engine import ProvisioningEngine
from infra_provisioner.engine.lock import StateLock, read_lock_info
from infra_provisioner.engine.retry import RetryPolicy

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Mapping
    from pathlib import Path

    from infra_provisioner.core.provider import Provider
    from infra_provisioner.engine.builder import ResourceGraph
    from infra_provisioner.engine.types import ApplyResult, Plan, ResourceChange, ResourceDrift

__all__ = [
    "Config",
    "ConfigError",
    "ExecutorConfig",
    "LockConfig",
    "ProviderConfig",
    "State",
    "apply",
    "destroy",
    "drift",
    "engine_from_config",
    "load",
    "load_config",
    "load_state",
    "lock_info",
    "plan",
    "plan_and_apply",
    "refresh",
    "save_state",
    "unlock",
    "validate",
]


def load(path: Path | str, *, variables: Mapping[str, str] | None = None) -> Config:
    """Load a YAML configuration file."""
    return load_config(path, variables=variables)


def engine_from_config(config: Config, *, provider: Provider | None = None) -> ProvisioningEngine:
    """Build a ``ProvisioningEngine`` from a ``Config`` instance."""
    if provider is None:
        try:
            provider = load_provider(config.provider, config.config_dir)
        except ProviderPluginError as exc:
            raise ConfigError(str(exc)) from exc
    ex = config.executor
    return ProvisioningEngine(
        provider=provider,
        stack=config.stack,
        state_path=config.state_path,
        registry=default_registry(),
        parallelism=ex.parallelism,
        retry=RetryPolicy(
            max_attempts=ex.max_attempts, base_delay=ex.base_delay, max_delay=ex.max_delay
        ),
        ready_timeout=ex.ready_timeout,
        lock_stale_after=config.lock.stale_after,
        lock_heartbeat_interval=config.lock.heartbeat_interval,
    )


def validate(config: Config) -> ResourceGraph:
    """Check references, dependencies and cycles without touching state."""
    return build_graph(config.resources, default_registry())


def plan(
    config: Config,
    *,
    destroy: bool = False,
    refresh: bool = True,
    provider: Provider | None = None,
) -> Plan:
    """Plan changes for the given configuration."""
    engine = engine_from_config(config, provider=provider)
    return engine.plan(config.resources, destroy=destroy, refresh=refresh)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: Callable[[ResourceChange, Any], None] | None = None,
    cancel: threading.Event | None = None,
    provider: Provider | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = engine_from_config(config, provider=provider)
    return engine.apply(plan_obj, progress=progress, cancel=cancel)


def plan_and_apply(
    config: Config, *, destroy: bool = False, refresh: bool = True
) -> ApplyResult:
    """Plan and apply in one step."""
    plan_obj = plan(config, destroy=destroy, refresh=refresh)
    return apply(plan_obj, config)


def destroy(config: Config) -> ApplyResult:
    """Delete every resource recorded in state."""
    return plan_and_apply(config, destroy=True)


def refresh(config: Config, *, persist: bool = True) -> tuple[State, State]:
    """Refresh state from the provider. Returns (pre_refresh, post_refresh)."""
    engine = engine_from_config(config)
    return engine.refresh(persist=persist)


def drift(config: Config) -> list[ResourceDrift]:
    """Detect drift between the state file and the provider, without writing."""
    return engine_from_config(config).drift()


def load_state(config: Config) -> State:
    return State.load_or_create(config.state_path, config.stack)


def save_state(config: Config, state: State) -> None:
    """Persist state to disk."""
    with StateLock(config.state_path, operation="save-state", heartbeat_interval=0):
        StateStore(config.state_path, config.stack).replace_state(state)


def lock_info(config: Config) -> dict[str, Any] | None:
    return read_lock_info(config.state_path)


def unlock(config: Config, lock_id: str) -> dict[str, Any]:
    """Force-release a lock left behind by a crashed run."""
    return StateLock.force_release(config.state_path, lock_id)
