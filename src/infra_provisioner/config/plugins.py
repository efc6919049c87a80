"""Provider plugin resolution."""

from __future__ import annotations

import importlib
import importlib.metadata
import importlib.util
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from infra_provisioner.core.provider import LocalProvider, Provider

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import ModuleType

    from infra_provisioner.config.schema import ProviderConfig

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "infra_provisioner.providers"


class ProviderPluginError(Exception):
    """Raised when a provider plugin cannot be resolved or built."""


def _load_local_module(module_path: str, config_dir: Path) -> ModuleType:
    """Load a Python module from a file relative to *config_dir*."""
    parts = module_path.split(".")
    candidates = [
        config_dir / Path(*parts).with_suffix(".py"),
        config_dir / Path(*parts) / "__init__.py",
    ]
    file_path = next((p for p in candidates if p.exists()), None)
    if file_path is None:
        raise ProviderPluginError(f"Module '{module_path}' not found relative to {config_dir}")

    spec = importlib.util.spec_from_file_location(module_path, file_path)
    if spec is None or spec.loader is None:
        raise ProviderPluginError(f"Failed to create module spec for '{file_path}'")
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def _resolve_factory(plugin: str, config_dir: Path) -> Callable[..., Any]:
    """Resolve a *plugin* string to a provider factory.

    Resolution order:

    1. No ``:``: entry-point lookup (group ``infra_provisioner.providers``).
    2. Has ``:``: split into ``module_path:factory``.
       a. Try ``importlib.import_module`` (installed packages).
       b. Fall back to ``spec_from_file_location`` (local files relative to *config_dir*).
    """
    if ":" not in plugin:
        eps = list(importlib.metadata.entry_points(group=ENTRY_POINT_GROUP, name=plugin))
        if not eps:
            raise ProviderPluginError(
                f"No entry point found for '{plugin}' in group '{ENTRY_POINT_GROUP}'"
            )
        return eps[0].load()

    module_path, _, factory_name = plugin.rpartition(":")
    if not module_path or not factory_name:
        raise ProviderPluginError(
            f"Invalid plugin syntax '{plugin}': expected 'module.path:factory'"
        )

    try:
        mod = importlib.import_module(module_path)
    except ModuleNotFoundError:
        mod = _load_local_module(module_path, config_dir)

    obj = getattr(mod, factory_name, None)
    if not callable(obj):
        raise ProviderPluginError(
            f"'{plugin}' is not a callable attribute"
            if obj is not None
            else f"Module has no attribute '{factory_name}' (from '{plugin}')"
        )
    return obj


def load_provider(config: ProviderConfig, config_dir: Path) -> Provider:
    """Build the provider described by *config*."""
    if config.plugin is None:
        logger.debug("Using local provider at %s", config.path)
        return LocalProvider(config.path, region=config.region, ready_after=config.ready_after)

    factory = _resolve_factory(config.plugin, config_dir)
    try:
        provider = factory(**config.options)
    except ProviderPluginError:
        raise
    except Exception as exc:
        raise ProviderPluginError(
            f"Provider plugin '{config.plugin}' raised {type(exc).__name__}: {exc}"
        ) from exc

    if not isinstance(provider, Provider):
        raise ProviderPluginError(
            f"Provider plugin '{config.plugin}' must return a Provider instance, "
            f"got {type(provider).__name__}"
        )
    logger.debug("Using provider plugin %s", config.plugin)
    return provider
