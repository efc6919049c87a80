"""YAML configuration file loader.

Besides parsing and validating the file this resolves typed input variables,
interpolates ``${var.NAME}`` references and threads ``common_tags`` into every
declared resource.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.constructor import SafeConstructor

from infra_provisioner.config.schema import Config, VariableSpec

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


VAR_ENV_PREFIX = "INFRA_VAR_"

# Field name → environment variable.
_PROVIDER_ENV_MAP: dict[str, str] = {
    "plugin": "INFRA_PROVIDER_PLUGIN",
    "path": "INFRA_PROVIDER_PATH",
    "region": "INFRA_PROVIDER_REGION",
    "ready_after": "INFRA_PROVIDER_READY_AFTER",
}

_INTERPOLATION = re.compile(r"\$\{var\.([A-Za-z_][A-Za-z0-9_]*)\}")


def _read_dotenv(config_dir: Path) -> dict[str, str | None]:
    env_file = config_dir / ".env"
    return dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}


def _resolve_provider(
    raw_provider: dict[str, Any], dotenv_vals: Mapping[str, str | None]
) -> dict[str, Any]:
    """Resolve provider fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    resolved: dict[str, Any] = dict(raw_provider)
    for field, env_key in _PROVIDER_ENV_MAP.items():
        val = raw_provider.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val
    return resolved


def _coerce(name: str, spec: VariableSpec, value: Any, source: str) -> Any:
    """Coerce *value* to the declared variable type.

    Strings from the command line or the environment are parsed; YAML
    defaults must already have the right type.
    """
    where = f"variable '{name}' ({source})"
    match spec.type:
        case "string":
            if isinstance(value, str):
                return value
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return str(value)
        case "number":
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return value
            if isinstance(value, str):
                try:
                    return int(value)
                except ValueError:
                    try:
                        return float(value)
                    except ValueError:
                        pass
        case "bool":
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.lower() in SafeConstructor.bool_values:
                return SafeConstructor.bool_values[value.lower()]
        case "list(string)":
            if isinstance(value, str):
                stripped = value.strip()
                if stripped.startswith("["):
                    try:
                        value = json.loads(stripped)
                    except json.JSONDecodeError as exc:
                        raise ConfigError(f"Invalid list for {where}: {exc}") from exc
                else:
                    value = [v.strip() for v in stripped.split(",") if v.strip()]
            if isinstance(value, list) and all(isinstance(v, str) for v in value):
                return value
    raise ConfigError(f"Invalid {spec.type} value for {where}: {value!r}")


def resolve_variables(
    specs: Mapping[str, VariableSpec],
    overrides: Mapping[str, str] | None = None,
    *,
    dotenv_vals: Mapping[str, str | None] | None = None,
) -> dict[str, Any]:
    """Resolve every declared variable to a typed value.

    Priority (highest wins): *overrides* (``--var``) > ``INFRA_VAR_<NAME>`` env
    var > ``.env`` file > declared default.

    Raises:
        ConfigError: Unknown override, value of the wrong type, or no value at all.
    """
    overrides = overrides or {}
    dotenv_vals = dotenv_vals or {}
    unknown = sorted(set(overrides) - set(specs))
    if unknown:
        raise ConfigError(f"Undeclared variable(s) passed with --var: {', '.join(unknown)}")

    values: dict[str, Any] = {}
    missing: list[str] = []
    for name, spec in specs.items():
        env_key = f"{VAR_ENV_PREFIX}{name}"
        if name in overrides:
            values[name] = _coerce(name, spec, overrides[name], "--var")
        elif env_key in os.environ:
            values[name] = _coerce(name, spec, os.environ[env_key], env_key)
        elif dotenv_vals.get(env_key) is not None:
            values[name] = _coerce(name, spec, dotenv_vals[env_key], ".env")
        elif spec.default is not None:
            values[name] = _coerce(name, spec, spec.default, "default")
        else:
            missing.append(name)
    if missing:
        raise ConfigError(
            "No value for variable(s): "
            + ", ".join(missing)
            + f" (use --var NAME=VALUE or {VAR_ENV_PREFIX}<NAME>)"
        )
    logger.debug("Resolved variables: %s", sorted(values))
    return values


def interpolate(value: Any, variables: Mapping[str, Any]) -> Any:
    """Replace ``${var.NAME}`` references inside *value*.

    A string that is exactly one reference takes the variable's value with its
    type; references embedded in longer strings are substituted as text.
    """
    if isinstance(value, dict):
        return {k: interpolate(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate(v, variables) for v in value]
    if not isinstance(value, str) or "${" not in value:
        return value

    whole = _INTERPOLATION.fullmatch(value)
    if whole is not None:
        return _lookup(whole.group(1), variables)

    def _substitute(m: re.Match[str]) -> str:
        found = _lookup(m.group(1), variables)
        if isinstance(found, list):
            raise ConfigError(f"List variable '{m.group(1)}' cannot be embedded in '{value}'")
        if isinstance(found, bool):
            return str(found).lower()
        return str(found)

    return _INTERPOLATION.sub(_substitute, value)


def _lookup(name: str, variables: Mapping[str, Any]) -> Any:
    try:
        return variables[name]
    except KeyError:
        raise ConfigError(f"Reference to undeclared variable '{name}'") from None


def load_config(path: Path | str, *, variables: Mapping[str, str] | None = None) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    *variables* are ``--var`` overrides (raw strings).

    Raises:
        ConfigError: On YAML parse errors, variable problems, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    config_dir = path.parent
    dotenv_vals = _read_dotenv(config_dir)

    try:
        specs = {
            name: VariableSpec.model_validate(spec or {})
            for name, spec in (raw.pop("variables", None) or {}).items()
        }
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
    values = resolve_variables(specs, variables, dotenv_vals=dotenv_vals)
    raw = interpolate(raw, values)

    try:
        raw["provider"] = _resolve_provider(raw.get("provider") or {}, dotenv_vals)
        config = Config.model_validate({**raw, "variables": specs})
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = config_dir
    if not config.state_path.is_absolute():
        config.state_path = config_dir / config.state_path
    if not config.provider.path.is_absolute():
        config.provider.path = config_dir / config.provider.path

    if config.common_tags:
        config.resources = [r.with_tags(config.common_tags) for r in config.resources]

    logger.info("Loaded config from %s (%d resources)", path, len(config.resources))
    return config
