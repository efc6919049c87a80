"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from infra_provisioner.bootstrap.sequencer import StepError
    from infra_provisioner.config.loader import ConfigError
    from infra_provisioner.core.errors import CorruptStateError
    from infra_provisioner.engine.errors import (
        ApplyCanceled,
        ApplyError,
        CycleError,
        LockHeldError,
        StalePlanError,
        StateStackMismatchError,
        UnresolvedReferenceError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, UnresolvedReferenceError):
        _err("Unresolved references:", fg=fg)
        for p in exc.problems:
            _err(f"  - {p}", fg=fg)
    elif isinstance(exc, CycleError):
        _err(f"Dependency cycle: {' -> '.join(exc.cycle)}", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, StateStackMismatchError):
        _err(f"State mismatch: {exc}", fg=fg)
    elif isinstance(exc, LockHeldError):
        _err(f"State locked: {exc}", fg=fg)
        for key in ("id", "holder", "operation", "acquired_at", "heartbeat_at"):
            if exc.info.get(key) is not None:
                _err(f"  {key}: {exc.info[key]}", fg=fg)
    elif isinstance(exc, CorruptStateError):
        _err(f"Corrupt state: {exc}", fg=fg)
    elif isinstance(exc, ApplyError):
        _err(f"Apply failed: {exc}", fg=fg)
        result = exc.result
        for f in result.failed:
            _err(f"  ✗ {f.address} ({f.operation}): {f.error}", fg=fg)
        for b in result.blocked:
            _err(f"  ⊘ {b.address} ({b.operation}): blocked by {b.cause}", fg=fg)
        s = result.summary()
        parts = [
            f"{n} {verb}"
            for n, verb in (
                (s["create"], "added"),
                (s["update"], "changed"),
                (s["replace"], "replaced"),
                (s["delete"], "destroyed"),
            )
            if n
        ]
        if parts:
            _err(f"  Partial result: {', '.join(parts)}.", fg=fg)
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
        if exc.result is not None and exc.result.canceled:
            _err(f"  Not started: {', '.join(exc.result.canceled)}", fg=fg)
    elif isinstance(exc, StepError):
        _err(f"Bootstrap failed: {exc}", fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
