"""CLI command implementations."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from infra_provisioner.cli import app
from infra_provisioner.cli.errors import handle_error

if TYPE_CHECKING:
    from infra_provisioner.config.schema import Config
    from infra_provisioner.engine.executor import ProgressEvent
    from infra_provisioner.engine.types import ApplyResult, Plan, ResourceChange

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

NoRefresh = Annotated[
    bool,
    typer.Option("--no-refresh", help="Skip refreshing state from the provider."),
]

Vars = Annotated[
    list[str] | None,
    typer.Option("--var", help="Set a variable (NAME=VALUE). Repeatable."),
]

DEFAULT_CONFIG = Path("infra.yaml")

state_app = typer.Typer(help="Inspect and manage the state file.", no_args_is_help=True)
app.add_typer(state_app, name="state")


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _parse_vars(values: list[str] | None) -> dict[str, str]:
    from infra_provisioner.config.loader import ConfigError

    out: dict[str, str] = {}
    for item in values or []:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ConfigError(f"Invalid --var '{item}': expected NAME=VALUE")
        out[name.strip()] = value
    return out


def _load(config: Path, variables: list[str] | None = None) -> Config:
    from infra_provisioner.config import load

    return load(config, variables=_parse_vars(variables))


def _apply_with_progress(plan_obj: Plan, cfg: Config, *, color: bool) -> ApplyResult:
    """Apply a plan with a Rich progress bar and per-resource status lines."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from infra_provisioner.cli.formatting import _ACTION_STYLES
    from infra_provisioner.config import apply
    from infra_provisioner.engine.types import Action

    console = Console(no_color=not color)
    actionable = [c for c in plan_obj.changes if c.action != Action.NOOP]

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=len(actionable))

        def on_progress(change: ResourceChange, event: ProgressEvent) -> None:
            s = _ACTION_STYLES[change.action.value]
            if event == "start":
                progress.update(task, description=f"{change.address}: {s.progress_verb}...")
            elif event == "done":
                progress.console.print(f"  {change.address}: {s.done_verb}")
                progress.advance(task)
            else:
                progress.console.print(f"  {change.address}: failed")
                progress.advance(task)

        return apply(plan_obj, cfg, progress=on_progress)


def _confirm_and_apply(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    confirm_msg: str,
    empty_msg: str,
) -> None:
    """Shared flow: show plan -> confirm -> apply with progress -> print summary.

    Exits with code 0 if no actionable changes.
    """
    from infra_provisioner.cli.formatting import (
        format_apply_summary,
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )

    if not has_actionable_changes(plan_obj):
        typer.echo(empty_msg)
        raise typer.Exit(0)

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm(confirm_msg, abort=True)
        except typer.Abort as e:
            typer.echo("Apply canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        result = _apply_with_progress(plan_obj, cfg, color=color)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo()
    typer.echo(format_apply_summary(result.summary(), color=color))


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    var: Vars = None,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Show changes required by the current configuration.

    Exits 0 when there is nothing to do, 2 when changes are pending and 1 on error.
    """
    from infra_provisioner.cli.formatting import (
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )
    from infra_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        plan_obj = plan_fn(cfg, refresh=not no_refresh)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))

    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")

    if has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Apply the changes required by the current configuration."""
    from infra_provisioner.config import plan as plan_fn
    from infra_provisioner.engine.types import Plan

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        plan_obj = (
            Plan.load(plan_file) if plan_file is not None else plan_fn(cfg, refresh=not no_refresh)
        )
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve or plan_file is not None,
        confirm_msg="Do you want to apply these changes?",
        empty_msg="No changes. Infrastructure is up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Destroy all managed resources."""
    from infra_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        plan_obj = plan_fn(cfg, destroy=True)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you really want to destroy all resources?",
        empty_msg="No resources to destroy.",
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Refresh state from the provider."""
    from infra_provisioner.cli.formatting import format_drift
    from infra_provisioner.config import drift as drift_fn
    from infra_provisioner.config import refresh as refresh_fn

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        report = drift_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not report:
        typer.echo("No changes. State is up-to-date with the provider.")
        raise typer.Exit(0)

    typer.echo(format_drift(report, color=color))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm("Do you want to update the state file?", abort=True)
        except typer.Abort as e:
            typer.echo("Refresh canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        _, state = refresh_fn(cfg, persist=True)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    count = len(state.resources)
    typer.echo(f"State refreshed. {count} resource{'s' if count != 1 else ''} tracked.")


@app.command()
def drift(
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    no_color: NoColor = False,
) -> None:
    """Show drift between state and the provider. Exits 2 when drift is found."""
    from infra_provisioner.cli.formatting import format_drift
    from infra_provisioner.config import drift as drift_fn

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        report = drift_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not report:
        typer.echo("No drift detected. State is up-to-date with the provider.")
        raise typer.Exit(0)

    typer.echo("Drift detected:\n")
    typer.echo(format_drift(report, color=color))
    raise typer.Exit(2)


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    no_color: NoColor = False,
) -> None:
    """Validate the configuration file (references, dependencies, cycles)."""
    from infra_provisioner.cli.formatting import styler
    from infra_provisioner.config import validate as validate_fn

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        graph = validate_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(
        styler(color)(f"Configuration is valid ({len(graph)} resources).", fg="green")
    )


# ---------------------------------------------------------------------------
# state
# ---------------------------------------------------------------------------


@state_app.command("show")
def state_show(
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw state as JSON.")] = False,
    no_color: NoColor = False,
) -> None:
    """Show every tracked resource with its attributes."""
    from infra_provisioner.cli.formatting import format_state
    from infra_provisioner.config import load_state

    color = _use_color(no_color)
    try:
        state = load_state(_load(config, var))
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if as_json:
        typer.echo(json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True))
    else:
        typer.echo(format_state(state))


@state_app.command("list")
def state_list(
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    no_color: NoColor = False,
) -> None:
    """List tracked resource addresses."""
    from infra_provisioner.config import load_state

    color = _use_color(no_color)
    try:
        state = load_state(_load(config, var))
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    for address in sorted(state.resources):
        typer.echo(address)


@state_app.command("unlock")
def state_unlock(
    lock_id: Annotated[str, typer.Argument(help="Id of the lock to release.")],
    config: ConfigPath = DEFAULT_CONFIG,
    var: Vars = None,
    force: Annotated[bool, typer.Option("--force", help="Do not ask for confirmation.")] = False,
    no_color: NoColor = False,
) -> None:
    """Release a state lock left behind by a crashed run."""
    from infra_provisioner.config import lock_info, unlock

    color = _use_color(no_color)
    try:
        cfg = _load(config, var)
        info = lock_info(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if info is None:
        typer.echo("State is not locked.")
        raise typer.Exit(0)

    if not force:
        typer.echo(
            f"Lock {info.get('id')} held by {info.get('holder')} "
            f"(operation {info.get('operation') or 'unknown'}, "
            f"last heartbeat {info.get('heartbeat_at')})."
        )
        try:
            typer.confirm(
                "Only release it if that run is no longer alive. Release the lock?", abort=True
            )
        except typer.Abort as e:
            typer.echo("Unlock canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        unlock(cfg, lock_id)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    typer.echo(f"Lock {lock_id} released.")
