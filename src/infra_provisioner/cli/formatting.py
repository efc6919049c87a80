"""Plan and apply output rendering (Terraform-style)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from infra_provisioner.engine.types import Action

if TYPE_CHECKING:
    from collections.abc import Callable

    from infra_provisioner.core.state import State
    from infra_provisioner.engine.types import Plan, ResourceChange, ResourceDrift


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    progress_verb: str
    done_verb: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+", "Creating", "Creation complete"),
    "update": _ActionStyle("yellow", "~", "Updating", "Update complete"),
    "replace": _ActionStyle("magenta", "-/+", "Replacing", "Replacement complete"),
    "delete": _ActionStyle("red", "-", "Destroying", "Destroy complete"),
    "no-op": _ActionStyle("bright_black", " ", "", ""),
}

_ACTION_DESC: dict[str, str] = {
    "create": "will be created",
    "update": "will be updated in-place",
    "replace": "must be replaced",
    "delete": "will be destroyed",
    "no-op": "is up-to-date",
}


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def has_actionable_changes(plan: Plan) -> bool:
    """Return True if the plan contains any non-NOOP changes."""
    return plan.has_changes()


def _align_values(items: dict[str, str]) -> list[tuple[str, str]]:
    """Right-pad keys so ``=`` signs align."""
    if not items:
        return []
    max_key = max(len(k) for k in items)
    return [(k.ljust(max_key), v) for k, v in items.items()]


def _format_value(value: Any) -> str:
    """Format a value for display in a plan diff block."""
    if isinstance(value, str):
        return value if value == "(known after apply)" else f'"{value}"'
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


# ---------------------------------------------------------------------------
# Plan rendering
# ---------------------------------------------------------------------------


def _change_attrs(change: ResourceChange) -> dict[str, str]:
    """Extract displayable ``key → formatted value`` pairs from a change."""
    if change.action == Action.CREATE and change.planned:
        return {k: _format_value(v) for k, v in change.planned.items()}
    if change.action in (Action.UPDATE, Action.REPLACE) and change.diff:
        out: dict[str, str] = {}
        for k, d in change.diff.items():
            suffix = " # forces replacement" if k in change.replace_reasons else ""
            out[k] = f"{_format_value(d['from'])} -> {_format_value(d['to'])}{suffix}"
        return out
    return {}


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a Terraform-style block."""
    style = styler(color)
    action_val = change.action.value
    sc = {"fg": _ACTION_STYLES[action_val].color}
    symbol = _ACTION_STYLES[action_val].symbol

    desc = _ACTION_DESC[action_val]
    if change.deposed_id is not None:
        desc = f"(deposed object {change.deposed_id}) {desc}"
    elif change.action == Action.REPLACE:
        order = "create before destroy" if change.create_before_destroy else "destroy then create"
        desc = f"{desc} ({order})"

    name = change.address.split(".", 1)[1] if "." in change.address else change.address
    lines = [
        style(f"  # {change.address} {desc}", bold=True, **sc),
        style(f'  {symbol} resource "{change.resource_type}" "{name}" {{', **sc),
        *[
            style(f"      {symbol} {k} = {v}", **sc)
            for k, v in _align_values(_change_attrs(change))
        ],
        style("    }", **sc),
    ]
    return "\n".join(lines)


def format_changes(changes: list[ResourceChange], *, color: bool = True) -> str:
    """Render a list of changes as Terraform-style diff blocks."""
    blocks = [format_change(c, color=color) for c in changes if c.action != Action.NOOP]
    if not blocks:
        return "No changes. Infrastructure is up-to-date."
    return "\n\n".join(blocks)


def format_plan(plan: Plan, *, color: bool = True) -> str:
    """Render the full plan output with per-change diff blocks."""
    return format_changes(plan.changes, color=color)


# ---------------------------------------------------------------------------
# Drift and state
# ---------------------------------------------------------------------------


def format_drift(report: list[ResourceDrift], *, color: bool = True) -> str:
    style = styler(color)
    blocks: list[str] = []
    for d in report:
        if d.status == "deleted":
            blocks.append(style(f"  # {d.address} ({d.id}) has been deleted", fg="red", bold=True))
            continue
        lines = [style(f"  # {d.address} ({d.id}) has changed", fg="yellow", bold=True)]
        items = {
            k: f"{_format_value(v['from'])} -> {_format_value(v['to'])}" for k, v in d.diff.items()
        }
        lines.extend(style(f"      ~ {k} = {v}", fg="yellow") for k, v in _align_values(items))
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def format_state(state: State) -> str:
    """Human-readable listing of every record in *state*."""
    lines = [f"Stack: {state.stack}  (serial {state.serial}, lineage {state.lineage})"]
    if not state.resources:
        lines.append("No resources tracked.")
    for address, inst in sorted(state.resources.items()):
        lines.append("")
        lines.append(f"# {address}")
        lines.append(f"  id = {inst.id}")
        for k, v in _align_values({k: _format_value(v) for k, v in inst.attributes.items()}):
            lines.append(f"  {k} = {v}")
        if inst.dependencies:
            lines.append(f"  depends on: {', '.join(inst.dependencies)}")
        if inst.deposed:
            lines.append(f"  deposed: {', '.join(inst.deposed)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

_PLAN_VERBS = ("to add", "to change", "to replace", "to destroy")
_APPLY_VERBS = ("added", "changed", "replaced", "destroyed")
_SUMMARY_COLORS = ("green", "yellow", "magenta", "red")


def _format_summary(summary: dict[str, int], verbs: tuple[str, ...], *, color: bool) -> str:
    """Build the ``N verb, N verb, ...`` part of a summary line."""
    style = styler(color)
    counts = (
        summary.get("create", 0),
        summary.get("update", 0),
        summary.get("replace", 0),
        summary.get("delete", 0),
    )
    parts = [
        style(f"{n} {verb}", fg=fg) if n and color else f"{n} {verb}"
        for n, verb, fg in zip(counts, verbs, _SUMMARY_COLORS, strict=True)
    ]
    return ", ".join(parts)


def format_plan_summary(
    summary: dict[str, int], *, color: bool = True, header: str = "Plan"
) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to replace, 0 to destroy.``"""
    return f"{header}: {_format_summary(summary, _PLAN_VERBS, color=color)}."


def format_apply_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Apply complete! Resources: 2 added, 0 changed, 0 replaced, 0 destroyed.``"""
    style = styler(color)
    header = style("Apply complete!", fg="green", bold=True)
    return f"{header} Resources: {_format_summary(summary, _APPLY_VERBS, color=color)}."
