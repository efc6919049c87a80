"""Reference values and declarative field markers for resource models.

``Ref`` is a *value*: it can appear wherever an attribute accepts
``StrOrRef`` and names another resource's attribute, e.g.
``{ref: aws_vpc.main.id}`` in YAML or ``vpc.ref("id")`` in Python. ``Template``
builds a string out of literal parts and references, e.g. a user-data script
that embeds a database endpoint.

Two markers attach to Pydantic fields via ``Annotated``:

- ``ForceNew``: changing the field requires replacing the resource
- ``Compare``: field-level comparison strategy used by the planner

Helper functions introspect these at runtime to collect references,
immutable fields and per-field comparison strategies, and to turn a
resource into a provider-facing attribute snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeAlias, TypeVar

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from collections.abc import Callable

    from pydantic.fields import FieldInfo

M = TypeVar("M")
CompareStrategy: TypeAlias = Literal["partial", "exact", "set"]

# Placeholder for values that only exist once apply has run.
KNOWN_AFTER_APPLY = "(known after apply)"


class Ref(BaseModel):
    """Reference to an attribute of another resource: ``"<type>.<name>.<attribute>"``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ref: str = Field(pattern=r"^[a-z0-9_]+\.[a-zA-Z0-9_-]+\.[a-zA-Z0-9_]+$")

    @classmethod
    def to(cls, address: str, attribute: str = "id") -> Ref:
        return cls(ref=f"{address}.{attribute}")

    @property
    def address(self) -> str:
        return self.ref.rsplit(".", 1)[0]

    @property
    def attribute(self) -> str:
        return self.ref.rsplit(".", 1)[1]

    def __str__(self) -> str:
        return self.ref


StrOrRef: TypeAlias = str | Ref
IntOrRef: TypeAlias = int | Ref


class Template(BaseModel):
    """String joined from literal parts and references: ``{join: ["db=", {ref: ...}]}``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    join: list[StrOrRef] = Field(min_length=1)

    def render(self, values: list[Any]) -> Any:
        """Join resolved *values*; any unknown part makes the whole string unknown."""
        if any(v == KNOWN_AFTER_APPLY for v in values):
            return KNOWN_AFTER_APPLY
        return "".join(str(v) for v in values)


# ── Marker dataclasses ──────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ForceNew:
    """Field cannot be changed in place; a change plans a replacement."""


@dataclass(frozen=True, slots=True)
class Compare:
    """How the planner should compare the field.

    - ``"partial"``: for dict values, only keys declared in desired are compared
    - ``"exact"``: strict equality comparison
    - ``"set"``: order-insensitive list comparison
    """

    strategy: CompareStrategy


# ── Shared introspection primitives ─────────────────────────────────


def _find_marker(field_info: FieldInfo, marker_type: type[M]) -> M | None:
    """Return the first marker of *marker_type* on a field, or ``None``."""
    return next((m for m in field_info.metadata if isinstance(m, marker_type)), None)


def _iter_marked_fields(
    model_or_cls: Any,
    marker_type: type[M],
) -> list[tuple[str, FieldInfo, M]]:
    """Return ``(field_name, field_info, marker)`` for every field carrying *marker_type*."""
    cls = model_or_cls if isinstance(model_or_cls, type) else type(model_or_cls)
    return [
        (name, fi, marker)
        for name, fi in cls.model_fields.items()
        if (marker := _find_marker(fi, marker_type)) is not None
    ]


def iter_refs(value: Any) -> list[Ref]:
    """Collect every ``Ref`` nested anywhere inside *value*."""
    if isinstance(value, Ref):
        return [value]
    if isinstance(value, BaseModel):
        return [r for name in type(value).model_fields for r in iter_refs(getattr(value, name))]
    if isinstance(value, dict):
        return [r for v in value.values() for r in iter_refs(v)]
    if isinstance(value, (list, tuple)):
        return [r for v in value for r in iter_refs(v)]
    return []


def materialize(value: Any, resolve: Callable[[Ref], Any] | None = None) -> Any:
    """Convert *value* to plain JSON-like data.

    ``Ref`` objects are passed through *resolve* when given, otherwise dumped
    as ``{"ref": ...}``; a ``Template`` is joined into one string only when
    its references can be resolved. ``None`` fields of nested models are
    dropped.
    """
    if isinstance(value, Ref):
        return resolve(value) if resolve is not None else value.model_dump()
    if isinstance(value, Template) and resolve is not None:
        return value.render([materialize(p, resolve) for p in value.join])
    if isinstance(value, BaseModel):
        out: dict[str, Any] = {}
        for name in type(value).model_fields:
            v = getattr(value, name)
            if v is not None:
                out[name] = materialize(v, resolve)
        return out
    if isinstance(value, dict):
        return {k: materialize(v, resolve) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [materialize(v, resolve) for v in value]
    return value


# ── Public helpers ──────────────────────────────────────────────────


def collect_force_new(resource_or_cls: Any) -> frozenset[str]:
    """Names of ``ForceNew``-annotated fields."""
    return frozenset(name for name, _, _ in _iter_marked_fields(resource_or_cls, ForceNew))


def collect_compare_strategies(resource_or_cls: Any) -> dict[str, CompareStrategy]:
    """Collect per-field compare strategies from ``Compare`` markers."""
    return {
        name: marker.strategy for name, _, marker in _iter_marked_fields(resource_or_cls, Compare)
    }
