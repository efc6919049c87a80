"""Base resource class for declared infrastructure."""

from collections.abc import Callable
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, computed_field

from infra_provisioner.resources.markers import Compare, Ref, iter_refs, materialize

# Fields that steer the engine and are never sent to a provider.
META_FIELDS: frozenset[str] = frozenset({"type", "depends_on", "lifecycle"})


class Lifecycle(BaseModel):
    """Per-resource lifecycle policy."""

    model_config = ConfigDict(extra="forbid")

    create_before_destroy: bool = False
    ignore_changes: list[str] = Field(default_factory=list)


class Resource(BaseModel):
    """Base class for all resources.

    Resources are pure data - they define the desired state. The provider
    knows how to create, update, describe and delete them.
    """

    model_config = ConfigDict(extra="forbid")

    resource_type: ClassVar[str]
    # Attributes only known once the provider has created the resource.
    outputs: ClassVar[frozenset[str]] = frozenset({"id", "arn"})

    name: str = Field(pattern=r"^[a-zA-Z0-9_-]+$")
    tags: Annotated[dict[str, str], Compare("exact")] = Field(default_factory=dict)

    # Lifecycle
    depends_on: list[str] = Field(default_factory=list)
    lifecycle: Lifecycle = Field(default_factory=Lifecycle)

    @computed_field
    @property
    def address(self) -> str:
        """Unique address for this resource (e.g., 'aws_vpc.main')."""
        return f"{self.resource_type}.{self.name}"

    def ref(self, attribute: str = "id") -> Ref:
        """A reference to one of this resource's attributes."""
        return Ref.to(self.address, attribute)

    def references(self) -> list[Ref]:
        """References declared anywhere in this resource's attributes."""
        return [r for name in self.attribute_names() for r in iter_refs(getattr(self, name))]

    @classmethod
    def attribute_names(cls) -> list[str]:
        """Declared provider-facing attribute names, in declaration order."""
        return [n for n in cls.model_fields if n not in META_FIELDS]

    @classmethod
    def known_attributes(cls) -> frozenset[str]:
        """Everything a ``Ref`` may point at: declared attributes plus outputs."""
        return cls.outputs | frozenset(cls.attribute_names())

    def attributes(self, resolve: Callable[[Ref], Any] | None = None) -> dict[str, Any]:
        """Provider-facing attribute snapshot.

        ``Ref`` values are resolved through *resolve*; without it they stay as
        ``{"ref": ...}`` placeholders.
        """
        out: dict[str, Any] = {}
        for name in self.attribute_names():
            value = getattr(self, name)
            if value is not None:
                out[name] = materialize(value, resolve)
        return out

    def with_tags(self, tags: dict[str, str]) -> "Resource":
        """Return a copy with *tags* merged underneath this resource's own tags."""
        return self.model_copy(update={"tags": {**tags, **self.tags}})
