import pytest

from infra_provisioner.config.registry import default_registry
from infra_provisioner.engine.errors import UnknownResourceTypeError
from infra_provisioner.engine.registry import ResourceTypeRegistry
from infra_provisioner.resources import ALL_RESOURCE_TYPES, SubnetResource, VpcResource


def test_register_and_get() -> None:
    registry = ResourceTypeRegistry()
    registry.register(VpcResource)

    assert "aws_vpc" in registry
    assert registry.get("aws_vpc").model is VpcResource
    assert registry.resource_types() == ["aws_vpc"]


def test_duplicate_registration_rejected() -> None:
    registry = ResourceTypeRegistry()
    registry.register(VpcResource)
    with pytest.raises(ValueError, match="already registered"):
        registry.register(VpcResource)


def test_unknown_type() -> None:
    with pytest.raises(UnknownResourceTypeError):
        ResourceTypeRegistry().get("aws_nope")


def test_default_registry_has_every_type() -> None:
    registry = default_registry()
    assert len(registry.resource_types()) == len(ALL_RESOURCE_TYPES)
    for model in ALL_RESOURCE_TYPES:
        assert registry.get(model.resource_type).model is model


def test_registration_caches_schema_facts() -> None:
    registration = ResourceTypeRegistry().register(SubnetResource)

    assert registration.force_new == {"vpc_id", "cidr_block", "availability_zone"}
    assert registration.compare["tags"] == "exact"
    assert {"id", "arn", "cidr_block"} <= registration.known_attributes
