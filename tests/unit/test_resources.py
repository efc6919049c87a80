"""Validation rules of the resource models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from infra_provisioner.resources import (
    AutoScalingGroupResource,
    BucketResource,
    DbSubnetGroupResource,
    Route,
    SecurityRule,
    VpcResource,
)


def test_address_and_ref() -> None:
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
    assert vpc.address == "aws_vpc.main"
    assert str(vpc.ref("arn")) == "aws_vpc.main.arn"


def test_attributes_exclude_engine_fields() -> None:
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16", depends_on=["aws_vpc.x"])
    attrs = vpc.attributes()
    assert "depends_on" not in attrs
    assert "lifecycle" not in attrs
    assert "type" not in attrs
    assert attrs["cidr_block"] == "10.0.0.0/16"


def test_known_attributes_include_outputs() -> None:
    assert {"id", "arn", "default_route_table_id", "cidr_block"} <= VpcResource.known_attributes()


def test_with_tags_keeps_own_tags() -> None:
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16", tags={"owner": "net"})
    tagged = vpc.with_tags({"owner": "platform", "project": "shop"})
    assert tagged.tags == {"owner": "net", "project": "shop"}
    assert vpc.tags == {"owner": "net"}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"name": "bad name", "cidr_block": "10.0.0.0/16"},
        {"name": "main", "cidr_block": "not-a-cidr"},
        {"name": "main", "cidr_block": "10.0.0.0/16", "unknown": 1},
    ],
)
def test_vpc_validation(kwargs: dict) -> None:
    with pytest.raises(PydanticValidationError):
        VpcResource(**kwargs)


def test_route_needs_exactly_one_target() -> None:
    with pytest.raises(PydanticValidationError, match="Exactly one"):
        Route(cidr_block="0.0.0.0/0")
    with pytest.raises(PydanticValidationError, match="Exactly one"):
        Route(cidr_block="0.0.0.0/0", gateway_id="igw-1", nat_gateway_id="nat-1")
    assert Route(cidr_block="0.0.0.0/0", gateway_id="igw-1").nat_gateway_id is None


def test_security_rule_port_order() -> None:
    with pytest.raises(PydanticValidationError, match="from_port"):
        SecurityRule(from_port=443, to_port=80)


def test_autoscaling_sizes() -> None:
    with pytest.raises(PydanticValidationError, match="min_size"):
        AutoScalingGroupResource(
            name="app", min_size=3, max_size=1, subnet_ids=["s-1"], launch_template_id="lt-1"
        )
    with pytest.raises(PydanticValidationError, match="desired_capacity"):
        AutoScalingGroupResource(
            name="app",
            min_size=1,
            max_size=2,
            desired_capacity=5,
            subnet_ids=["s-1"],
            launch_template_id="lt-1",
        )


def test_db_subnet_group_needs_two_subnets() -> None:
    with pytest.raises(PydanticValidationError):
        DbSubnetGroupResource(name="db", subnet_ids=["s-1"])


def test_bucket_name_pattern() -> None:
    with pytest.raises(PydanticValidationError):
        BucketResource(name="assets", bucket="Not_Valid")
