from __future__ import annotations

import pytest

from infra_provisioner.config.registry import default_registry
from infra_provisioner.engine.builder import build_graph
from infra_provisioner.engine.errors import (
    CycleError,
    DuplicateAddressError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
    ValidationError,
)
from infra_provisioner.engine.registry import ResourceTypeRegistry
from infra_provisioner.resources import (
    Lifecycle,
    Ref,
    SecurityGroupResource,
    SecurityRule,
    SubnetResource,
    VpcResource,
)


def test_order_follows_references(network_stack) -> None:
    graph = build_graph(network_stack(), default_registry())

    assert graph.order == (
        "aws_vpc.main",
        "aws_subnet.public_a",
        "aws_security_group.web",
        "aws_instance.web",
    )
    assert graph.dependencies["aws_instance.web"] == (
        "aws_subnet.public_a",
        "aws_security_group.web",
    )
    assert graph.ranks["aws_instance.web"] == 2
    assert graph.dependents("aws_vpc.main") == ("aws_subnet.public_a", "aws_security_group.web")


def test_graph_carries_schema_of_declared_types(network_stack) -> None:
    registry = default_registry()
    graph = build_graph(network_stack(), registry)

    assert set(graph.schemas) == {"aws_vpc", "aws_subnet", "aws_security_group", "aws_instance"}
    assert graph.schemas["aws_vpc"] is registry.get("aws_vpc")
    assert "cidr_block" in graph.schemas["aws_vpc"].force_new


def test_declaration_order_breaks_ties() -> None:
    a = VpcResource(name="b_second", cidr_block="10.1.0.0/16")
    b = VpcResource(name="a_first", cidr_block="10.2.0.0/16")
    graph = build_graph([a, b], default_registry())
    assert graph.order == ("aws_vpc.b_second", "aws_vpc.a_first")


def test_explicit_depends_on_adds_edge() -> None:
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
    other = VpcResource(name="other", cidr_block="10.1.0.0/16", depends_on=["aws_vpc.main"])
    graph = build_graph([other, vpc], default_registry())
    assert graph.order == ("aws_vpc.main", "aws_vpc.other")


def test_duplicate_address() -> None:
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
    with pytest.raises(DuplicateAddressError, match="aws_vpc.main"):
        build_graph([vpc, vpc.model_copy()], default_registry())


def test_unregistered_type() -> None:
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
    with pytest.raises(UnknownResourceTypeError):
        build_graph([vpc], ResourceTypeRegistry())


def test_all_unresolved_references_reported_together() -> None:
    subnet = SubnetResource(
        name="a", vpc_id=Ref.to("aws_vpc.missing"), cidr_block="10.0.1.0/24"
    )
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16", depends_on=["aws_vpc.ghost"])
    with pytest.raises(UnresolvedReferenceError) as exc_info:
        build_graph([subnet, vpc], default_registry())

    problems = exc_info.value.problems
    assert len(problems) == 2
    assert any("aws_vpc.missing.id" in p for p in problems)
    assert any("aws_vpc.ghost" in p for p in problems)


def test_reference_to_unknown_attribute() -> None:
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
    subnet = SubnetResource(name="a", vpc_id=vpc.ref("nope"), cidr_block="10.0.1.0/24")
    with pytest.raises(UnresolvedReferenceError, match="unknown attribute 'nope'"):
        build_graph([vpc, subnet], default_registry())


def test_reference_to_output_attribute_is_allowed() -> None:
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
    subnet = SubnetResource(
        name="a", vpc_id=vpc.ref("default_route_table_id"), cidr_block="10.0.1.0/24"
    )
    graph = build_graph([vpc, subnet], default_registry())
    assert len(graph) == 2


def test_nested_references_are_edges() -> None:
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
    lb_sg = SecurityGroupResource(name="lb", vpc_id=vpc.ref())
    app_sg = SecurityGroupResource(
        name="app",
        vpc_id=vpc.ref(),
        ingress=[SecurityRule(from_port=80, to_port=80, security_groups=[lb_sg.ref()])],
    )
    graph = build_graph([vpc, app_sg, lb_sg], default_registry())
    assert graph.order.index("aws_security_group.lb") < graph.order.index(
        "aws_security_group.app"
    )


def test_cycle_is_rejected() -> None:
    a = SecurityGroupResource(name="a", vpc_id=Ref.to("aws_security_group.b"))
    b = SecurityGroupResource(name="b", vpc_id=Ref.to("aws_security_group.a"))
    with pytest.raises(CycleError) as exc_info:
        build_graph([a, b], default_registry())
    assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]


def test_self_reference_is_a_cycle() -> None:
    sg = SecurityGroupResource(name="self", vpc_id=Ref.to("aws_security_group.self"))
    with pytest.raises(CycleError):
        build_graph([sg], default_registry())


def test_ignore_changes_must_name_attributes() -> None:
    vpc = VpcResource(
        name="main",
        cidr_block="10.0.0.0/16",
        lifecycle=Lifecycle(ignore_changes=["nonexistent"]),
    )
    with pytest.raises(ValidationError, match="nonexistent"):
        build_graph([vpc], default_registry())


def test_empty_graph() -> None:
    graph = build_graph([], default_registry())
    assert len(graph) == 0
    assert graph.order == ()
