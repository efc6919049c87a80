"""Network topology resources: VPC, subnets, gateways and routing."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from infra_provisioner.resources.base import Resource
from infra_provisioner.resources.markers import ForceNew, StrOrRef

_CIDR = r"^\d{1,3}(\.\d{1,3}){3}/\d{1,2}$"


class VpcResource(Resource):
    """A virtual private network."""

    resource_type: ClassVar[str] = "aws_vpc"
    outputs: ClassVar[frozenset[str]] = frozenset({"id", "arn", "default_route_table_id"})

    type: Literal["aws_vpc"] = "aws_vpc"
    cidr_block: Annotated[str, ForceNew()] = Field(pattern=_CIDR)
    enable_dns_hostnames: bool = True
    enable_dns_support: bool = True


class SubnetResource(Resource):
    """A subnet inside a VPC, pinned to one availability zone."""

    resource_type: ClassVar[str] = "aws_subnet"

    type: Literal["aws_subnet"] = "aws_subnet"
    vpc_id: Annotated[StrOrRef, ForceNew()]
    cidr_block: Annotated[str, ForceNew()] = Field(pattern=_CIDR)
    availability_zone: Annotated[str | None, ForceNew()] = None
    map_public_ip_on_launch: bool = False


class InternetGatewayResource(Resource):
    resource_type: ClassVar[str] = "aws_internet_gateway"

    type: Literal["aws_internet_gateway"] = "aws_internet_gateway"
    vpc_id: StrOrRef


class ElasticIpResource(Resource):
    resource_type: ClassVar[str] = "aws_eip"
    outputs: ClassVar[frozenset[str]] = frozenset({"id", "arn", "public_ip", "allocation_id"})

    type: Literal["aws_eip"] = "aws_eip"
    domain: Annotated[Literal["vpc", "standard"], ForceNew()] = "vpc"


class NatGatewayResource(Resource):
    """NAT gateway giving private subnets outbound access."""

    resource_type: ClassVar[str] = "aws_nat_gateway"

    type: Literal["aws_nat_gateway"] = "aws_nat_gateway"
    subnet_id: Annotated[StrOrRef, ForceNew()]
    allocation_id: Annotated[StrOrRef, ForceNew()]


class Route(BaseModel):
    """A route entry; exactly one target must be set."""

    model_config = ConfigDict(extra="forbid")

    cidr_block: str = Field(pattern=_CIDR)
    gateway_id: StrOrRef | None = None
    nat_gateway_id: StrOrRef | None = None

    @model_validator(mode="after")
    def _exactly_one_target(self) -> Self:
        if (self.gateway_id is None) == (self.nat_gateway_id is None):
            raise ValueError("Exactly one of 'gateway_id' or 'nat_gateway_id' must be set")
        return self


class RouteTableResource(Resource):
    resource_type: ClassVar[str] = "aws_route_table"

    type: Literal["aws_route_table"] = "aws_route_table"
    vpc_id: Annotated[StrOrRef, ForceNew()]
    routes: list[Route] = Field(default_factory=list)


class RouteTableAssociationResource(Resource):
    resource_type: ClassVar[str] = "aws_route_table_association"
    outputs: ClassVar[frozenset[str]] = frozenset({"id"})

    type: Literal["aws_route_table_association"] = "aws_route_table_association"
    subnet_id: Annotated[StrOrRef, ForceNew()]
    route_table_id: StrOrRef
