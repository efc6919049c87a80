"""Security group resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from infra_provisioner.resources.base import Resource
from infra_provisioner.resources.markers import Compare, ForceNew, StrOrRef


class SecurityRule(BaseModel):
    """One ingress or egress rule.

    Sources are CIDR blocks and/or other security groups.
    """

    model_config = ConfigDict(extra="forbid")

    description: str = ""
    protocol: Literal["tcp", "udp", "icmp", "-1"] = "tcp"
    from_port: int = Field(ge=0, le=65535)
    to_port: int = Field(ge=0, le=65535)
    cidr_blocks: list[str] = Field(default_factory=list)
    security_groups: list[StrOrRef] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_ports(self) -> Self:
        if self.from_port > self.to_port:
            raise ValueError("'from_port' must not exceed 'to_port'")
        return self


class SecurityGroupResource(Resource):
    """A stateful firewall attached to instances, load balancers and databases."""

    resource_type: ClassVar[str] = "aws_security_group"

    type: Literal["aws_security_group"] = "aws_security_group"
    vpc_id: Annotated[StrOrRef, ForceNew()]
    description: Annotated[str, ForceNew()] = "Managed by infra-provisioner"
    ingress: Annotated[list[SecurityRule], Compare("set")] = Field(default_factory=list)
    egress: Annotated[list[SecurityRule], Compare("set")] = Field(
        default_factory=lambda: [
            SecurityRule(protocol="-1", from_port=0, to_port=0, cidr_blocks=["0.0.0.0/0"])
        ]
    )
