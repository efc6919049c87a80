"""Load balancer, target group and listener resources."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

from infra_provisioner.resources.base import Resource
from infra_provisioner.resources.markers import Compare, ForceNew, StrOrRef


class LoadBalancerResource(Resource):
    resource_type: ClassVar[str] = "aws_lb"
    outputs: ClassVar[frozenset[str]] = frozenset({"id", "arn", "dns_name", "zone_id"})

    type: Literal["aws_lb"] = "aws_lb"
    internal: Annotated[bool, ForceNew()] = False
    load_balancer_type: Annotated[Literal["application", "network"], ForceNew()] = "application"
    subnets: Annotated[list[StrOrRef], Compare("set")] = Field(min_length=1)
    security_groups: Annotated[list[StrOrRef], Compare("set")] = Field(default_factory=list)
    enable_deletion_protection: bool = False


class HealthCheck(BaseModel):
    """Target health check settings."""

    model_config = ConfigDict(extra="forbid")

    path: str = "/"
    port: str = "traffic-port"
    protocol: Literal["HTTP", "HTTPS", "TCP"] = "HTTP"
    matcher: str = "200"
    interval: int = Field(default=30, ge=5, le=300)
    timeout: int = Field(default=5, ge=2, le=120)
    healthy_threshold: int = Field(default=2, ge=2, le=10)
    unhealthy_threshold: int = Field(default=3, ge=2, le=10)


class TargetGroupResource(Resource):
    resource_type: ClassVar[str] = "aws_lb_target_group"
    outputs: ClassVar[frozenset[str]] = frozenset({"id", "arn", "arn_suffix"})

    type: Literal["aws_lb_target_group"] = "aws_lb_target_group"
    port: Annotated[int, ForceNew()] = Field(ge=1, le=65535)
    protocol: Annotated[Literal["HTTP", "HTTPS", "TCP"], ForceNew()] = "HTTP"
    vpc_id: Annotated[StrOrRef, ForceNew()]
    target_type: Annotated[Literal["instance", "ip"], ForceNew()] = "instance"
    health_check: HealthCheck = Field(default_factory=HealthCheck)


class ListenerResource(Resource):
    resource_type: ClassVar[str] = "aws_lb_listener"

    type: Literal["aws_lb_listener"] = "aws_lb_listener"
    load_balancer_arn: Annotated[StrOrRef, ForceNew()]
    port: int = Field(ge=1, le=65535)
    protocol: Literal["HTTP", "HTTPS", "TCP"] = "HTTP"
    default_target_group_arn: StrOrRef
