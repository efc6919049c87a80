"""Compute resources: single instances, launch templates and auto-scaling groups."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import Field, model_validator

from infra_provisioner.resources.base import Resource
from infra_provisioner.resources.markers import Compare, ForceNew, StrOrRef, Template


class InstanceResource(Resource):
    """A single compute instance."""

    resource_type: ClassVar[str] = "aws_instance"
    outputs: ClassVar[frozenset[str]] = frozenset({"id", "arn", "private_ip", "public_ip"})

    type: Literal["aws_instance"] = "aws_instance"
    ami: Annotated[str, ForceNew()] = Field(min_length=1)
    instance_type: str = "t3.micro"
    subnet_id: Annotated[StrOrRef, ForceNew()]
    security_group_ids: Annotated[list[StrOrRef], Compare("set")] = Field(default_factory=list)
    user_data: Annotated[str | Template | None, ForceNew()] = None


class LaunchTemplateResource(Resource):
    """Instance blueprint used by an auto-scaling group.

    ``user_data`` usually invokes ``infra-provisioner bootstrap run`` with the
    environment, log group, secret reference and database endpoint. As a
    ``Template`` it can embed references, which also orders the template
    after the database, secret and log group it points at.
    """

    resource_type: ClassVar[str] = "aws_launch_template"
    outputs: ClassVar[frozenset[str]] = frozenset({"id", "arn", "latest_version"})

    type: Literal["aws_launch_template"] = "aws_launch_template"
    image_id: str = Field(min_length=1)
    instance_type: str = "t3.micro"
    security_group_ids: Annotated[list[StrOrRef], Compare("set")] = Field(default_factory=list)
    iam_instance_profile: str | None = None
    user_data: str | Template | None = None
    monitoring: bool = False


class AutoScalingGroupResource(Resource):
    resource_type: ClassVar[str] = "aws_autoscaling_group"

    type: Literal["aws_autoscaling_group"] = "aws_autoscaling_group"
    min_size: int = Field(ge=0)
    max_size: int = Field(ge=0)
    desired_capacity: int | None = Field(default=None, ge=0)
    subnet_ids: Annotated[list[StrOrRef], Compare("set")] = Field(min_length=1)
    launch_template_id: StrOrRef
    launch_template_version: str = "$Latest"
    target_group_arns: Annotated[list[StrOrRef], Compare("set")] = Field(default_factory=list)
    health_check_type: Literal["EC2", "ELB"] = "ELB"
    health_check_grace_period: int = Field(default=300, ge=0)

    @model_validator(mode="after")
    def _check_sizes(self) -> Self:
        if self.min_size > self.max_size:
            raise ValueError("'min_size' must not exceed 'max_size'")
        if self.desired_capacity is not None and not (
            self.min_size <= self.desired_capacity <= self.max_size
        ):
            raise ValueError("'desired_capacity' must lie between 'min_size' and 'max_size'")
        return self
