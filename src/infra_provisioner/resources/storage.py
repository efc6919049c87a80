"""Object storage and log group resources."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal

from pydantic import Field

from infra_provisioner.resources.base import Resource
from infra_provisioner.resources.markers import ForceNew


class BucketResource(Resource):
    resource_type: ClassVar[str] = "aws_s3_bucket"
    outputs: ClassVar[frozenset[str]] = frozenset({"id", "arn", "bucket_domain_name"})

    type: Literal["aws_s3_bucket"] = "aws_s3_bucket"
    bucket: Annotated[str, ForceNew()] = Field(pattern=r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
    versioning: bool = False
    force_destroy: bool = False
    block_public_access: bool = True


class LogGroupResource(Resource):
    resource_type: ClassVar[str] = "aws_cloudwatch_log_group"

    type: Literal["aws_cloudwatch_log_group"] = "aws_cloudwatch_log_group"
    log_group_name: Annotated[str, ForceNew()] = Field(min_length=1)
    retention_in_days: Literal[1, 3, 5, 7, 14, 30, 60, 90, 180, 365] = 7
