"""Managed relational database resources."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal

from pydantic import Field

from infra_provisioner.resources.base import Resource
from infra_provisioner.resources.markers import Compare, ForceNew, StrOrRef


class DbSubnetGroupResource(Resource):
    resource_type: ClassVar[str] = "aws_db_subnet_group"

    type: Literal["aws_db_subnet_group"] = "aws_db_subnet_group"
    description: str = "Managed by infra-provisioner"
    subnet_ids: Annotated[list[StrOrRef], Compare("set")] = Field(min_length=2)


class DbInstanceResource(Resource):
    """A managed database instance.

    The master password is never part of the declaration: ``password_secret``
    points at a secret the provider reads the credential from.
    """

    resource_type: ClassVar[str] = "aws_db_instance"
    outputs: ClassVar[frozenset[str]] = frozenset({"id", "arn", "endpoint", "address", "port"})

    type: Literal["aws_db_instance"] = "aws_db_instance"
    engine: Annotated[Literal["mysql", "postgres", "mariadb"], ForceNew()] = "mysql"
    engine_version: str = "8.0"
    instance_class: str = "db.t3.micro"
    allocated_storage: int = Field(default=20, ge=20)
    db_name: Annotated[str, ForceNew()] = Field(pattern=r"^[a-zA-Z][a-zA-Z0-9_]*$")
    username: Annotated[str, ForceNew()] = "admin"
    password_secret: StrOrRef
    db_subnet_group_name: Annotated[StrOrRef, ForceNew()]
    vpc_security_group_ids: Annotated[list[StrOrRef], Compare("set")] = Field(
        default_factory=list
    )
    multi_az: bool = False
    backup_retention_period: int = Field(default=7, ge=0, le=35)
    skip_final_snapshot: bool = True
    storage_encrypted: Annotated[bool, ForceNew()] = True
