"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Discriminator, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from infra_provisioner.resources.compute import (
    AutoScalingGroupResource,
    InstanceResource,
    LaunchTemplateResource,
)
from infra_provisioner.resources.database import DbInstanceResource, DbSubnetGroupResource
from infra_provisioner.resources.load_balancer import (
    ListenerResource,
    LoadBalancerResource,
    TargetGroupResource,
)
from infra_provisioner.resources.network import (
    ElasticIpResource,
    InternetGatewayResource,
    NatGatewayResource,
    RouteTableAssociationResource,
    RouteTableResource,
    SubnetResource,
    VpcResource,
)
from infra_provisioner.resources.secrets import SecretResource
from infra_provisioner.resources.security import SecurityGroupResource
from infra_provisioner.resources.storage import BucketResource, LogGroupResource


class ProviderConfig(BaseSettings):
    """Provider settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``INFRA_PROVIDER_`` prefix. Constructor kwargs take precedence.

    Without ``plugin`` the built-in local provider is used, simulating a cloud
    in the JSON file at ``path`` (relative to the config file).
    ``plugin`` is either an entry-point name in the ``infra_provisioner.providers``
    group or ``package.module:factory``; the factory is called with ``options``
    as keyword arguments.
    """

    model_config = SettingsConfigDict(env_prefix="INFRA_PROVIDER_", extra="forbid")

    plugin: str | None = None
    path: Path = Path(".infra-cloud.json")
    region: str = "local-1"
    ready_after: int = Field(default=0, ge=0)
    options: dict[str, Any] = Field(default_factory=dict)


class ExecutorConfig(BaseModel):
    """Apply concurrency, retry and readiness settings."""

    model_config = ConfigDict(extra="forbid")

    parallelism: int = Field(default=10, ge=1, le=64)
    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    ready_timeout: float = Field(default=300.0, gt=0)


class LockConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stale_after: float = Field(default=300.0, gt=0)
    heartbeat_interval: float = Field(default=30.0, ge=0)


VariableType = Literal["string", "number", "bool", "list(string)"]


class VariableSpec(BaseModel):
    """A typed input variable, referenced as ``${var.NAME}``."""

    model_config = ConfigDict(extra="forbid")

    type: VariableType = "string"
    default: Any = None
    description: str = ""


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


_ResourceEntry = Annotated[
    VpcResource
    | SubnetResource
    | InternetGatewayResource
    | ElasticIpResource
    | NatGatewayResource
    | RouteTableResource
    | RouteTableAssociationResource
    | SecurityGroupResource
    | LogGroupResource
    | BucketResource
    | SecretResource
    | DbSubnetGroupResource
    | DbInstanceResource
    | InstanceResource
    | LaunchTemplateResource
    | LoadBalancerResource
    | TargetGroupResource
    | ListenerResource
    | AutoScalingGroupResource,
    Discriminator("type"),
]


class Config(BaseModel):
    """Provisioning configuration. Validates YAML structure directly."""

    model_config = ConfigDict(extra="forbid")

    stack: str = Field(pattern=r"^[a-zA-Z0-9_-]+$")
    state_path: Path = Path(".infra-state.json")
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    variables: Annotated[dict[str, VariableSpec], BeforeValidator(_none_to_dict)] = {}
    common_tags: Annotated[dict[str, str], BeforeValidator(_none_to_dict)] = {}
    resources: Annotated[list[_ResourceEntry], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()
