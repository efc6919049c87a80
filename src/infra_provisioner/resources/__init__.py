"""Resource definitions."""

from infra_provisioner.resources.base import Lifecycle, Resource
from infra_provisioner.resources.compute import (
    AutoScalingGroupResource,
    InstanceResource,
    LaunchTemplateResource,
)
from infra_provisioner.resources.database import DbInstanceResource, DbSubnetGroupResource
from infra_provisioner.resources.load_balancer import (
    HealthCheck,
    ListenerResource,
    LoadBalancerResource,
    TargetGroupResource,
)
from infra_provisioner.resources.markers import Compare, ForceNew, Ref, Template
from infra_provisioner.resources.network import (
    ElasticIpResource,
    InternetGatewayResource,
    NatGatewayResource,
    Route,
    RouteTableAssociationResource,
    RouteTableResource,
    SubnetResource,
    VpcResource,
)
from infra_provisioner.resources.secrets import SecretResource
from infra_provisioner.resources.security import SecurityGroupResource, SecurityRule
from infra_provisioner.resources.storage import BucketResource, LogGroupResource

ALL_RESOURCE_TYPES: tuple[type[Resource], ...] = (
    VpcResource,
    SubnetResource,
    InternetGatewayResource,
    ElasticIpResource,
    NatGatewayResource,
    RouteTableResource,
    RouteTableAssociationResource,
    SecurityGroupResource,
    LogGroupResource,
    BucketResource,
    SecretResource,
    DbSubnetGroupResource,
    DbInstanceResource,
    InstanceResource,
    LaunchTemplateResource,
    LoadBalancerResource,
    TargetGroupResource,
    ListenerResource,
    AutoScalingGroupResource,
)

__all__ = [
    "ALL_RESOURCE_TYPES",
    "AutoScalingGroupResource",
    "BucketResource",
    "Compare",
    "DbInstanceResource",
    "DbSubnetGroupResource",
    "ElasticIpResource",
    "ForceNew",
    "HealthCheck",
    "InstanceResource",
    "InternetGatewayResource",
    "LaunchTemplateResource",
    "Lifecycle",
    "ListenerResource",
    "LoadBalancerResource",
    "LogGroupResource",
    "NatGatewayResource",
    "Ref",
    "Resource",
    "Route",
    "RouteTableAssociationResource",
    "RouteTableResource",
    "SecretResource",
    "SecurityGroupResource",
    "SecurityRule",
    "SubnetResource",
    "Template",
    "TargetGroupResource",
    "VpcResource",
]
