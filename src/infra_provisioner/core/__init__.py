"""Core infrastructure components for infra-provisioner."""

from infra_provisioner.core.errors import (
    CorruptStateError,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
)
from infra_provisioner.core.provider import LocalProvider, Provider
from infra_provisioner.core.state import ResourceInstance, State, StateStore

__all__ = [
    "CorruptStateError",
    "LocalProvider",
    "Provider",
    "ProviderError",
    "ProviderPermanentError",
    "ProviderTransientError",
    "ResourceInstance",
    "State",
    "StateStore",
]
