"""Errors raised at the state and provider boundaries."""

from __future__ import annotations


class CoreError(Exception):
    """Base exception for state store and provider errors."""


class CorruptStateError(CoreError):
    """Raised when the persisted state cannot be parsed.

    The state file is left untouched; an operator has to repair or restore it
    (a ``.backup`` copy of the previous revision sits next to it).
    """

    def __init__(self, path: object, reason: str) -> None:
        super().__init__(f"State file {path} is corrupt: {reason}")
        self.path = path
        self.reason = reason


class ProviderError(CoreError):
    """Base class for errors reported by a provider integration."""


class ProviderTransientError(ProviderError):
    """Throttling, eventual-consistency lag and similar retryable failures."""


class ProviderPermanentError(ProviderError):
    """Validation, permission and other failures that retrying cannot fix."""
