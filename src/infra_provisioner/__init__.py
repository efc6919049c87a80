"""Declarative infrastructure provisioner with a plan/apply engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("infra-provisioner")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
