"""Adapters — capability providers that act on the host.

Public re-exports for convenient access.
"""

from hostconverge.adapters.base import CapabilityProvider, ExecutionContext
from hostconverge.adapters.mock import MockProvider
from hostconverge.adapters.registry import CapabilityRegistry, build_default_registry

__all__ = [
    "CapabilityProvider",
    "CapabilityRegistry",
    "ExecutionContext",
    "MockProvider",
    "build_default_registry",
]
