"""
Capability registry — central lookup for all capability providers.

The registry is the single point of provider management. The engine
never holds providers directly: the graph builder resolves each task's
capability here, once, before the run starts.
"""

from __future__ import annotations

import logging
from typing import Any

from hostconverge.adapters.base import CapabilityProvider

logger = logging.getLogger(__name__)


class CapabilityRegistry:
    """Central registry of capability providers.

    Features:
        - Register/unregister providers by capability name
        - Validate task parameters ahead of a run
        - Query provider availability on this host
    """

    def __init__(self, providers: list[CapabilityProvider] | None = None):
        self._providers: dict[str, CapabilityProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: CapabilityProvider) -> None:
        """Register a provider under its capability name."""
        name = provider.name
        if name in self._providers:
            logger.warning("Overwriting existing provider: %s", name)
        self._providers[name] = provider
        logger.debug("Registered provider: %s", name)

    def unregister(self, name: str) -> None:
        """Remove a provider from the registry."""
        self._providers.pop(name, None)

    def get(self, name: str) -> CapabilityProvider | None:
        """Look up a provider by capability name."""
        return self._providers.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def list_capabilities(self) -> list[str]:
        """List all registered capability names."""
        return list(self._providers.keys())

    def provider_status(self) -> dict[str, dict[str, Any]]:
        """Get availability status of all registered providers."""
        status = {}
        for name, provider in self._providers.items():
            try:
                available = provider.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": provider.__class__.__name__,
            }
        return status

    def validate(self, capability: str, params: dict[str, Any]) -> tuple[bool, str]:
        """Validate parameters for a capability.

        Returns:
            (is_valid, error_message), including "unknown capability".
        """
        provider = self._providers.get(capability)
        if provider is None:
            known = ", ".join(sorted(self._providers)) or "none"
            return False, f"Unknown capability '{capability}' (registered: {known})"
        try:
            return provider.validate(params)
        except Exception as e:
            return False, f"Validation error: {e}"


def build_default_registry() -> CapabilityRegistry:
    """Registry with every built-in provider acting on the local host."""
    from hostconverge.adapters.control import DebugProvider, FailProvider
    from hostconverge.adapters.shell.command import CommandProvider
    from hostconverge.adapters.shell.download import DownloadProvider
    from hostconverge.adapters.shell.lineinfile import LineInFileProvider
    from hostconverge.adapters.system.apt import AptProvider
    from hostconverge.adapters.system.service import ServiceProvider
    from hostconverge.adapters.system.user import UserGroupsProvider

    return CapabilityRegistry([
        AptProvider(),
        ServiceProvider(),
        LineInFileProvider(),
        DownloadProvider(),
        UserGroupsProvider(),
        CommandProvider(),
        DebugProvider(),
        FailProvider(),
    ])
