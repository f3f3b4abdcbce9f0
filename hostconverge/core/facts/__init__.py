"""Host facts — probes plus the per-run caching provider."""

from hostconverge.core.facts.provider import FactProvider

__all__ = ["FactProvider"]
