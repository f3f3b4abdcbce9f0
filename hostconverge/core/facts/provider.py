"""
Fact provider — cached, typed view of host state.

The provider answers ``query(key)`` by dispatching to the probe
registered for the key's kind, caching the answer for the rest of the
run. Tasks whose effect changes host state invalidate the keys they
touch, so later guards and idempotence checks see fresh values.

One provider belongs to one host's run. It is only ever used from the
engine thread driving that host, so the cache is not locked.
"""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path
from typing import Any, Iterable

from hostconverge.core.errors import FactUnavailable
from hostconverge.core.facts.probes import (
    DEFAULT_ENV_FILE,
    DEFAULT_PROBE_TIMEOUT,
    Probe,
    default_probes,
)
from hostconverge.core.models.fact import Fact, split_key

logger = logging.getLogger(__name__)


class FactProvider:
    """Query, cache and invalidate host facts.

    Args:
        probes: Probe functions keyed by fact kind. None = built-in set.
        env_file: Environment file read by the ``env`` probe.
        timeout: Timeout for probes that shell out.
    """

    def __init__(
        self,
        probes: dict[str, Probe] | None = None,
        env_file: Path = DEFAULT_ENV_FILE,
        timeout: int = DEFAULT_PROBE_TIMEOUT,
    ):
        if probes is None:
            probes = default_probes(env_file=env_file, timeout=timeout)
        self._probes: dict[str, Probe] = dict(probes)
        self._cache: dict[str, Fact] = {}
        self._probe_count = 0

    # ── Probes ──────────────────────────────────────────────────

    def register_probe(self, kind: str, probe: Probe) -> None:
        """Add or replace the probe for a fact kind."""
        if kind in self._probes:
            logger.debug("Overwriting fact probe: %s", kind)
        self._probes[kind] = probe

    @property
    def kinds(self) -> list[str]:
        return sorted(self._probes)

    @property
    def probe_count(self) -> int:
        """How many times a probe actually ran (cache misses)."""
        return self._probe_count

    # ── Queries ─────────────────────────────────────────────────

    def query(self, key: str) -> Any:
        """Return the fact's value, or NOT_FOUND.

        Raises:
            FactUnavailable: Unknown kind, malformed key, or the probe
                could not determine the value.
        """
        return self.fact(key).value

    def fact(self, key: str) -> Fact:
        """Return the full Fact record for a key (cached)."""
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            kind, arg = split_key(key)
        except ValueError as e:
            raise FactUnavailable(key, str(e)) from e

        probe = self._probes.get(kind)
        if probe is None:
            raise FactUnavailable(key, f"no probe for fact kind '{kind}'")

        self._probe_count += 1
        try:
            value = probe(arg)
        except FactUnavailable:
            raise
        except Exception as e:
            raise FactUnavailable(key, f"probe error: {e}") from e

        fact = Fact(key=key, value=value)
        self._cache[key] = fact
        logger.debug("Fact %s = %r", key, value)
        return fact

    # ── Cache control ───────────────────────────────────────────

    def invalidate(self, keys: Iterable[str]) -> int:
        """Drop cached facts. Keys may be glob patterns (``env:*``).

        Returns:
            Number of cache entries dropped.
        """
        dropped = 0
        for pattern in keys:
            matches = [k for k in self._cache if fnmatch.fnmatchcase(k, pattern)]
            for key in matches:
                del self._cache[key]
                dropped += 1
        if dropped:
            logger.debug("Invalidated %d cached fact(s)", dropped)
        return dropped

    def invalidate_all(self) -> None:
        self._cache.clear()

    def snapshot(self) -> dict[str, Any]:
        """Current cached values, keyed by fact key."""
        return {key: fact.value for key, fact in self._cache.items()}

    @property
    def cached_keys(self) -> list[str]:
        return list(self._cache)
