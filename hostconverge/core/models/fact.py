"""
Fact model — a cached observation about host state.

Fact keys are ``kind:argument`` strings (``package:lsof``,
``port:8080``, ``groups:ubuntu``). A resource that does not exist is
not an error: its fact value is the ``NOT_FOUND`` sentinel.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class NotFound(enum.Enum):
    """Sentinel type for an absent resource. Falsy."""

    NOT_FOUND = "not-found"

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = NotFound.NOT_FOUND


def split_key(key: str) -> tuple[str, str]:
    """Split ``kind:argument`` into its parts. Argument may contain colons."""
    kind, sep, arg = key.partition(":")
    if not sep or not kind:
        raise ValueError(f"Fact key must look like 'kind:argument', got {key!r}")
    return kind, arg


class Fact(BaseModel):
    """A key/value observation with its collection time."""

    key: str
    value: Any = None
    collected_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def found(self) -> bool:
        return self.value is not NOT_FOUND

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "found": self.found,
            "value": self.value if self.found else None,
            "collected_at": self.collected_at,
        }
