"""
Capability provider base — the contract between engine and host.

The engine only talks to the host through this interface: it never
runs a package manager or edits a file itself. Every provider is a
narrow, side-effecting capability (apt, service, lineinfile, ...)
plus an optional read-only answer to "does the declared end state
already hold?", which is what makes idempotent tasks cheap to re-run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from hostconverge.core.models.result import Invocation, TaskResult


class ExecutionContext(BaseModel):
    """Everything a provider needs to apply one task's effect."""

    task: str
    capability: str
    params: dict[str, Any] = Field(default_factory=dict)
    host: str = "localhost"
    timeout: float = 300.0
    dry_run: bool = False
    prior: dict[str, TaskResult] = Field(default_factory=dict)


class CapabilityProvider(ABC):
    """Abstract base class for all capability providers.

    ``invoke`` performs the side effect. A non-zero ``exit_code`` or a
    raised exception marks the task failed; the executor records the
    output verbatim and never retries.

    To create a new provider:
        1. Subclass CapabilityProvider
        2. Implement name, is_available, validate, invoke
        3. Optionally implement can_check + is_converged
        4. Register it in the CapabilityRegistry
    """

    #: Failure aborts the run unless the task says otherwise.
    fatal_by_default: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """The capability identifier used in plans (e.g. 'apt')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying tool exists on this host. Never raises."""

    @abstractmethod
    def validate(self, params: dict[str, Any]) -> tuple[bool, str]:
        """Check parameters before any task runs.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def invoke(self, context: ExecutionContext) -> Invocation:
        """Apply the effect and return the raw invocation result."""

    def can_check(self, params: dict[str, Any]) -> bool:
        """Whether ``is_converged`` can answer for these parameters."""
        return False

    def reports_change(self, params: dict[str, Any]) -> bool:
        """Whether ``invoke`` sets ``Invocation.changed`` reliably."""
        return False

    def is_converged(self, context: ExecutionContext, facts: Any) -> bool | None:
        """Does the declared end state already hold?

        Args:
            context: The task's execution context.
            facts: The run's FactProvider.

        Returns:
            True/False, or None when this provider cannot tell.

        Raises:
            FactUnavailable: A needed fact cannot be determined.
        """
        return None

    def affected_facts(self, params: dict[str, Any]) -> list[str]:
        """Fact keys (or glob patterns) a change by this task makes stale."""
        return []

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


def as_list(value: Any) -> list[str]:
    """Normalize a str-or-list parameter to a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]
