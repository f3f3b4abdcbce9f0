"""
Mock provider — universal test double for capability invocations.

Simulates a capability without touching the host. Configurable per
task name to succeed, fail, raise, stall, or report its end state as
already converged.
"""

from __future__ import annotations

import time
from typing import Any

from hostconverge.adapters.base import CapabilityProvider, ExecutionContext
from hostconverge.core.models.result import Invocation


class MockProvider(CapabilityProvider):
    """Universal mock provider for testing.

    By default every invocation succeeds. With ``checkable=True`` the
    mock also answers idempotence checks: a task that succeeded once
    reports its end state as converged from then on.
    """

    def __init__(
        self,
        capability: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
        checkable: bool = False,
        fatal_by_default: bool = False,
    ):
        self._name = capability
        self._available = available
        self._default_output = default_output
        self._checkable = checkable
        self.fatal_by_default = fatal_by_default
        self._responses: dict[str, Invocation] = {}
        self._exceptions: dict[str, Exception] = {}
        self._delays: dict[str, float] = {}
        self._converged: set[str] = set()
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        """Number of times invoke has been called."""
        return len(self._call_log)

    def calls_for(self, task: str) -> int:
        return sum(1 for ctx in self._call_log if ctx.task == task)

    def is_available(self) -> bool:
        return self._available

    def set_response(self, task: str, invocation: Invocation) -> None:
        """Set a custom invocation result for a task name."""
        self._responses[task] = invocation

    def set_failure(self, task: str, error: str = "Mock failure", exit_code: int = 1) -> None:
        """Configure a task to fail with a non-zero exit code."""
        self._responses[task] = Invocation(exit_code=exit_code, stderr=error)

    def set_exception(self, task: str, exc: Exception) -> None:
        """Configure a task's invocation to raise."""
        self._exceptions[task] = exc

    def set_delay(self, task: str, seconds: float) -> None:
        """Make a task's invocation take ``seconds``."""
        self._delays[task] = seconds

    def mark_converged(self, task: str) -> None:
        """Report a task's end state as already holding."""
        self._converged.add(task)

    def validate(self, params: dict[str, Any]) -> tuple[bool, str]:
        if params.get("invalid"):
            return False, str(params["invalid"])
        return True, ""

    def can_check(self, params: dict[str, Any]) -> bool:
        return self._checkable

    def is_converged(self, context: ExecutionContext, facts: Any) -> bool | None:
        if not self._checkable:
            return None
        return context.task in self._converged

    def invoke(self, context: ExecutionContext) -> Invocation:
        self._call_log.append(context)

        delay = self._delays.get(context.task)
        if delay:
            time.sleep(delay)

        if context.task in self._exceptions:
            raise self._exceptions[context.task]

        if context.task in self._responses:
            return self._responses[context.task]

        self._converged.add(context.task)
        return Invocation(stdout=self._default_output, metadata={"mock": True})

    def reset(self) -> None:
        """Clear call log, custom responses and converged state."""
        self._call_log.clear()
        self._responses.clear()
        self._exceptions.clear()
        self._delays.clear()
        self._converged.clear()
