"""
Invocation and TaskResult models — the execution contract.

Capability providers return Invocations (raw exit code and output).
The executor turns each Invocation into a TaskResult: the immutable
record of what happened to one task, appended to the run log.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Outcome = Literal["changed", "unchanged", "skipped", "failed"]
TaskState = Literal["succeeded", "failed", "skipped"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Invocation(BaseModel):
    """Raw result of one capability invocation.

    ``changed`` is the provider's own verdict when it can tell (apt
    knows whether anything was installed). None means "unknown": the
    executor then treats a successful invocation as a change.
    """

    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    changed: bool | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class TaskResult(BaseModel):
    """Outcome of one task. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    task: str
    capability: str = ""
    outcome: Outcome
    handler: bool = False
    fatal: bool = False

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    error: str | None = None
    error_kind: str = ""            # CapabilityFailure, Timeout

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.outcome == "changed"

    @property
    def failed(self) -> bool:
        return self.outcome == "failed"

    @property
    def skipped(self) -> bool:
        return self.outcome == "skipped"

    @property
    def state(self) -> TaskState:
        """Final state machine position: Succeeded, Failed or Skipped."""
        if self.outcome == "failed":
            return "failed"
        if self.outcome == "skipped":
            return "skipped"
        return "succeeded"

    @property
    def stdout_lines(self) -> list[str]:
        return self.stdout.splitlines()

    @classmethod
    def success(
        cls,
        task: str,
        changed: bool,
        **kwargs: Any,
    ) -> TaskResult:
        """Create a changed/unchanged result."""
        return cls(
            task=task,
            outcome="changed" if changed else "unchanged",
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        task: str,
        error: str,
        kind: str = "CapabilityFailure",
        **kwargs: Any,
    ) -> TaskResult:
        """Create a failure result."""
        return cls(
            task=task,
            outcome="failed",
            error=error,
            error_kind=kind,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        task: str,
        reason: str = "",
        **kwargs: Any,
    ) -> TaskResult:
        """Create a skip result. The reason lands in ``metadata``."""
        metadata = dict(kwargs.pop("metadata", {}))
        metadata["reason"] = reason
        return cls(
            task=task,
            outcome="skipped",
            metadata=metadata,
            **kwargs,
        )
