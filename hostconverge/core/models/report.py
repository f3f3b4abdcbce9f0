"""
RunReport — aggregate of every TaskResult produced by one run.

Status invariant:
    aborted          iff a fatal task (or handler) failed
    partial failure  iff some non-fatal task failed
    success          otherwise

The run *state* (converging, converged, aborted) tracks the engine's
state machine and is independent of the status: a cancelled run is in
state 'aborted' but its status still follows the invariant above.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from hostconverge.core.models.result import TaskResult

RunStatus = Literal["success", "partial failure", "aborted"]
RunState = Literal["idle", "converging", "converged", "aborted"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class RunReport(BaseModel):
    """Ordered run log plus overall status."""

    run_id: str = ""
    plan: str = ""
    host: str = "localhost"
    dry_run: bool = False

    run_state: RunState = "idle"
    cancelled: bool = False

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str | None = None

    results: list[TaskResult] = Field(default_factory=list)

    def add(self, result: TaskResult) -> None:
        """Append a result to the run log."""
        self.results.append(result)

    def result_for(self, task: str) -> TaskResult | None:
        """Latest result recorded for a task name."""
        for result in reversed(self.results):
            if result.task == task:
                return result
        return None

    # ── Counters ─────────────────────────────────────────────────

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def changed(self) -> int:
        return sum(1 for r in self.results if r.outcome == "changed")

    @property
    def unchanged(self) -> int:
        return sum(1 for r in self.results if r.outcome == "unchanged")

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.outcome == "skipped")

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome == "failed")

    @property
    def status(self) -> RunStatus:
        if any(r.failed and r.fatal for r in self.results):
            return "aborted"
        if self.failed:
            return "partial failure"
        return "success"

    @property
    def duration_ms(self) -> int:
        if not self.ended_at:
            return 0
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.ended_at)
        return int((end - start).total_seconds() * 1000)

    def finish(self) -> None:
        """Stamp the end time."""
        self.ended_at = _now_iso()

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "plan": self.plan,
            "host": self.host,
            "dry_run": self.dry_run,
            "status": self.status,
            "run_state": self.run_state,
            "cancelled": self.cancelled,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "total": self.total,
            "changed": self.changed,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "failed": self.failed,
            "results": [
                {
                    "task": r.task,
                    "state": r.state,
                    "outcome": r.outcome,
                    "changed": r.changed,
                    "handler": r.handler,
                    "stdout": r.stdout,
                    "stderr": r.stderr,
                    "exit_code": r.exit_code,
                    "error": r.error,
                    "error_kind": r.error_kind,
                    "duration_ms": r.duration_ms,
                }
                for r in self.results
            ],
        }
