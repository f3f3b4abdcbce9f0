"""
Convergence engine — the central loop of one host's run.

Walks the regular tasks in declaration order, then fires the handlers
that were notified, each once, in the order they were first notified.

Per task:   Pending → Running → {Succeeded, Failed, Skipped}
Per run:    Idle → Converging → {Converged, Aborted}

    guard false               → Skipped
    fatal task failed         → Aborted; remaining tasks Skipped,
                                already-notified handlers still fire
    non-fatal task failed     → continue
    cancel()                  → remaining tasks Skipped, Aborted

There is no rollback: an aborted run leaves the host as it was when
the failing task stopped.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from hostconverge.adapters.registry import CapabilityRegistry
from hostconverge.core.engine.executor import DEFAULT_TIMEOUT, TaskExecutor, generate_run_id
from hostconverge.core.engine.graph import ExecutionPlan, PlannedTask, build_plan
from hostconverge.core.errors import FactUnavailable, GuardError
from hostconverge.core.models.plan import Plan
from hostconverge.core.models.report import RunReport, RunState
from hostconverge.core.models.result import TaskResult
from hostconverge.core.observability.reporting import MultiSink, ReportSink

logger = logging.getLogger(__name__)

REASON_GUARD = "condition false"
REASON_ABORTED = "run aborted"
REASON_CANCELLED = "run cancelled"


class ConvergenceEngine:
    """Drive one host toward a plan's declared state.

    Args:
        registry: Capability providers for this host.
        facts: This host's FactProvider.
        sinks: Receivers for results as they happen.
        default_timeout: Per-invocation timeout unless a task sets one.
        dry_run: Check mode, see TaskExecutor.
        host: Host label recorded in the report.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        facts: Any,
        sinks: list[ReportSink] | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        dry_run: bool = False,
        host: str = "localhost",
    ):
        self.registry = registry
        self.facts = facts
        self.sink = MultiSink(sinks)
        self.host = host
        self.dry_run = dry_run
        self.executor = TaskExecutor(
            facts,
            default_timeout=default_timeout,
            dry_run=dry_run,
            host=host,
        )
        self.state: RunState = "idle"
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Ask the run to stop before its next task. Safe from any thread."""
        logger.info("Cancellation requested for %s", self.host)
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def converge(self, plan: Plan, run_id: str | None = None) -> RunReport:
        """Build and run a plan.

        Raises:
            ConfigError: The plan is invalid. Nothing has run.
        """
        return self.run(build_plan(plan, self.registry), run_id=run_id)

    def run(self, execution: ExecutionPlan, run_id: str | None = None) -> RunReport:
        """Run an already-built plan and return its report."""
        report = RunReport(
            run_id=run_id or generate_run_id(),
            plan=execution.name,
            host=self.host,
            dry_run=self.dry_run,
            run_state="converging",
        )
        self.state = "converging"
        self.sink.on_start(execution.name, self.host, report.run_id)

        results: dict[str, TaskResult] = {}
        notified: list[str] = []
        aborted = False

        def record(result: TaskResult) -> None:
            report.add(result)
            results[result.task] = result
            self.sink.on_result(result)

        # ── Regular tasks ───────────────────────────────────────
        for planned in execution.tasks:
            if self._cancel.is_set():
                report.cancelled = True
                record(_skipped(planned, REASON_CANCELLED))
                continue
            if aborted:
                record(_skipped(planned, REASON_ABORTED))
                continue

            result = self._run_one(planned, results)
            record(result)

            if result.changed:
                for name in planned.task.notify:
                    if name not in notified:
                        notified.append(name)
            if result.failed and result.fatal:
                logger.error("Fatal task '%s' failed, aborting run: %s", planned.name, result.error)
                aborted = True

        # ── Handlers ────────────────────────────────────────────
        for name in notified:
            handler = execution.handlers[name]
            if self._cancel.is_set():
                report.cancelled = True
                record(_skipped(handler, REASON_CANCELLED))
                continue
            record(self._run_one(handler, results))

        if report.status == "aborted":
            aborted = True
        self.state = "aborted" if aborted or report.cancelled else "converged"
        report.run_state = self.state
        report.finish()
        self.sink.on_complete(report)
        return report

    def _run_one(self, planned: PlannedTask, results: dict[str, TaskResult]) -> TaskResult:
        if planned.when is not None:
            try:
                go = planned.when.evaluate(self.facts, results)
            except (FactUnavailable, GuardError) as e:
                logger.warning("%s: guard treated as false: %s", planned.name, e)
                go = False
            if not go:
                return _skipped(planned, REASON_GUARD)

        logger.debug("Running %s", planned.name)
        return self.executor.execute(planned, results)


def _skipped(planned: PlannedTask, reason: str) -> TaskResult:
    return TaskResult.skip(
        planned.name,
        reason,
        capability=planned.task.capability,
        handler=planned.handler,
        fatal=planned.fatal,
    )
