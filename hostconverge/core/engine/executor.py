"""
Task executor — apply one task's effect and record the outcome.

The executor owns everything that happens between "the task's guard
passed" and "a TaskResult exists":

    idempotence check → invoke (under timeout) → changed_when /
    failed_when → fact invalidation

It never raises for a task-level problem: provider exceptions,
non-zero exits and timeouts all become failed TaskResults. It never
retries.
"""

from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import UTC, datetime
from typing import Any, Mapping

from hostconverge.adapters.base import CapabilityProvider, ExecutionContext
from hostconverge.core.engine.graph import PlannedTask
from hostconverge.core.errors import CapabilityFailure, FactUnavailable, GuardError, TaskTimeout
from hostconverge.core.models.result import Invocation, TaskResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class TaskExecutor:
    """Execute planned tasks against one host.

    Args:
        facts: The host's FactProvider.
        default_timeout: Seconds per invocation unless the task sets one.
        dry_run: Check mode: report what would change, invoke nothing.
        host: Host label passed to providers.
    """

    def __init__(
        self,
        facts: Any,
        default_timeout: float = DEFAULT_TIMEOUT,
        dry_run: bool = False,
        host: str = "localhost",
    ):
        self.facts = facts
        self.default_timeout = default_timeout
        self.dry_run = dry_run
        self.host = host

    def execute(self, planned: PlannedTask, results: Mapping[str, TaskResult]) -> TaskResult:
        """Run one task whose ``when`` guard has already passed.

        Args:
            planned: The bound task.
            results: Latest result per task name, for guards and ``debug``.
        """
        task = planned.task
        started_at = _now_iso()
        t0 = time.monotonic()

        context = ExecutionContext(
            task=task.name,
            capability=task.capability,
            params=dict(task.params),
            host=self.host,
            timeout=task.timeout or self.default_timeout,
            dry_run=self.dry_run,
            prior=dict(results),
        )
        common: dict[str, Any] = {
            "capability": task.capability,
            "handler": planned.handler,
            "fatal": planned.fatal,
            "started_at": started_at,
        }

        def stamp() -> dict[str, Any]:
            return {
                **common,
                "ended_at": _now_iso(),
                "duration_ms": int((time.monotonic() - t0) * 1000),
            }

        # ── Idempotence check ───────────────────────────────────
        if task.idempotent:
            holds = self._end_state_holds(planned, context, results)
            if holds:
                logger.debug("%s: end state already holds", task.name)
                return TaskResult.success(task.name, changed=False, metadata={"converged": True}, **stamp())
            if self.dry_run:
                if holds is None:
                    return TaskResult.skip(task.name, "check mode: end state unknown", **stamp())
                return TaskResult.success(task.name, changed=True, metadata={"dry_run": True}, **stamp())
        elif self.dry_run:
            return TaskResult.skip(task.name, "check mode: one-shot task not run", **stamp())

        # ── Invoke ──────────────────────────────────────────────
        try:
            invocation = self._invoke_with_timeout(planned.provider, context)
        except TaskTimeout as e:
            result = TaskResult.failure(task.name, str(e), kind=TaskTimeout.kind, **stamp())
            self._invalidate(planned)
            return result
        except CapabilityFailure as e:
            result = TaskResult.failure(task.name, str(e), kind=CapabilityFailure.kind, **stamp())
            self._invalidate(planned)
            return result

        result = self._interpret(planned, invocation, results, stamp())
        if result.changed or result.failed:
            self._invalidate(planned)
        return result

    # ── Internals ───────────────────────────────────────────────

    def _end_state_holds(
        self,
        planned: PlannedTask,
        context: ExecutionContext,
        results: Mapping[str, TaskResult],
    ) -> bool | None:
        """True/False when known, None when nobody can tell."""
        try:
            if planned.check is not None:
                return planned.check.evaluate(self.facts, results)
            if planned.provider.can_check(context.params):
                return planned.provider.is_converged(context, self.facts)
        except (FactUnavailable, GuardError) as e:
            logger.warning("%s: cannot check end state: %s", planned.name, e)
            return False
        except Exception as e:
            logger.warning("%s: end-state check raised %s: %s", planned.name, type(e).__name__, e)
            return False
        return None

    def _invoke_with_timeout(self, provider: CapabilityProvider, context: ExecutionContext) -> Invocation:
        """Run ``provider.invoke`` and stop waiting after ``context.timeout``.

        The worker thread cannot be killed; a provider that ignores its
        own timeout keeps running in the background after we give up.
        """
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"invoke-{context.capability}")
        try:
            future = pool.submit(provider.invoke, context)
            try:
                return future.result(timeout=context.timeout)
            except FutureTimeout:
                future.cancel()
                raise TaskTimeout(
                    f"'{context.task}' timed out after {context.timeout:g}s",
                    timeout=context.timeout,
                ) from None
            except CapabilityFailure:
                raise
            except Exception as e:
                logger.debug("%s: provider raised", context.task, exc_info=True)
                raise CapabilityFailure(f"{type(e).__name__}: {e}", capability=context.capability) from e
        finally:
            pool.shutdown(wait=False)

    def _interpret(
        self,
        planned: PlannedTask,
        invocation: Invocation,
        results: Mapping[str, TaskResult],
        stamp: dict[str, Any],
    ) -> TaskResult:
        task = planned.task
        output = {
            "stdout": invocation.stdout,
            "stderr": invocation.stderr,
            "exit_code": invocation.exit_code,
            "metadata": dict(invocation.metadata),
        }

        failed = not invocation.ok
        changed = True if invocation.changed is None else invocation.changed

        if planned.failed_when is not None or planned.changed_when is not None:
            # Guards may look at this task's own output.
            provisional = (
                TaskResult.failure(task.name, "", **output, **stamp)
                if failed
                else TaskResult.success(task.name, changed=changed, **output, **stamp)
            )
            view = {**results, task.name: provisional}

            try:
                if planned.failed_when is not None:
                    try:
                        failed = planned.failed_when.evaluate(self.facts, view)
                    except FactUnavailable as e:
                        logger.warning("%s: failed_when: %s", task.name, e)
                if not failed and planned.changed_when is not None:
                    try:
                        changed = planned.changed_when.evaluate(self.facts, view)
                    except FactUnavailable as e:
                        logger.warning("%s: changed_when: %s", task.name, e)
                        changed = False
            except GuardError as e:
                logger.warning("%s: %s", task.name, e)
                return TaskResult.failure(task.name, str(e), kind=GuardError.kind, **output, **stamp)

        if failed:
            if not invocation.ok:
                error = invocation.stderr.strip() or f"exit code {invocation.exit_code}"
            else:
                error = f"failed_when condition met: {task.failed_when}"
            return TaskResult.failure(task.name, error, **output, **stamp)

        return TaskResult.success(task.name, changed=changed, **output, **stamp)

    def _invalidate(self, planned: PlannedTask) -> None:
        keys = list(planned.provider.affected_facts(planned.task.params))
        keys.extend(planned.task.invalidates)
        if keys and hasattr(self.facts, "invalidate"):
            self.facts.invalidate(keys)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"
