"""
Reporting sinks — where TaskResults go as soon as they exist.

The engine pushes every result to its sinks the moment it is recorded,
so a long run can be followed live. Sinks observe; they never change
the run. A sink that raises is logged and ignored.

    LoggingSink     one log line per result
    CollectingSink  in-memory list, for tests and the API
    NdjsonSink      one JSON line per result plus a summary line
    MultiSink       fan-out to several sinks
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from hostconverge.core.models.report import RunReport
from hostconverge.core.models.result import TaskResult

logger = logging.getLogger(__name__)

STATUS_MARKERS = {
    "changed": "✓",
    "unchanged": "·",
    "skipped": "⊘",
    "failed": "✗",
}


class ReportSink:
    """Base sink. Every hook is optional."""

    def on_start(self, plan: str, host: str, run_id: str) -> None:
        pass

    def on_result(self, result: TaskResult) -> None:
        pass

    def on_complete(self, report: RunReport) -> None:
        pass


class LoggingSink(ReportSink):
    """Log each result through stdlib logging."""

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def on_start(self, plan: str, host: str, run_id: str) -> None:
        self._log.info("Converging '%s' on %s (%s)", plan, host, run_id)

    def on_result(self, result: TaskResult) -> None:
        marker = STATUS_MARKERS.get(result.outcome, "?")
        label = f"[handler] {result.task}" if result.handler else result.task
        if result.failed:
            self._log.warning("%s %s → failed: %s", marker, label, result.error)
        else:
            self._log.info("%s %s → %s", marker, label, result.outcome)

    def on_complete(self, report: RunReport) -> None:
        self._log.info(
            "Run %s %s: %d changed, %d unchanged, %d skipped, %d failed",
            report.run_id, report.status,
            report.changed, report.unchanged, report.skipped, report.failed,
        )


class CollectingSink(ReportSink):
    """Keep everything in memory."""

    def __init__(self) -> None:
        self.started: list[tuple[str, str, str]] = []
        self.results: list[TaskResult] = []
        self.reports: list[RunReport] = []

    def on_start(self, plan: str, host: str, run_id: str) -> None:
        self.started.append((plan, host, run_id))

    def on_result(self, result: TaskResult) -> None:
        self.results.append(result)

    def on_complete(self, report: RunReport) -> None:
        self.reports.append(report)

    @property
    def task_names(self) -> list[str]:
        return [r.task for r in self.results]


class NdjsonSink(ReportSink):
    """Append results to a newline-delimited JSON file as they arrive."""

    def __init__(self, path: Path):
        self._path = path
        self._run_id = ""
        self._host = ""

    @property
    def path(self) -> Path:
        return self._path

    def on_start(self, plan: str, host: str, run_id: str) -> None:
        self._run_id = run_id
        self._host = host
        self._write({"event": "start", "plan": plan})

    def on_result(self, result: TaskResult) -> None:
        self._write({"event": "result", **result.model_dump(mode="json")})

    def on_complete(self, report: RunReport) -> None:
        summary = report.to_dict()
        summary.pop("results", None)
        self._write({"event": "complete", **summary})

    def _write(self, data: dict[str, Any]) -> None:
        record = {
            "timestamp": datetime.now(UTC).isoformat(),
            "run_id": self._run_id,
            "host": self._host,
            **data,
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error("Failed to write result line: %s", e)


class MultiSink(ReportSink):
    """Fan out to several sinks; one failing sink does not stop the others."""

    def __init__(self, sinks: list[ReportSink] | None = None):
        self.sinks: list[ReportSink] = list(sinks or [])

    def add(self, sink: ReportSink) -> None:
        self.sinks.append(sink)

    def on_start(self, plan: str, host: str, run_id: str) -> None:
        for sink in self.sinks:
            _safe(sink.on_start, plan, host, run_id)

    def on_result(self, result: TaskResult) -> None:
        for sink in self.sinks:
            _safe(sink.on_result, result)

    def on_complete(self, report: RunReport) -> None:
        for sink in self.sinks:
            _safe(sink.on_complete, report)


def _safe(hook: Any, *args: Any) -> None:
    try:
        hook(*args)
    except Exception as e:
        logger.error("Report sink %s failed: %s", getattr(hook, "__qualname__", hook), e)
