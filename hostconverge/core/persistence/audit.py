"""
Run ledger — append-only history of convergence runs.

Every run (except with ``--no-audit``) appends one entry to an NDJSON
file, ``.state/runs.ndjson`` by default. Entries are never modified
or deleted. ``hostconverge history`` reads them back.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel, Field, ValidationError

from hostconverge.core.models.report import RunReport

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_LEDGER_FILE = "runs.ndjson"


class AuditEntry(BaseModel):
    """One run, summarized."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    plan: str = ""
    host: str = ""
    dry_run: bool = False

    # Results
    status: str = ""               # success, partial failure, aborted
    run_state: str = ""
    cancelled: bool = False
    tasks_total: int = 0
    tasks_changed: int = 0
    tasks_unchanged: int = 0
    tasks_skipped: int = 0
    tasks_failed: int = 0
    duration_ms: int = 0

    # Failed task names with their errors
    errors: list[str] = Field(default_factory=list)

    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: RunReport, **context: Any) -> AuditEntry:
        return cls(
            run_id=report.run_id,
            plan=report.plan,
            host=report.host,
            dry_run=report.dry_run,
            status=report.status,
            run_state=report.run_state,
            cancelled=report.cancelled,
            tasks_total=report.total,
            tasks_changed=report.changed,
            tasks_unchanged=report.unchanged,
            tasks_skipped=report.skipped,
            tasks_failed=report.failed,
            duration_ms=report.duration_ms,
            errors=[f"{r.task}: {r.error}" for r in report.results if r.failed],
            context=context,
        )


def default_ledger_path(state_dir: Path | None = None) -> Path:
    return (state_dir or Path(DEFAULT_STATE_DIR)) / DEFAULT_LEDGER_FILE


class AuditWriter:
    """Append-only ledger writer.

    One JSON line per run. Lines are never rewritten; the file and its
    directory are created on first use.
    """

    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        self._path = path if path is not None else default_ledger_path(state_dir)

    @property
    def path(self) -> Path:
        return self._path

    def append(self, entry: AuditEntry) -> None:
        """Add one line to the ledger. A failed write is logged, not raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.error("Could not record run %s in %s: %s", entry.run_id, self._path, e)
            return
        logger.debug("Recorded %s (%s) in %s", entry.run_id, entry.status, self._path)

    def record(self, report: RunReport, **context: Any) -> AuditEntry:
        """Summarize a report and append it."""
        entry = AuditEntry.from_report(report, **context)
        self.append(entry)
        return entry

    def _entries(self) -> Iterator[AuditEntry]:
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        yield AuditEntry.model_validate_json(line)
                    except ValidationError as e:
                        logger.warning(
                            "%s:%d: unreadable ledger line skipped (%d errors)",
                            self._path, line_num, e.error_count(),
                        )
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error("Could not read ledger %s: %s", self._path, e)

    def read_all(self, plan: str | None = None) -> list[AuditEntry]:
        """Every readable entry, oldest first, optionally for one plan."""
        return [e for e in self._entries() if plan is None or e.plan == plan]

    def read_recent(self, n: int = 20, plan: str | None = None) -> list[AuditEntry]:
        """The last ``n`` entries, oldest first."""
        if n <= 0:
            return []
        return self.read_all(plan=plan)[-n:]

    def entry_count(self) -> int:
        """Count entries without parsing them."""
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
