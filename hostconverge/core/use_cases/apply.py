"""
Apply use case — converge a host (or several) to a plan.

This is the top-level orchestrator: it loads the plan, wires up the
providers and facts for the target, runs the convergence engine, and
records the run in the ledger. The full vertical slice from
``hostconverge apply`` to an audited RunReport.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostconverge.adapters.fake_host import FakeHost
from hostconverge.adapters.registry import CapabilityRegistry, build_default_registry
from hostconverge.core.config.loader import ConfigError, find_plan_file, load_plan
from hostconverge.core.engine.convergence import ConvergenceEngine
from hostconverge.core.engine.executor import DEFAULT_TIMEOUT
from hostconverge.core.engine.graph import ExecutionPlan, build_plan
from hostconverge.core.facts.provider import FactProvider
from hostconverge.core.models.plan import Plan
from hostconverge.core.models.report import RunReport
from hostconverge.core.observability.reporting import LoggingSink, ReportSink
from hostconverge.core.persistence.audit import AuditWriter

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


@dataclass
class ApplyResult:
    """Result of applying a plan to one host."""

    report: RunReport | None = None
    plan: Plan | None = None
    plan_path: Path | None = None
    ledger_path: Path | None = None
    error: str | None = None
    errors: list[str] = field(default_factory=list)

    def exit_code(self, strict: bool = False) -> int:
        """0 success, 1 aborted (or partial with ``strict``), 2 config error."""
        if self.error or self.report is None:
            return EXIT_CONFIG
        status = self.report.status
        if status == "aborted":
            return EXIT_FAILED
        if status == "partial failure" and strict:
            return EXIT_FAILED
        return EXIT_OK

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            result["errors"] = self.errors
            return result

        result["plan"] = self.plan.name if self.plan else ""
        result["plan_path"] = str(self.plan_path) if self.plan_path else None
        if self.ledger_path:
            result["ledger"] = str(self.ledger_path)
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def apply_plan(
    plan_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    default_timeout: float = DEFAULT_TIMEOUT,
    sinks: list[ReportSink] | None = None,
    registry: CapabilityRegistry | None = None,
    facts: Any = None,
    fake_host: FakeHost | None = None,
    state_dir: Path | None = None,
    audit: bool = True,
    host: str = "localhost",
) -> ApplyResult:
    """Converge the local host (or a FakeHost) to a plan file.

    Args:
        plan_path: Plan file. None = search upward for plan.yml.
        overrides: ``--var`` values.
        dry_run: Check mode, nothing is invoked.
        mock_mode: Run against an in-memory FakeHost instead of the
            real machine.
        default_timeout: Per-invocation timeout in seconds.
        sinks: Extra report sinks (a LoggingSink is always added).
        registry: Pre-configured providers (overrides mock_mode).
        facts: Pre-configured FactProvider (overrides mock_mode).
        fake_host: The FakeHost to use with mock_mode.
        state_dir: Directory holding the run ledger.
        audit: Append the run to the ledger.
        host: Host label for the report.

    Returns:
        ApplyResult; ``error`` is set when the plan is invalid.
    """
    result = ApplyResult()

    # ── Load plan ───────────────────────────────────────────────
    try:
        if plan_path is None:
            plan_path = find_plan_file()
        if plan_path is None:
            raise ConfigError("No plan.yml found. Pass the plan path explicitly.")
        result.plan_path = plan_path
        plan = load_plan(plan_path, overrides=overrides)
        result.plan = plan
    except ConfigError as e:
        result.error = str(e)
        result.errors = e.errors
        return result

    # ── Wire up the target ──────────────────────────────────────
    if mock_mode:
        fake_host = fake_host or FakeHost()
        if registry is None:
            registry = fake_host.registry()
        if facts is None:
            facts = fake_host.fact_provider()
        host = fake_host.hostname
    if registry is None:
        registry = build_default_registry()
    if facts is None:
        facts = FactProvider()

    engine = ConvergenceEngine(
        registry,
        facts,
        sinks=[LoggingSink(), *(sinks or [])],
        default_timeout=default_timeout,
        dry_run=dry_run,
        host=host,
    )

    # ── Converge ────────────────────────────────────────────────
    try:
        report = engine.converge(plan)
    except ConfigError as e:
        result.error = str(e)
        result.errors = e.errors
        return result
    result.report = report

    # ── Write ledger ────────────────────────────────────────────
    if audit:
        writer = AuditWriter(state_dir=state_dir)
        writer.record(report, source=str(plan_path), mock=mock_mode)
        result.ledger_path = writer.path

    return result


# ── Multi-host ──────────────────────────────────────────────────


@dataclass
class HostTarget:
    """One host of a multi-host run: its own providers, facts and sinks."""

    name: str
    registry: CapabilityRegistry
    facts: Any
    sinks: list[ReportSink] = field(default_factory=list)


def converge_hosts(
    targets: list[HostTarget],
    plan: Plan,
    dry_run: bool = False,
    default_timeout: float = DEFAULT_TIMEOUT,
    max_workers: int | None = None,
) -> dict[str, RunReport]:
    """Converge independent hosts concurrently, one thread per host.

    The plan is built against every host's registry before any host
    starts, so an invalid plan runs nowhere.

    Returns:
        RunReport per host name, in target order.

    Raises:
        ConfigError: Duplicate host names, or the plan is invalid for a host.
    """
    names = [t.name for t in targets]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigError(f"Duplicate host names: {', '.join(dupes)}")
    if not targets:
        return {}

    built: list[tuple[HostTarget, ExecutionPlan]] = [
        (target, build_plan(plan, target.registry)) for target in targets
    ]

    def run_host(target: HostTarget, execution: ExecutionPlan) -> RunReport:
        engine = ConvergenceEngine(
            target.registry,
            target.facts,
            sinks=[LoggingSink(), *target.sinks],
            default_timeout=default_timeout,
            dry_run=dry_run,
            host=target.name,
        )
        return engine.run(execution)

    workers = max_workers or len(targets)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="host") as pool:
        futures = {
            target.name: pool.submit(run_host, target, execution)
            for target, execution in built
        }
        reports = {name: future.result() for name, future in futures.items()}

    for name, report in reports.items():
        logger.info("%s: %s", name, report.status)
    return reports
