"""
Console report sink — live, colored progress for ``hostconverge apply``.
"""

from __future__ import annotations

import click

from hostconverge.core.models.report import RunReport
from hostconverge.core.models.result import TaskResult
from hostconverge.core.observability.reporting import STATUS_MARKERS, ReportSink

OUTCOME_COLORS = {
    "changed": "yellow",
    "unchanged": "green",
    "skipped": "cyan",
    "failed": "red",
}

STATUS_COLORS = {
    "success": "green",
    "partial failure": "yellow",
    "aborted": "red",
}


class ConsoleSink(ReportSink):
    """Print one line per result as it happens."""

    def __init__(self, verbose: bool = False, dry_run: bool = False, mock: bool = False):
        self.verbose = verbose
        self.dry_run = dry_run
        self.mock = mock

    def on_start(self, plan: str, host: str, run_id: str) -> None:
        mode = "[check] " if self.dry_run else "[mock] " if self.mock else ""
        click.secho(f"\n⚡ {mode}{plan} → {host}", fg="cyan", bold=True)
        click.echo(f"   Run: {run_id}")
        click.echo()

    def on_result(self, result: TaskResult) -> None:
        marker = STATUS_MARKERS.get(result.outcome, "?")
        color = OUTCOME_COLORS.get(result.outcome, "white")
        label = f"{result.task} (handler)" if result.handler else result.task

        click.secho(f"   {marker} {label}", fg=color, nl=False)
        if result.skipped:
            click.echo(f"  [{result.metadata.get('reason', 'skipped')}]")
            return
        timing = f" ({result.duration_ms}ms)" if result.duration_ms else ""
        click.echo(f"  {result.outcome}{timing}")

        if result.failed and result.error:
            for line in result.error.splitlines()[:5]:
                click.echo(f"     │ {line}")
        elif self.verbose and result.stdout:
            for line in result.stdout_lines[:10]:
                click.echo(f"     │ {line}")

    def on_complete(self, report: RunReport) -> None:
        click.echo()
        color = STATUS_COLORS.get(report.status, "white")
        click.secho(f"   Result: {report.status}", fg=color, bold=True)
        click.echo(
            f"   changed={report.changed} unchanged={report.unchanged} "
            f"skipped={report.skipped} failed={report.failed}"
        )
        if report.cancelled:
            click.secho("   Run was cancelled", fg="yellow")
        click.echo()
