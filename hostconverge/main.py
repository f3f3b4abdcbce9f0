"""
hostconverge — CLI entrypoint.

Usage:
    hostconverge --help
    hostconverge apply plans/jenkins.yml
    hostconverge apply plans/jenkins.yml --check
    hostconverge plan check plans/jenkins.yml
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from hostconverge import __version__
from hostconverge.core.observability.logging_config import (
    ENV_LOG_FILE,
    ENV_LOG_FILE_LEVEL,
    resolve_level,
    setup_logging,
)


@click.group()
@click.version_option(version=__version__, prog_name="hostconverge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for the run ledger (default: ./.state).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    state_dir: Path | None,
) -> None:
    """hostconverge — converge a host to a declared plan, idempotently."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["state_dir"] = state_dir

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(verbose=verbose, quiet=quiet, debug=debug),
        log_file=os.environ.get(ENV_LOG_FILE),
        log_file_level=os.environ.get(ENV_LOG_FILE_LEVEL),
        quiet_third_party=not debug,
    )


@cli.command()
@click.argument("plan_path", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--check", "dry_run", is_flag=True, help="Report what would change; change nothing.")
@click.option("--mock", is_flag=True, help="Run against an in-memory fake host.")
@click.option("--var", "-e", "variables", multiple=True, metavar="KEY=VALUE", help="Override a plan variable.")
@click.option("--timeout", type=float, default=300.0, show_default=True, help="Per-task timeout in seconds.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--strict", is_flag=True, help="Exit 1 on partial failure too.")
@click.option("--no-audit", is_flag=True, help="Don't record the run in the ledger.")
@click.pass_context
def apply(
    ctx: click.Context,
    plan_path: Path | None,
    dry_run: bool,
    mock: bool,
    variables: tuple[str, ...],
    timeout: float,
    as_json: bool,
    strict: bool,
    no_audit: bool,
) -> None:
    """Converge this host to a plan.

    Exit codes: 0 success or partial failure, 1 aborted (or partial
    failure with --strict), 2 invalid plan.

    Examples:

        hostconverge apply plans/jenkins.yml

        hostconverge apply plans/jenkins.yml --check -e jenkins_port=9090

        hostconverge apply plans/jenkins.yml --mock --json
    """
    from hostconverge.core.config.variables import parse_overrides
    from hostconverge.core.errors import ConfigError
    from hostconverge.core.use_cases.apply import EXIT_CONFIG, apply_plan
    from hostconverge.ui.cli.console import ConsoleSink

    try:
        overrides = parse_overrides(variables)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(EXIT_CONFIG)

    sinks = []
    if not as_json and not ctx.obj.get("quiet"):
        sinks.append(ConsoleSink(verbose=ctx.obj.get("verbose", False), dry_run=dry_run, mock=mock))

    result = apply_plan(
        plan_path=plan_path,
        overrides=overrides,
        dry_run=dry_run,
        mock_mode=mock,
        default_timeout=timeout,
        sinks=sinks,
        state_dir=ctx.obj.get("state_dir"),
        audit=not no_audit,
    )
    code = result.exit_code(strict=strict)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        for err in result.errors:
            if err != result.error:
                click.echo(f"   • {err}")
        sys.exit(code)

    report = result.report
    assert report is not None
    if ctx.obj.get("quiet"):
        click.echo(report.status)
    elif result.ledger_path:
        click.secho(f"   💾 Run recorded in {result.ledger_path}", fg="cyan")
        click.echo()

    sys.exit(code)


@cli.command()
@click.option("-n", "count", type=int, default=10, show_default=True, help="Number of runs to show.")
@click.option("--plan", "plan_name", default=None, help="Only runs of this plan.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, plan_name: str | None, as_json: bool) -> None:
    """Show recent runs from the ledger."""
    from hostconverge.core.persistence.audit import AuditWriter

    writer = AuditWriter(state_dir=ctx.obj.get("state_dir"))
    entries = writer.read_recent(count, plan=plan_name)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No runs recorded yet.")
        return

    status_colors = {"success": "green", "partial failure": "yellow", "aborted": "red"}
    click.echo()
    for entry in entries:
        when = entry.timestamp[:19].replace("T", " ")
        mode = " [check]" if entry.dry_run else ""
        click.echo(f"   {when}  {entry.plan} @ {entry.host}{mode}  ", nl=False)
        click.secho(entry.status, fg=status_colors.get(entry.status, "white"), nl=False)
        click.echo(
            f"  changed={entry.tasks_changed} failed={entry.tasks_failed}"
            f" skipped={entry.tasks_skipped}  ({entry.run_id})"
        )
        if ctx.obj.get("verbose"):
            for err in entry.errors:
                click.echo(f"     │ {err}")
    click.echo()


# ── Register sub-command groups from hostconverge/ui/cli/ ───────

from hostconverge.ui.cli.facts import facts
from hostconverge.ui.cli.plan import plan

cli.add_command(facts)
cli.add_command(plan)


if __name__ == "__main__":
    cli()
