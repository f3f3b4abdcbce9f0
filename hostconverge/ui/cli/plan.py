"""
CLI commands for plan files.

Usage::

    hostconverge plan check plans/jenkins.yml
    hostconverge plan check --json
    hostconverge plan show plans/jenkins.yml
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click


def _overrides(variables: tuple[str, ...]) -> dict[str, str]:
    from hostconverge.core.config.variables import parse_overrides
    from hostconverge.core.errors import ConfigError

    try:
        return parse_overrides(variables)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(2)


@click.group()
def plan() -> None:
    """Plan files — validate and inspect."""


@plan.command("check")
@click.argument("plan_path", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--var", "-e", "variables", multiple=True, metavar="KEY=VALUE", help="Override a plan variable.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def plan_check(plan_path: Path | None, variables: tuple[str, ...], as_json: bool) -> None:
    """Validate a plan without running it."""
    from hostconverge.core.use_cases.plan_check import check_plan

    result = check_plan(plan_path, overrides=_overrides(variables))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 2)

    if result.valid:
        assert result.plan is not None
        click.secho("✅ Plan is valid", fg="green", bold=True)
        click.echo(f"   Plan: {result.plan.name}")
        click.echo(f"   Tasks: {len(result.plan.tasks)}")
        click.echo(f"   Handlers: {len(result.plan.handlers)}")
    else:
        click.secho("❌ Plan errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(2)


@plan.command("show")
@click.argument("plan_path", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--var", "-e", "variables", multiple=True, metavar="KEY=VALUE", help="Override a plan variable.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def plan_show(plan_path: Path | None, variables: tuple[str, ...], as_json: bool) -> None:
    """List a plan's tasks and handlers, variables rendered."""
    from hostconverge.core.config.loader import ConfigError, load_plan

    try:
        loaded = load_plan(plan_path, overrides=_overrides(variables))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        for err in e.errors:
            click.echo(f"   • {err}")
        sys.exit(2)

    if as_json:
        click.echo(json.dumps(loaded.model_dump(mode="json"), indent=2))
        return

    click.secho(f"\n📋 {loaded.name}", fg="cyan", bold=True)
    if loaded.description:
        click.echo(f"   {loaded.description}")
    click.echo()
    for index, task in enumerate(loaded.tasks, start=1):
        click.echo(f"   {index:>2}. {task.name}  [{task.capability}]")
        if task.when:
            click.echo(f"       when: {task.when}")
        if task.notify:
            click.echo(f"       notify: {', '.join(task.notify)}")
    if loaded.handlers:
        click.echo()
        click.secho("   Handlers:", bold=True)
        for handler in loaded.handlers:
            click.echo(f"     • {handler.name}  [{handler.capability}]")
    click.echo()
