"""
CLI commands for host facts.

Usage::

    hostconverge facts get package:openjdk-17-jdk port:8080
    hostconverge facts get env:JAVA_HOME --json
    hostconverge facts kinds
"""

from __future__ import annotations

import json
import sys

import click


@click.group()
def facts() -> None:
    """Host facts — what the engine sees before deciding."""


@facts.command("get")
@click.argument("keys", nargs=-1, required=True)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def facts_get(keys: tuple[str, ...], as_json: bool) -> None:
    """Query facts of this host (e.g. package:lsof, service:ssh)."""
    from hostconverge.core.errors import FactUnavailable
    from hostconverge.core.facts.provider import FactProvider

    provider = FactProvider()
    rows: list[dict] = []
    for key in keys:
        try:
            rows.append(provider.fact(key).to_dict())
        except FactUnavailable as e:
            rows.append({"key": key, "error": str(e)})

    unavailable = any("error" in row for row in rows)

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        sys.exit(1 if unavailable else 0)

    for row in rows:
        if "error" in row:
            click.secho(f"   ✗ {row['key']}", fg="red", nl=False)
            click.echo(f"  {row['error']}")
        elif not row["found"]:
            click.secho(f"   · {row['key']}", fg="yellow", nl=False)
            click.echo("  (not found)")
        else:
            click.secho(f"   ✓ {row['key']}", fg="green", nl=False)
            click.echo(f"  {row['value']}")

    if unavailable:
        sys.exit(1)


@facts.command("kinds")
def facts_kinds() -> None:
    """List the fact kinds this host can answer."""
    from hostconverge.core.facts.provider import FactProvider

    for kind in FactProvider().kinds:
        click.echo(kind)
