"""
CLI commands for step markers left by interrupted runs.

Thin wrappers over ``runtimectl.core.persistence.steps``.
"""

from __future__ import annotations

import json
import sys

import click


def _tracker(ctx: click.Context):
    from runtimectl.core.persistence.steps import StepTracker

    return StepTracker(ctx.obj["settings"].steps_path)


@click.group()
def steps() -> None:
    """Step markers — list or clear interrupted steps."""


@steps.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_steps(ctx: click.Context, as_json: bool) -> None:
    """List steps that were begun but never completed."""
    markers = _tracker(ctx).markers()

    if as_json:
        click.echo(json.dumps([m.to_dict() for m in markers], indent=2))
        return

    if not markers:
        click.secho("✅ No interrupted steps", fg="green")
        return

    click.secho(f"⚠️  {len(markers)} interrupted step(s):", fg="yellow", bold=True)
    for marker in markers:
        click.echo(f"   • {marker.name}  (begun {marker.created_at})")


@steps.command("clear")
@click.argument("name")
@click.pass_context
def clear_step(ctx: click.Context, name: str) -> None:
    """Mark step NAME as complete."""
    tracker = _tracker(ctx)
    try:
        was_incomplete = tracker.is_incomplete(name)
    except ValueError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    tracker.complete_step(name)
    if was_incomplete:
        click.secho(f"✅ Cleared step {name}", fg="green")
    else:
        click.echo(f"Step {name} was not marked incomplete")
