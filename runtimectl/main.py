"""
runtimectl — CLI entrypoint.

Usage:
    runtimectl status
    runtimectl detect --install-missing
    runtimectl env
    runtimectl compose up -d
"""

from __future__ import annotations

import json
import re
import shlex
import sys
from pathlib import Path

import click

from runtimectl import __version__
from runtimectl.core.config.loader import ConfigError, Settings, load_settings
from runtimectl.core.observability.logging_config import setup_from_env


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _runner(ctx: click.Context):
    """Command runner for this invocation (tests inject one via ``obj``)."""
    if ctx.obj.get("runner") is None:
        from runtimectl.core.use_cases.resolve import build_runner

        ctx.obj["runner"] = build_runner(_settings(ctx))
    return ctx.obj["runner"]


def _fail_resolution(result) -> None:
    click.secho(f"❌ {result.error.report()}", fg="red", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="runtimectl")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to runtimectl.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """runtimectl — pick and cache the container engine and compose command."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = None
    setup_from_env(level)

    try:
        ctx.obj["settings"] = load_settings(Path(config_path) if config_path else None)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


# ── Inspection ──────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the cached decision next to live probe results."""
    from runtimectl.core.use_cases.status import get_status

    result = get_status(_settings(ctx), _runner(ctx))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.secho("\n📦 Runtime lock", fg="cyan", bold=True)
    click.echo(f"   File: {result.lockfile}")
    record = result.record
    if record is None:
        click.secho("   (none — next run will detect)", fg="yellow")
    else:
        click.echo(f"   Engine:   {record.engine.value}")
        if record.compose is not None:
            click.echo(f"   Compose:  {record.compose.command_line}  [{record.provider}]")
        else:
            click.secho("   Compose:  (not resolved yet)", fg="yellow")
        caps = record.capabilities
        click.echo(
            f"   Supports: secrets={caps.secrets.value} profiles={caps.profiles.value} "
            f"healthcheck={'yes' if caps.healthcheck else 'no'} "
            f"buildkit={'yes' if caps.buildkit else 'no'} "
            f"rootless={'yes' if caps.rootless else 'no'}"
        )
        click.echo(f"   Detected: {record.detected_at}")

    click.echo()
    click.secho("🔍 Live probes", fg="cyan", bold=True)
    if result.platform is not None:
        click.echo(f"   Platform: {result.platform.family} {result.platform.version_id}".rstrip())
    click.echo(f"   Order:    {' → '.join(result.preference)}  ({result.preference_reason})")
    for probe in result.engines:
        if not probe.installed:
            click.secho(f"   ✗ {probe.engine.value}: not installed", fg="red")
            continue
        state = "✅ reachable" if probe.reachable else "❌ not reachable"
        click.echo(f"   • {probe.engine.value}: {state}")
        for name, available in probe.providers.items():
            mark = "✓" if available else "✗"
            click.secho(f"       {mark} {name}", fg="green" if available else "white")

    if result.incomplete_steps:
        click.echo()
        click.secho("⚠️  Interrupted steps:", fg="yellow")
        for marker in result.incomplete_steps:
            click.echo(f"   • {marker.name} (since {marker.created_at})")

    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, as_json: bool) -> None:
    """Show recognized variables, what they mean and their current values."""
    from runtimectl.core.use_cases.status import describe_variables

    rows = describe_variables(_settings(ctx))

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    for kind, title in (("produced", "Produced"), ("consumed", "Consumed")):
        click.secho(f"\n{title} variables", fg="cyan", bold=True)
        for row in (r for r in rows if r["kind"] == kind):
            value = row["value"] or click.style("(unset)", dim=True)
            click.echo(f"   {row['name']:<30} {value}")
            click.secho(f"   {'':<30} {row['description']}", dim=True)
    click.echo()


# ── Resolution ──────────────────────────────────────────────────


@cli.command()
@click.option(
    "--install-missing",
    is_flag=True,
    help="Download a pinned docker-compose if the fallback needs it.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def detect(ctx: click.Context, install_missing: bool, as_json: bool) -> None:
    """Re-probe engine and compose, and overwrite the runtime lock."""
    from runtimectl.core.use_cases.resolve import resolve_runtime

    result = resolve_runtime(
        _settings(ctx),
        _runner(ctx),
        force=True,
        allow_remediation=True if install_missing else None,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if not result.ok:
        _fail_resolution(result)

    config = result.config
    click.secho("✅ Runtime resolved", fg="green", bold=True)
    click.echo(f"   Engine:  {config.engine.value}")
    click.echo(f"   Compose: {config.compose.command_line}  [{config.provider}]")
    for name, value in config.compose.env.items():
        click.echo(f"   Env:     {name}={value}")
    if not ctx.obj.get("quiet"):
        click.secho(f"   💾 Saved to {result.lockfile}", fg="cyan")


@cli.command()
@click.pass_context
def clear(ctx: click.Context) -> None:
    """Delete the runtime lock so the next run detects again."""
    from runtimectl.core.persistence.lockfile import ResolutionCache

    cache = ResolutionCache(_settings(ctx).lockfile_path)
    if cache.clear():
        click.secho(f"🗑️  Removed {cache.path}", fg="green")
    else:
        click.echo(f"No runtime lock at {cache.path}")


@cli.command()
@click.pass_context
def env(ctx: click.Context) -> None:
    """Print ``export`` lines for the resolved runtime (eval-able)."""
    from runtimectl.core.use_cases.resolve import resolve_runtime

    result = resolve_runtime(_settings(ctx), _runner(ctx))
    if not result.ok:
        _fail_resolution(result)

    for name, value in result.config.to_env().items():
        click.echo(f"export {name}={shlex.quote(value)}")


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def compose(ctx: click.Context, args: tuple[str, ...]) -> None:
    """Run the resolved compose command with ARGS (one run at a time)."""
    from runtimectl.core.persistence.run_lock import LockTimeoutError, RunLock
    from runtimectl.core.persistence.steps import StepTracker
    from runtimectl.core.use_cases.resolve import resolve_runtime

    settings = _settings(ctx)
    runner = _runner(ctx)
    result = resolve_runtime(settings, runner)
    if not result.ok:
        _fail_resolution(result)

    config = result.config
    argv = config.compose_command(*args)
    tracker = StepTracker(settings.steps_path)
    step_name = _step_name(args)

    try:
        with RunLock(settings.run_lock_path, timeout=settings.run_lock_timeout):
            with tracker.step(step_name):
                run = runner.run(
                    argv,
                    timeout=settings.deadlines.compose,
                    env=config.to_env(),
                    cwd=settings.root,
                    capture=False,
                )
                if not run.ok:
                    raise click.exceptions.Exit(run.exit_code)
    except LockTimeoutError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


# Compose global options whose value is a separate argument
_VALUE_OPTIONS = frozenset({
    "-f", "--file", "-p", "--project-name", "--profile", "--env-file",
    "--project-directory", "--ansi", "--progress", "--parallel",
})


def _step_name(args: tuple[str, ...]) -> str:
    subcommand = ""
    skip_value = False
    for arg in args:
        if skip_value:
            skip_value = False
        elif arg.startswith("-"):
            skip_value = arg in _VALUE_OPTIONS
        else:
            subcommand = arg
            break
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", subcommand)
    return f"compose-{safe}" if safe else "compose"


# ── Sub-groups ──────────────────────────────────────────────────

from runtimectl.ui.cli.steps import steps

cli.add_command(steps)


if __name__ == "__main__":
    cli()
