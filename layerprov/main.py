"""
layerprov — CLI entrypoint.

Usage:
    layerprov --help
    layerprov check
    layerprov apply --mock
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from layerprov import __version__
from layerprov.core.errors import ExitCode
from layerprov.core.observability.logging_config import setup_logging

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}


@click.group()
@click.version_option(version=__version__, prog_name="layerprov")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to provision.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """layerprov — idempotent, privilege-scoped environment provisioning."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("LAYERPROV_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("LAYERPROV_LOG_FILE"),
        log_file_level=os.environ.get("LAYERPROV_LOG_FILE_LEVEL"),
    )


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use in-memory backends (no real execution).")
@click.option("--dry-run", is_flag=True, help="Show what would change without installing.")
@click.option(
    "--state",
    "state_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Environment snapshot path (default: .state/environment.json).",
)
@click.option("--no-save", is_flag=True, help="Don't save the snapshot or audit entry.")
@click.pass_context
def apply(
    ctx: click.Context,
    as_json: bool,
    mock: bool,
    dry_run: bool,
    state_path: str | None,
    no_save: bool,
) -> None:
    """Apply every step in order, stopping at the first failure.

    Exit codes: 0 ok, 1 config error, 3 package failure,
    4 identity failure, 5 identity not restored.

    Examples:

        layerprov apply --mock

        layerprov apply --dry-run
    """
    from layerprov.core.use_cases.apply import apply_step_file

    result = apply_step_file(
        config_path=ctx.obj.get("config_path"),
        state_path=Path(state_path) if state_path else None,
        dry_run=dry_run,
        mock_mode=mock,
        save=not no_save,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(int(result.exit_code))

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(int(result.exit_code))

    report = result.report
    assert report is not None
    assert result.step_file is not None
    assert result.environment is not None

    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    click.secho(
        f"\n⚡ {mode_label}apply — {result.step_file.name or result.config_path}",
        fg="cyan",
        bold=True,
    )
    if result.resumed and not ctx.obj.get("quiet"):
        click.echo(f"   Resumed from {result.state_path}")
    click.echo()

    for step_result in report.results:
        color = "green" if step_result.ok else "red"
        marker = "✓" if step_result.ok else "✗"
        click.secho(f"   {marker} {step_result.step}", fg=color, bold=True)
        for receipt in step_result.receipts:
            if receipt.ok:
                click.secho("     ✓ ", fg="green", nl=False)
                timing = f" ({receipt.duration_ms}ms)" if receipt.duration_ms else ""
                click.echo(f"{receipt.action_id}{timing}")
                if ctx.obj.get("verbose") and receipt.output:
                    for line in receipt.output.split("\n")[:10]:
                        click.echo(f"       │ {line}")
            elif receipt.failed:
                click.secho(f"     ✗ {receipt.action_id}", fg="red")
                for line in (receipt.error or "").split("\n")[:5]:
                    click.echo(f"       │ {line}")
            else:
                click.secho(f"     ⊘ {receipt.action_id} ", fg="yellow", nl=False)
                click.echo(f"({receipt.output})")

    click.echo()
    if report.error is not None:
        err = report.error
        click.secho(f"   ❌ {type(err).__name__}: {err.message}", fg="red", bold=True)
        where = err.step or "?"
        if err.action_id:
            where += f" / {err.action_id}"
        click.echo(f"      at {where}")
        if err.identity_restored is True:
            click.echo(f"      identity restored to {result.environment.current_identity}")
        elif err.identity_restored is False:
            click.secho(
                "      identity NOT restored: environment is unsafe, do not use it",
                fg="red",
                bold=True,
            )
        if report.steps_not_attempted:
            click.echo(f"      {report.steps_not_attempted} step(s) not attempted")
        click.echo()

    click.secho(
        f"   Result: {report.steps_completed}/{report.steps_total} steps, "
        f"running as {result.environment.current_identity}",
        fg=_STATUS_COLORS.get(report.status, "white"),
        bold=True,
    )
    if report.packages_added:
        click.echo(f"   Installed: {', '.join(sorted(report.packages_added))}")
    if result.state_saved and not ctx.obj.get("quiet"):
        click.secho(f"   💾 Snapshot saved to {result.state_path}", fg="cyan")
    click.echo()

    if result.exit_code != ExitCode.OK:
        sys.exit(int(result.exit_code))


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def check(ctx: click.Context, as_json: bool) -> None:
    """Validate provision.yml."""
    from layerprov.core.use_cases.check import check_step_file

    result = check_step_file(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else int(ExitCode.CONFIG_ERROR))

    if result.valid:
        assert result.step_file is not None
        click.secho("✅ Step file is valid", fg="green", bold=True)
        click.echo(f"   Name:  {result.step_file.name or '(unnamed)'}")
        click.echo(f"   Steps: {len(result.step_file.steps)}")
    else:
        click.secho("❌ Step file errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(int(ExitCode.CONFIG_ERROR))


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, as_json: bool) -> None:
    """List steps and actions in execution order."""
    from layerprov.core.config.loader import ConfigError, load_step_file
    from layerprov.core.use_cases.check import plan_steps

    try:
        step_file = load_step_file(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(int(ExitCode.CONFIG_ERROR))

    steps = plan_steps(step_file)
    if as_json:
        click.echo(json.dumps({"name": step_file.name, "steps": steps}, indent=2))
        return

    click.secho(f"\n📋 {step_file.name or 'provision'}", fg="cyan", bold=True)
    click.echo(f"   Start as {step_file.initial_identity}")
    click.echo()
    for step in steps:
        click.secho(
            f"   {step['position']}. {step['name']} ",
            bold=True,
            nl=False,
        )
        click.echo(f"(as {step['identity']} → {step['post_identity']})")
        for action in step["actions"]:
            click.echo(f"      • {action['description']}")
    click.echo()
    click.echo(f"   End as {step_file.final_identity}")
    click.echo()


@cli.command()
@click.option(
    "--output",
    "-o",
    "output",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write to a file instead of stdout.",
)
@click.pass_context
def render(ctx: click.Context, output: str | None) -> None:
    """Render the step file as a Dockerfile layer."""
    from layerprov.core.config.loader import ConfigError, load_step_file
    from layerprov.core.services.generators.dockerfile import RenderError, render_dockerfile

    try:
        step_file = load_step_file(ctx.obj.get("config_path"))
        text = render_dockerfile(step_file)
    except (ConfigError, RenderError) as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(int(ExitCode.CONFIG_ERROR))

    if output:
        Path(output).write_text(text, encoding="utf-8")
        if not ctx.obj.get("quiet"):
            click.secho(f"✅ Dockerfile written to {output}", fg="green")
        return
    click.echo(text, nl=False)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Show the mock-mode snapshot.")
@click.pass_context
def status(ctx: click.Context, as_json: bool, mock: bool) -> None:
    """Show the environment snapshot and the last operation."""
    from layerprov.core.use_cases.status import get_status

    result = get_status(config_path=ctx.obj.get("config_path"), mock=mock)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(int(ExitCode.CONFIG_ERROR))

    assert result.step_file is not None
    click.secho(f"\n📋 {result.step_file.name or 'provision'}", fg="cyan", bold=True)

    env = result.environment
    if env is None:
        click.echo("   Not provisioned yet (no snapshot).")
    else:
        click.echo(f"   Identity: {env.current_identity}")
        click.echo(f"   Packages: {len(env.packages)}")
        for package in sorted(env.packages):
            click.echo(f"     • {package}")
        click.echo(f"   Updated:  {env.updated_at}")

    if result.pending_packages:
        click.secho(f"   Pending:  {', '.join(result.pending_packages)}", fg="yellow")

    op = result.last_operation
    if op is not None:
        click.echo()
        click.secho("   Last operation:", fg="white", bold=True)
        click.echo(f"     {op.operation_type} — ", nl=False)
        click.secho(op.status, fg=_STATUS_COLORS.get(op.status, "white"))
        click.echo(f"     at {op.timestamp}")
        if op.failed_step:
            click.echo(f"     failed in {op.failed_step}")
    if not result.safe:
        click.secho("   ⚠️  Identity was not restored: environment is unsafe", fg="red")

    click.echo()


# ── Register sub-command groups from layerprov/ui/cli/ ────────────

from layerprov.ui.cli.env import env  # noqa: E402

cli.add_command(env)


if __name__ == "__main__":
    cli()
