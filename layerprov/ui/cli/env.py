"""
CLI commands for the environment snapshot.

Thin wrappers over ``layerprov.core.persistence.state_file``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from layerprov.core.errors import ExitCode


def _resolve_state_path(ctx: click.Context, mock: bool) -> Path:
    """Snapshot path for the step file in context (or the CWD)."""
    from layerprov.core.config.loader import find_step_file, state_root
    from layerprov.core.persistence.state_file import default_state_path

    config_path: Path | None = ctx.obj.get("config_path")
    if config_path is None:
        config_path = find_step_file()
    root = state_root(config_path) if config_path else Path.cwd()
    return default_state_path(root, mock=mock)


@click.group()
def env() -> None:
    """Environment snapshot — show, reset."""


@env.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use the mock-mode snapshot.")
@click.pass_context
def show(ctx: click.Context, as_json: bool, mock: bool) -> None:
    """Print the saved environment."""
    from layerprov.core.persistence.state_file import load_environment

    path = _resolve_state_path(ctx, mock)
    environment = load_environment(path)

    if environment is None:
        if as_json:
            click.echo(json.dumps({"state_path": str(path), "environment": None}, indent=2))
        else:
            click.secho(f"⚠️  No snapshot at {path}", fg="yellow")
        sys.exit(int(ExitCode.CONFIG_ERROR))

    if as_json:
        click.echo(
            json.dumps(
                {"state_path": str(path), "environment": environment.model_dump(mode="json")},
                indent=2,
            )
        )
        return

    click.secho(f"🗂  {path}", fg="cyan", bold=True)
    click.echo(f"   Name:     {environment.name or '(unnamed)'}")
    if environment.base_image:
        click.echo(f"   Base:     {environment.base_image}")
    click.echo(f"   Identity: {environment.current_identity}")
    click.echo(f"   Packages: {', '.join(sorted(environment.packages)) or '(none)'}")


@env.command()
@click.option("--mock", is_flag=True, help="Use the mock-mode snapshot.")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation.")
@click.pass_context
def reset(ctx: click.Context, mock: bool, yes: bool) -> None:
    """Delete the saved environment (next apply starts from the base state)."""
    from layerprov.core.persistence.state_file import delete_environment

    path = _resolve_state_path(ctx, mock)
    if not path.is_file():
        click.echo(f"Nothing to reset ({path} does not exist).")
        return

    if not yes:
        click.confirm(f"Delete {path}?", abort=True)

    delete_environment(path)
    click.secho(f"✅ Removed {path}", fg="green")
