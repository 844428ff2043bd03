"""
Apply use case — provision an environment from a step file.

This is the top-level orchestrator: it loads the step file, restores the
environment snapshot (or starts from the base state), runs the step
sequence, and persists the snapshot and an audit entry. The full
vertical slice from ``layerprov apply`` to an audited result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from layerprov.adapters.registry import BackendRegistry, mock_registry, system_registry
from layerprov.core.config.loader import (
    STEP_FILE_NAME,
    ConfigError,
    find_step_file,
    load_step_file,
    state_root,
)
from layerprov.core.engine.executor import (
    SequenceReport,
    generate_operation_id,
    run_sequence,
    write_audit_entry,
)
from layerprov.core.errors import ExitCode
from layerprov.core.models.environment import Environment
from layerprov.core.models.step import StepFile
from layerprov.core.observability.logging_config import operation_scope
from layerprov.core.persistence.audit import AuditWriter, audit_path
from layerprov.core.persistence.state_file import (
    default_state_path,
    load_environment,
    save_environment,
)

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Result of applying a step file."""

    report: SequenceReport | None = None
    step_file: StepFile | None = None
    config_path: Path | None = None
    environment: Environment | None = None
    state_path: Path | None = None
    state_saved: bool = False
    resumed: bool = False          # environment came from a snapshot
    error: str | None = None

    @property
    def exit_code(self) -> ExitCode:
        if self.error:
            return ExitCode.CONFIG_ERROR
        if self.report is None:
            return ExitCode.OK
        return self.report.exit_code

    def to_dict(self) -> dict:
        result: dict = {"exit_code": int(self.exit_code)}
        if self.error:
            result["error"] = self.error
            return result

        result["name"] = self.step_file.name if self.step_file else ""
        result["config_path"] = str(self.config_path) if self.config_path else None
        result["state_path"] = str(self.state_path) if self.state_path else None
        result["state_saved"] = self.state_saved
        result["resumed"] = self.resumed
        if self.environment:
            result["environment"] = self.environment.model_dump(mode="json")
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def base_environment(step_file: StepFile) -> Environment:
    """Fresh Environment in the step file's declared base state."""
    return Environment(
        name=step_file.name,
        base_image=step_file.base_image,
        current_identity=step_file.initial_identity,
    )


def apply_step_file(
    config_path: Path | None = None,
    state_path: Path | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    save: bool = True,
    registry: BackendRegistry | None = None,
) -> ApplyResult:
    """Apply every step of a step file, in order.

    Args:
        config_path: Optional explicit path to provision.yml.
        state_path: Override for the environment snapshot path.
        dry_run: Report what would change without installing anything.
        mock_mode: Use in-memory backends instead of the host.
        save: Persist the snapshot after the run.
        registry: Optional pre-configured backend registry.

    Returns:
        ApplyResult. ``exit_code`` distinguishes config, package, identity
        and identity-restore failures.
    """
    result = ApplyResult()

    # ── Load step file ───────────────────────────────────────────
    if config_path is None:
        config_path = find_step_file()
    if config_path is None:
        result.error = f"No {STEP_FILE_NAME} found."
        return result

    try:
        step_file = load_step_file(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.step_file = step_file
    result.config_path = config_path
    result.state_path = state_path or default_state_path(
        state_root(config_path), mock=mock_mode
    )

    # ── Environment: snapshot or base state ──────────────────────
    env = load_environment(result.state_path)
    if env is None:
        env = base_environment(step_file)
    else:
        result.resumed = True

    # Dry runs work on a copy so the snapshot is never touched
    target = env.model_copy(deep=True) if dry_run else env
    result.environment = target

    # ── Backends ─────────────────────────────────────────────────
    if registry is None:
        registry = mock_registry(step_file) if mock_mode else system_registry(step_file)

    # ── Run ──────────────────────────────────────────────────────
    operation_id = generate_operation_id()
    with operation_scope(operation_id):
        report = run_sequence(
            target,
            step_file.steps,
            registry,
            dry_run=dry_run,
            operation_id=operation_id,
        )
        result.report = report

        # ── Persist ──────────────────────────────────────────────
        if save and not dry_run:
            try:
                save_environment(target, result.state_path)
                result.state_saved = True
            except OSError as e:
                logger.warning("Environment snapshot not saved: %s", e)

        if save:
            write_audit_entry(
                report,
                AuditWriter(path=audit_path(result.state_path)),
                target,
                step_file=str(config_path),
                mock=registry.mock_mode,
            )

    return result
