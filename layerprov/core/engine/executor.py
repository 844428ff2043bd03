"""
Engine executor — applies provisioning steps to an Environment.

A step runs through a fixed sequence of states:

    NotStarted → IdentitySwitched → ActionsApplied → IdentityRestored

Any failure moves the step to Failed, after a best-effort restore of
the post-condition identity. A sequence applies steps strictly in order
and stops at the first failed step.

Flow:
    switch identity → apply actions in order → restore identity → report
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from layerprov.adapters.registry import BackendRegistry
from layerprov.core.errors import (
    ActionError,
    ExitCode,
    IdentityRestoreError,
    IdentitySwitchError,
    ProvisioningError,
)
from layerprov.core.models.environment import Environment
from layerprov.core.models.receipt import Receipt
from layerprov.core.models.step import (
    EnsurePackagesAction,
    ProvisioningStep,
    StepAction,
    SwitchIdentityAction,
)
from layerprov.core.persistence.audit import AuditEntry, AuditWriter

logger = logging.getLogger(__name__)


class StepState(str, Enum):
    NOT_STARTED = "not_started"
    IDENTITY_SWITCHED = "identity_switched"
    ACTIONS_APPLIED = "actions_applied"
    IDENTITY_RESTORED = "identity_restored"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of applying one step."""

    step: str = ""
    state: StepState = StepState.NOT_STARTED
    receipts: list[Receipt] = field(default_factory=list)
    packages_added: set[str] = field(default_factory=set)
    identity_before: str = ""
    identity_after: str = ""
    identity_restored: bool | None = None
    error: ProvisioningError | None = None

    @property
    def ok(self) -> bool:
        return self.state == StepState.IDENTITY_RESTORED

    @property
    def changed(self) -> bool:
        """Whether any action actually changed the environment."""
        return any(r.ok for r in self.receipts) or self.identity_before != self.identity_after

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "state": self.state.value,
            "ok": self.ok,
            "identity_before": self.identity_before,
            "identity_after": self.identity_after,
            "identity_restored": self.identity_restored,
            "packages_added": sorted(self.packages_added),
            "receipts": [r.model_dump(mode="json") for r in self.receipts],
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class SequenceReport:
    """Result of applying an ordered list of steps."""

    operation_id: str = ""
    dry_run: bool = False
    results: list[StepResult] = field(default_factory=list)
    steps_total: int = 0
    error: ProvisioningError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def steps_completed(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def steps_not_attempted(self) -> int:
        return self.steps_total - len(self.results)

    @property
    def failed_step(self) -> str | None:
        return self.error.step if self.error else None

    @property
    def failed_action(self) -> str | None:
        return self.error.action_id if self.error else None

    @property
    def identity_restored(self) -> bool | None:
        """Whether the failing step restored its identity (None when ok)."""
        return self.error.identity_restored if self.error else None

    @property
    def exit_code(self) -> ExitCode:
        return self.error.exit_code if self.error else ExitCode.OK

    @property
    def receipts(self) -> list[Receipt]:
        return [r for result in self.results for r in result.receipts]

    @property
    def packages_added(self) -> set[str]:
        added: set[str] = set()
        for result in self.results:
            added |= result.packages_added
        return added

    @property
    def status(self) -> str:
        if self.error is None:
            return "ok"
        if self.steps_completed > 0:
            return "partial"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "dry_run": self.dry_run,
            "status": self.status,
            "exit_code": int(self.exit_code),
            "steps_total": self.steps_total,
            "steps_completed": self.steps_completed,
            "steps_not_attempted": self.steps_not_attempted,
            "failed_step": self.failed_step,
            "failed_action": self.failed_action,
            "identity_restored": self.identity_restored,
            "packages_added": sorted(self.packages_added),
            "steps": [r.to_dict() for r in self.results],
            "error": self.error.to_dict() if self.error else None,
        }


# ── Step application ────────────────────────────────────────────────


def _apply_action(
    env: Environment,
    step: ProvisioningStep,
    index: int,
    action: StepAction,
    backends: BackendRegistry,
    dry_run: bool,
) -> Receipt:
    action_id = step.action_id(index)

    if isinstance(action, SwitchIdentityAction):
        before = env.current_identity
        if before == action.identity:
            return Receipt.skip(action_id=action_id, reason=f"already {action.identity}")
        backends.identity.switch_identity(env, action.identity)
        return Receipt.success(
            action_id=action_id,
            output=f"{before} → {action.identity}",
        )

    if isinstance(action, EnsurePackagesAction):
        manager = backends.resolve_manager(action.manager)
        return manager.ensure_installed(
            env,
            action.packages,
            action_id=action_id,
            refresh_index=action.refresh_index,
            clean_cache=action.clean_cache,
            dry_run=dry_run,
        )

    raise ActionError(f"Unsupported action kind: {action.kind!r}")


def apply_step(
    env: Environment,
    step: ProvisioningStep,
    backends: BackendRegistry,
    dry_run: bool = False,
) -> StepResult:
    """Apply one provisioning step to ``env``.

    Args:
        env: The environment, mutated in place.
        step: The step to apply.
        backends: Identity and package backends.
        dry_run: Report what would be installed without installing.

    Returns:
        StepResult in state IDENTITY_RESTORED.

    Raises:
        IdentitySwitchError: the step's identity could not be assumed.
            Nothing was applied and ``env`` is unchanged.
        UnresolvedPackageError, PackageManagerError, ActionError: an
            action failed. Later actions were not applied; the
            post-condition identity was restored.
        IdentityRestoreError: the post-condition identity could not be
            restored. Chained to the action error, if there was one.
    """
    result = StepResult(step=step.name, identity_before=str(env.current_identity))
    packages_before = set(env.packages)

    def _fail(error: ProvisioningError, restored: bool | None) -> ProvisioningError:
        result.state = StepState.FAILED
        result.identity_restored = restored
        result.identity_after = str(env.current_identity)
        result.packages_added = env.packages - packages_before
        result.error = error
        error.step = step.name
        error.identity_restored = restored
        error.result = result
        return error

    # 1. Switch to the required identity
    try:
        backends.identity.switch_identity(env, step.identity)
    except IdentitySwitchError as e:
        logger.error("✗ %s: cannot switch to %s: %s", step.name, step.identity, e)
        raise _fail(e, restored=None)
    except Exception as e:
        logger.exception("✗ %s: unexpected error switching to %s", step.name, step.identity)
        switch_error = IdentitySwitchError(
            f"Unexpected error switching to {step.identity}: {e}",
            identity=str(step.identity),
        )
        raise _fail(switch_error, restored=None) from e
    result.state = StepState.IDENTITY_SWITCHED
    logger.debug("%s: running as %s", step.name, step.identity)

    # 2. Apply actions in order, stopping at the first failure
    action_error: ProvisioningError | None = None
    for index, action in enumerate(step.actions):
        action_id = step.action_id(index)
        try:
            receipt = _apply_action(env, step, index, action, backends, dry_run)
        except ProvisioningError as e:
            action_error = e
        except Exception as e:
            logger.exception("Unexpected error in %s", action_id)
            action_error = ActionError(f"Unexpected error: {e}")
            action_error.__cause__ = e

        if action_error is not None:
            action_error.action_index = index
            action_error.action_id = action_id
            result.receipts.append(
                Receipt.failure(
                    action_id=action_id,
                    error=action_error.message,
                    kind=action.kind,
                    step=step.name,
                )
            )
            logger.error("✗ %s → %s", action_id, action_error.message)
            break

        receipt.kind = action.kind
        receipt.step = step.name
        result.receipts.append(receipt)
        marker = "✓" if receipt.ok else "⊘"
        logger.info("%s %s → %s", marker, action_id, receipt.status)
    else:
        result.state = StepState.ACTIONS_APPLIED

    # 3. Restore the post-condition identity, whatever happened above
    try:
        backends.identity.switch_identity(env, step.post_identity)
    except Exception as e:
        reason = e.message if isinstance(e, IdentitySwitchError) else f"Unexpected error: {e}"
        logger.critical(
            "✗ %s: could not restore identity %s (environment left as %s)",
            step.name,
            step.post_identity,
            env.current_identity,
        )
        restore_error = IdentityRestoreError(
            f"Could not restore identity {step.post_identity}: {reason}",
            identity=str(step.post_identity),
            action_error=action_error,
        )
        if action_error is not None:
            action_error.step = step.name
            action_error.identity_restored = False
            restore_error.action_index = action_error.action_index
            restore_error.action_id = action_error.action_id
        raise _fail(restore_error, restored=False) from (action_error or e)

    if action_error is not None:
        raise _fail(action_error, restored=True)

    result.state = StepState.IDENTITY_RESTORED
    result.identity_restored = True
    result.identity_after = str(env.current_identity)
    result.packages_added = env.packages - packages_before
    return result


# ── Sequence execution ──────────────────────────────────────────────


def run_sequence(
    env: Environment,
    steps: list[ProvisioningStep],
    backends: BackendRegistry,
    dry_run: bool = False,
    operation_id: str = "",
) -> SequenceReport:
    """Apply ``steps`` in order, stopping at the first failure.

    Never raises ProvisioningError: the failure, the step and action it
    happened in, and whether identity was restored are on the report.
    """
    report = SequenceReport(
        operation_id=operation_id or generate_operation_id(),
        dry_run=dry_run,
        steps_total=len(steps),
    )

    for position, step in enumerate(steps, start=1):
        logger.info("[%d/%d] %s (as %s)", position, len(steps), step.name, step.identity)
        try:
            result = apply_step(env, step, backends, dry_run=dry_run)
        except ProvisioningError as e:
            report.results.append(e.result if e.result is not None else StepResult(step=step.name))
            report.error = e
            logger.error(
                "Aborting after step '%s' (%d step(s) not attempted)",
                step.name,
                report.steps_not_attempted,
            )
            break
        report.results.append(result)

    if not dry_run:
        env.touch()
    return report


def write_audit_entry(
    report: SequenceReport,
    audit_writer: AuditWriter,
    env: Environment,
    step_file: str = "",
    mock: bool = False,
) -> AuditEntry:
    """Append one audit entry summarizing a sequence run."""
    errors = [report.error.message] if report.error else []
    if isinstance(report.error, IdentityRestoreError) and report.error.action_error:
        errors.append(report.error.action_error.message)

    entry = AuditEntry(
        operation_id=report.operation_id,
        operation_type="dry-run" if report.dry_run else "apply",
        step_file=step_file,
        environment=env.name,
        status=report.status,
        exit_code=int(report.exit_code),
        steps_total=report.steps_total,
        steps_completed=report.steps_completed,
        failed_step=report.failed_step,
        failed_action=report.failed_action,
        identity_restored=report.identity_restored,
        final_identity=str(env.current_identity),
        packages_added=sorted(report.packages_added),
        errors=errors,
        context={"mock": mock},
    )
    audit_writer.write(entry)
    return entry


def generate_operation_id() -> str:
    """Generate a unique operation identifier."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
