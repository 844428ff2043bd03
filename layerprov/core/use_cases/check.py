"""
Check use case — validate provision.yml and report issues.

Schema errors come from the loader. On top of that, semantic checks
catch declarations that load fine but would misbehave at apply time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from layerprov.core.config.loader import (
    STEP_FILE_NAME,
    ConfigError,
    find_step_file,
    load_step_file,
    merge_provision_section,
    read_step_data,
)
from layerprov.core.models.packages import duplicate_packages
from layerprov.core.models.step import StepFile

# Package managers with a host backend (anything else only works with --mock)
SYSTEM_PACKAGE_MANAGERS = ("apt",)


@dataclass
class CheckResult:
    """Result of step file validation."""

    valid: bool = False
    step_file: StepFile | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "name": self.step_file.name if self.step_file else None,
            "step_count": len(self.step_file.steps) if self.step_file else 0,
        }


def check_step_file(config_path: Path | None = None) -> CheckResult:
    """Validate a step file and report issues.

    Args:
        config_path: Optional explicit path to provision.yml.

    Returns:
        CheckResult with validation status and any issues.
    """
    result = CheckResult()

    if config_path is None:
        config_path = find_step_file()
    if config_path is None:
        result.errors.append(f"No {STEP_FILE_NAME} found.")
        return result
    result.config_path = config_path

    try:
        step_file = load_step_file(config_path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result
    result.step_file = step_file

    if not step_file.steps:
        result.warnings.append("No steps defined. Applying this file does nothing.")

    # Duplicate step names make failure reports ambiguous
    names = [s.name for s in step_file.steps]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        result.errors.append(f"Duplicate step names: {', '.join(dupes)}")

    managers = {step_file.package_manager}
    for step in step_file.steps:
        if not step.actions:
            result.warnings.append(
                f"Step '{step.name}' has no actions (it only switches identity)."
            )
        for action in step.actions:
            if action.kind == "install" and action.manager:
                managers.add(action.manager)

    for manager in sorted(managers - set(SYSTEM_PACKAGE_MANAGERS)):
        result.warnings.append(
            f"Package manager '{manager}' has no host backend; only --mock can apply it."
        )

    if step_file.steps and step_file.final_identity.privileged:
        result.warnings.append(
            f"Sequence ends as privileged identity {step_file.final_identity}. "
            "Consider a post_identity that drops privileges."
        )

    if step_file.identities:
        declared = set(step_file.identities)
        for step in step_file.steps:
            for identity in (step.identity, step.post_identity):
                if identity not in declared and not identity.privileged:
                    result.warnings.append(
                        f"Step '{step.name}' uses identity {identity}, "
                        "which is not in 'identities' (mock runs will reject it)."
                    )

    result.warnings.extend(_duplicate_package_warnings(config_path))

    result.valid = len(result.errors) == 0
    return result


def _duplicate_package_warnings(config_path: Path) -> list[str]:
    """Warn about packages listed twice in one install (they collapse)."""
    warnings: list[str] = []
    data = merge_provision_section(read_step_data(config_path))
    for step in data.get("steps") or []:
        if not isinstance(step, dict):
            continue
        for action in step.get("actions") or []:
            if not isinstance(action, dict):
                continue
            raw = action.get("install", action.get("packages"))
            if isinstance(raw, str):
                raw = raw.split()
            if isinstance(raw, list):
                dupes = duplicate_packages(str(p) for p in raw)
                if dupes:
                    warnings.append(
                        f"Step '{step.get('name', '?')}' lists duplicate packages "
                        f"(collapsed): {', '.join(dupes)}"
                    )
    return warnings


def plan_steps(step_file: StepFile) -> list[dict]:
    """Execution order of a step file, one entry per step."""
    plan = []
    for position, step in enumerate(step_file.steps, start=1):
        plan.append(
            {
                "position": position,
                "name": step.name,
                "identity": str(step.identity),
                "post_identity": str(step.post_identity),
                "actions": [
                    {"id": step.action_id(i), "kind": a.kind, "description": a.describe()}
                    for i, a in enumerate(step.actions)
                ],
            }
        )
    return plan
