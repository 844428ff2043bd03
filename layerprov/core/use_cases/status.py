"""
Status use case — what the environment looks like right now.

Combines the step file, the saved environment snapshot and the last
audit entry. Nothing is executed.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from layerprov.core.config.loader import (
    STEP_FILE_NAME,
    ConfigError,
    find_step_file,
    load_step_file,
    state_root,
)
from layerprov.core.models.environment import Environment
from layerprov.core.models.step import StepFile
from layerprov.core.persistence.audit import AuditEntry, AuditWriter, audit_path
from layerprov.core.persistence.state_file import default_state_path, load_environment


@dataclass
class StatusResult:
    """Current provisioning status."""

    step_file: StepFile | None = None
    config_path: Path | None = None
    state_path: Path | None = None
    environment: Environment | None = None
    last_operation: AuditEntry | None = None
    error: str | None = None

    @property
    def pending_packages(self) -> list[str]:
        """Declared packages not recorded as installed in the snapshot."""
        if self.step_file is None:
            return []
        declared: set[str] = set()
        for step in self.step_file.steps:
            for action in step.actions:
                if action.kind == "install":
                    declared |= action.packages
        installed = self.environment.packages if self.environment else set()
        return sorted(declared - installed)

    @property
    def safe(self) -> bool:
        """False when the last run left identity unrestored."""
        return not (self.last_operation and self.last_operation.identity_restored is False)

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "name": self.step_file.name if self.step_file else "",
            "config_path": str(self.config_path) if self.config_path else None,
            "state_path": str(self.state_path) if self.state_path else None,
            "environment": self.environment.model_dump(mode="json") if self.environment else None,
            "pending_packages": self.pending_packages,
            "safe": self.safe,
            "last_operation": (
                self.last_operation.model_dump(mode="json") if self.last_operation else None
            ),
        }


def get_status(config_path: Path | None = None, mock: bool = False) -> StatusResult:
    """Load the step file, snapshot and last audit entry."""
    result = StatusResult()

    if config_path is None:
        config_path = find_step_file()
    if config_path is None:
        result.error = f"No {STEP_FILE_NAME} found."
        return result

    try:
        result.step_file = load_step_file(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.config_path = config_path
    result.state_path = default_state_path(state_root(config_path), mock=mock)
    result.environment = load_environment(result.state_path)
    result.last_operation = AuditWriter(path=audit_path(result.state_path)).last()
    return result
