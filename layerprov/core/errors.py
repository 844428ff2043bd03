"""
Provisioning error taxonomy and process exit codes.

Every error that aborts a step derives from ProvisioningError. The
engine annotates errors with where they happened (step, action) and
whether the post-condition identity was restored before it gave up.

Severity, lowest to highest:
    UnresolvedPackageError / PackageManagerError  → package failure
    IdentitySwitchError                           → identity failure
    IdentityRestoreError                          → environment unsafe
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ExitCode(IntEnum):
    """Process exit codes, one per major error class."""

    OK = 0
    CONFIG_ERROR = 1
    PACKAGE_FAILURE = 3
    IDENTITY_FAILURE = 4
    IDENTITY_RESTORE_FAILURE = 5


class ProvisioningError(Exception):
    """Base class for failures that abort a provisioning step."""

    exit_code: ExitCode = ExitCode.PACKAGE_FAILURE
    category: str = "provisioning"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        # Filled in by the engine as the error propagates
        self.step: str | None = None
        self.action_index: int | None = None
        self.action_id: str | None = None
        self.identity_restored: bool | None = None
        self.result: Any = None

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "category": self.category,
            "message": self.message,
            "step": self.step,
            "action_index": self.action_index,
            "action_id": self.action_id,
            "identity_restored": self.identity_restored,
            "exit_code": int(self.exit_code),
        }


class IdentitySwitchError(ProvisioningError):
    """Requested identity does not exist or cannot be assumed."""

    exit_code = ExitCode.IDENTITY_FAILURE
    category = "identity"

    def __init__(self, message: str, identity: str = "") -> None:
        super().__init__(message)
        self.identity = identity


class UnresolvedPackageError(ProvisioningError):
    """One or more package identifiers are unknown to the package manager."""

    category = "package"

    def __init__(self, packages: list[str], manager: str = "") -> None:
        names = ", ".join(sorted(packages))
        where = f" by {manager}" if manager else ""
        super().__init__(f"Unable to resolve package(s){where}: {names}")
        self.packages = sorted(packages)
        self.manager = manager


class PackageManagerError(ProvisioningError):
    """The underlying installation mechanism failed."""

    category = "package"

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ActionError(ProvisioningError):
    """An unexpected exception escaped a backend while applying an action."""

    category = "action"


class IdentityRestoreError(ProvisioningError):
    """Post-condition identity could not be restored.

    The environment is in an indeterminate privilege state and must not
    be used or provisioned further.
    """

    exit_code = ExitCode.IDENTITY_RESTORE_FAILURE
    category = "identity-restore"

    def __init__(
        self,
        message: str,
        identity: str = "",
        action_error: ProvisioningError | None = None,
    ) -> None:
        super().__init__(message)
        self.identity = identity
        self.action_error = action_error
        self.identity_restored = False

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["action_error"] = self.action_error.to_dict() if self.action_error else None
        return data
