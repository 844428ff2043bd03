"""
Environment — the mutable target being provisioned.

Carries the active identity as an explicit field instead of relying on
process-wide "current user" state. Every engine and backend call takes
the Environment and reads or updates ``current_identity`` on it.

Serialized to ``.state/environment.json`` between runs.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from layerprov.core.models.identity import ROOT, Identity
from layerprov.core.models.packages import PackageSet


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Environment(BaseModel):
    """Installed packages plus the single active identity.

    Filesystem state is opaque: it is only observed through the
    package manager's view of what is installed.
    """

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Labels ───────────────────────────────────────────────────
    name: str = ""
    base_image: str = ""

    # ── State ────────────────────────────────────────────────────
    current_identity: Identity = ROOT
    packages: PackageSet = Field(default_factory=set)

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def has_package(self, package: str) -> bool:
        return package in self.packages

    def add_packages(self, packages: Iterable[str]) -> set[str]:
        """Record packages as installed. Returns the ones that were new."""
        added = set(packages) - self.packages
        self.packages |= added
        return added
