"""
Receipt model — the result of applying one action.

Backends return a Receipt for every action they complete. ``skipped``
means the desired state already held (idempotent no-op) or the run was
a dry run. Failures are raised as ProvisioningErrors by the backend and
recorded by the engine as ``failed`` receipts.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Outcome of one action within a step."""

    action_id: str
    kind: str = ""
    step: str = ""
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action changed the environment successfully."""
        return self.status == "ok"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @classmethod
    def success(cls, action_id: str, output: str = "", **kwargs: Any) -> Receipt:
        """Create a success receipt."""
        return cls(action_id=action_id, status="ok", output=output, **kwargs)

    @classmethod
    def failure(cls, action_id: str, error: str, **kwargs: Any) -> Receipt:
        """Create a failure receipt."""
        return cls(action_id=action_id, status="failed", error=error, **kwargs)

    @classmethod
    def skip(cls, action_id: str, reason: str = "", **kwargs: Any) -> Receipt:
        """Create a skip receipt (already satisfied, or dry run)."""
        return cls(action_id=action_id, status="skipped", output=reason, **kwargs)
