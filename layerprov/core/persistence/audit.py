"""
Audit ledger — one NDJSON line per ``apply`` run.

The ledger sits beside the environment snapshot. Each line says which
step and action failed and whether identity was restored, so the last
line alone answers "is this environment safe to use?". Lines are only
ever appended.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

AUDIT_DIR = ".state"
AUDIT_FILE = "audit.ndjson"


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


class AuditEntry(BaseModel):
    """Summary of one provisioning run."""

    timestamp: str = Field(default_factory=_utc_now)
    operation_id: str = ""
    operation_type: str = ""       # apply | dry-run

    step_file: str = ""
    environment: str = ""

    status: str = ""               # ok | partial | failed
    exit_code: int = 0
    steps_total: int = 0
    steps_completed: int = 0
    failed_step: str | None = None
    failed_action: str | None = None
    identity_restored: bool | None = None
    final_identity: str = ""
    packages_added: list[str] = Field(default_factory=list)

    errors: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


def audit_path(state_path: Path) -> Path:
    """Ledger path kept beside an environment snapshot."""
    return state_path.parent / AUDIT_FILE


class AuditWriter:
    """Appends entries to, and reads them back from, one ledger file."""

    def __init__(self, path: Path | None = None, state_root: Path | None = None):
        if path is None:
            path = (state_root or Path()) / AUDIT_DIR / AUDIT_FILE
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append ``entry``. A failed write is logged, not raised."""
        record = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as ledger:
                ledger.write(record + "\n")
        except OSError as e:
            logger.error("Audit entry %s not written to %s: %s", entry.operation_id, self._path, e)
            return
        logger.debug("Audited %s %s", entry.operation_type, entry.operation_id)

    def _iter_entries(self) -> Iterator[AuditEntry]:
        with self._path.open(encoding="utf-8") as ledger:
            for number, raw in enumerate(ledger, start=1):
                if not raw.strip():
                    continue
                try:
                    yield AuditEntry.model_validate_json(raw)
                except ValidationError as e:
                    logger.warning("%s:%d: unreadable audit entry skipped (%s)", self._path, number, e)

    def read_all(self) -> list[AuditEntry]:
        """Every readable entry, oldest first."""
        if not self._path.is_file():
            return []
        try:
            return list(self._iter_entries())
        except OSError as e:
            logger.error("Cannot read audit ledger %s: %s", self._path, e)
            return []

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:]

    def last(self) -> AuditEntry | None:
        entries = self.read_all()
        return entries[-1] if entries else None
