"""
Tests for persistence — environment snapshot and audit ledger.
"""

import json
from pathlib import Path

from layerprov.core.models.environment import Environment
from layerprov.core.models.identity import Identity
from layerprov.core.persistence.audit import AuditEntry, AuditWriter, audit_path
from layerprov.core.persistence.state_file import (
    default_state_path,
    delete_environment,
    load_environment,
    save_environment,
)


class TestEnvironmentSnapshot:
    """Tests for environment snapshot persistence."""

    def test_save_and_load(self, tmp_path: Path):
        path = tmp_path / ".state" / "environment.json"
        env = Environment(name="dev", current_identity=Identity.parse("dev"), packages=["gtk"])
        save_environment(env, path)

        loaded = load_environment(path)
        assert loaded is not None
        assert loaded.name == "dev"
        assert loaded.current_identity == Identity.parse("dev:dev")
        assert loaded.packages == {"gtk"}

    def test_load_missing(self, tmp_path: Path):
        assert load_environment(tmp_path / "nope.json") is None

    def test_load_corrupt(self, tmp_path: Path):
        path = tmp_path / "environment.json"
        path.write_text("not json at all {{{")
        assert load_environment(path) is None

    def test_load_invalid_schema(self, tmp_path: Path):
        path = tmp_path / "environment.json"
        path.write_text(json.dumps({"current_identity": ":"}))
        assert load_environment(path) is None

    def test_save_is_readable_json(self, tmp_path: Path):
        path = tmp_path / "environment.json"
        save_environment(Environment(packages=["b", "a"]), path)
        data = json.loads(path.read_text())
        assert data["packages"] == ["a", "b"]
        assert data["current_identity"] == "root:root"
        assert not list(tmp_path.glob(".env_*.tmp"))

    def test_default_paths(self, tmp_path: Path):
        assert default_state_path(tmp_path) == tmp_path / ".state" / "environment.json"
        assert default_state_path(tmp_path, mock=True).name == "environment.mock.json"

    def test_delete(self, tmp_path: Path):
        path = tmp_path / "environment.json"
        save_environment(Environment(), path)
        assert delete_environment(path) is True
        assert delete_environment(path) is False


class TestAuditWriter:
    """Tests for the audit ledger."""

    def test_write_and_read(self, tmp_path: Path):
        writer = AuditWriter(path=tmp_path / "audit.ndjson")
        writer.write(AuditEntry(operation_id="op-1", status="ok"))
        writer.write(AuditEntry(operation_id="op-2", status="failed", exit_code=3))

        entries = writer.read_all()
        assert [e.operation_id for e in entries] == ["op-1", "op-2"]
        assert writer.last().exit_code == 3
        assert len(writer.read_recent(1)) == 1

    def test_skips_corrupt_lines(self, tmp_path: Path):
        path = tmp_path / "audit.ndjson"
        writer = AuditWriter(path=path)
        writer.write(AuditEntry(operation_id="op-1"))
        with path.open("a") as f:
            f.write("garbage\n")
        writer.write(AuditEntry(operation_id="op-2"))
        assert [e.operation_id for e in writer.read_all()] == ["op-1", "op-2"]

    def test_empty(self, tmp_path: Path):
        writer = AuditWriter(path=tmp_path / "none.ndjson")
        assert writer.read_all() == []
        assert writer.last() is None

    def test_paths(self, tmp_path: Path):
        assert AuditWriter(state_root=tmp_path).path == tmp_path / ".state" / "audit.ndjson"
        assert audit_path(tmp_path / ".state" / "environment.json") == (
            tmp_path / ".state" / "audit.ndjson"
        )
