"""CLI tests: argument parsing and commands over an in-memory database."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from conftest import FakeDatabase, StaticRoles, small_registry
from db_snapshot.backup.auth import Authorizer
from db_snapshot.backup.jobs import EngineContext
from db_snapshot.cli import build_parser, cmd_backup, cmd_restore, main
from db_snapshot.config.models import SnapshotSettings
from db_snapshot.factory import ProfileNotFoundError


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _context(db: FakeDatabase) -> EngineContext:
    return EngineContext(
        adapter=db,
        registry=small_registry(),
        settings=SnapshotSettings(preview_tables={}),
        authorizer=Authorizer(None, StaticRoles(set())),
    )


def _snapshot_file(path, **tables):
    payload = {
        "_metadata": {
            "backup_version": "2.0",
            "total_tables": len(tables),
            "total_records": sum(len(rows) for rows in tables.values()),
        },
        **tables,
    }
    path.write_text(json.dumps(payload))
    return path


class TestParser:
    def test_restore_arguments(self):
        args = build_parser().parse_args(["restore", "b.json", "--mode", "append", "-y"])
        assert args.backup_path == "b.json"
        assert args.mode == "append"
        assert args.yes
        assert args.func is cmd_restore

    def test_backup_defaults(self):
        args = build_parser().parse_args(["--env-prefix", "APP_", "backup"])
        assert args.env_prefix == "APP_"
        assert args.output is None
        assert not args.no_publish
        assert args.func is cmd_backup

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_unknown_mode_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["restore", "b.json", "--mode", "merge"])

    def test_serve_port_is_int(self):
        assert build_parser().parse_args(["serve", "--port", "9000"]).port == 9000


class TestLocalCommands:
    def test_validate_valid(self, workdir):
        path = _snapshot_file(workdir / "b.json", employees=[{"id": 1}])
        assert main(["validate", str(path)]) == 0

    def test_validate_invalid(self, workdir):
        path = workdir / "b.json"
        path.write_text('{"employees": "x"}')
        assert main(["validate", str(path)]) == 1

    def test_validate_missing_file(self, workdir):
        assert main(["validate", str(workdir / "none.json")]) == 1

    def test_profiles_without_config(self):
        assert main(["profiles"]) == 1

    def test_status_without_lock(self, capsys):
        assert main(["status"]) == 0
        assert "No connected profile" in capsys.readouterr().out


class TestBackupCommand:
    def test_writes_snapshot_file(self, workdir):
        db = FakeDatabase({"authors": [{"id": "a1"}]})
        output = workdir / "out" / "backup.json"

        with patch("db_snapshot.cli.build_context", AsyncMock(return_value=_context(db))):
            code = main(["backup", "--no-publish", "-o", str(output)])

        assert code == 0
        assert json.loads(output.read_text())["authors"] == [{"id": "a1"}]
        assert db.closed

    def test_fetch_error_exit_code(self, workdir):
        db = FakeDatabase()
        db.fail[("select", "books")] = "timeout"

        with patch("db_snapshot.cli.build_context", AsyncMock(return_value=_context(db))):
            code = main(["backup", "-o", str(workdir / "b.json")])

        assert code == 1

    def test_setup_error(self):
        with patch("db_snapshot.cli.build_context", AsyncMock(side_effect=ProfileNotFoundError("No profile"))):
            assert main(["backup"]) == 1


class TestRestoreCommand:
    def test_confirmed_restore(self, workdir):
        db = FakeDatabase({"authors": [{"id": "old"}]})
        path = _snapshot_file(workdir / "b.json", authors=[{"id": "a1"}])

        with patch("db_snapshot.cli.build_context", AsyncMock(return_value=_context(db))):
            code = main(["restore", str(path), "--yes"])

        assert code == 0
        assert db.tables["authors"] == [{"id": "a1"}]

    def test_prompt_declined(self, workdir):
        db = FakeDatabase({"authors": [{"id": "old"}]})
        path = _snapshot_file(workdir / "b.json", authors=[{"id": "a1"}])

        with (
            patch("db_snapshot.cli.build_context", AsyncMock(return_value=_context(db))),
            patch("db_snapshot.cli.console.input", return_value="no"),
        ):
            code = main(["restore", str(path)])

        assert code == 0
        assert db.tables["authors"] == [{"id": "old"}]
        assert db.calls_for("delete_all") == []

    def test_unreadable_file(self, workdir):
        (workdir / "b.json").write_text("{broken")
        assert main(["restore", str(workdir / "b.json"), "--yes"]) == 1

    def test_row_errors_exit_code(self, workdir):
        db = FakeDatabase()
        db.row_rules["authors"] = lambda row: "duplicate key"
        path = _snapshot_file(workdir / "b.json", authors=[{"id": "a1"}])

        with patch("db_snapshot.cli.build_context", AsyncMock(return_value=_context(db))):
            assert main(["restore", str(path), "-y", "--mode", "append"]) == 1
