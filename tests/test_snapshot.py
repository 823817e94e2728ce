"""Tests for pagination, snapshot building, the envelope format and validation."""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import FakeDatabase
from db_snapshot.backup.paginator import fetch_all_rows
from db_snapshot.backup.snapshot import (
    LEGACY_VERSION,
    SNAPSHOT_VERSION,
    SnapshotEnvelope,
    build_snapshot,
    serialize_snapshot,
    snapshot_timestamp,
    validate_snapshot,
    validate_snapshot_file,
)
from db_snapshot.config.models import RegistryEntry
from db_snapshot.errors import InvalidSnapshotError
from db_snapshot.outcome import Err, Ok
from db_snapshot.registry import TableRegistry
from db_snapshot.schema.models import CatalogSnapshot, ColumnDescriptor, TableCatalog


def _rows(n: int, prefix: str = "r") -> list[dict]:
    return [{"id": f"{prefix}{i}"} for i in range(n)]


class TestPaginator:
    async def test_reads_until_short_page(self):
        db = FakeDatabase({"authors": _rows(5)})

        outcome = await fetch_all_rows(db, "authors", page_size=2)

        assert isinstance(outcome, Ok)
        assert [r["id"] for r in outcome.value] == ["r0", "r1", "r2", "r3", "r4"]
        assert db.calls_for("select") == ["authors"] * 3

    async def test_exact_multiple_needs_one_empty_page(self):
        db = FakeDatabase({"authors": _rows(4)})

        outcome = await fetch_all_rows(db, "authors", page_size=2)

        assert len(outcome.value) == 4
        assert len(db.calls_for("select")) == 3

    async def test_failure_reports_table(self):
        db = FakeDatabase({"authors": _rows(1)})
        db.fail[("select", "authors")] = "relation does not exist"

        outcome = await fetch_all_rows(db, "authors")

        assert outcome == Err("Error fetching authors: relation does not exist")

    async def test_page_size_must_be_positive(self):
        with pytest.raises(ValueError):
            await fetch_all_rows(FakeDatabase(), "authors", page_size=0)


class TestBuildSnapshot:
    async def test_tables_in_forward_order_with_metadata(self, registry):
        db = FakeDatabase({"books": _rows(3, "b"), "authors": _rows(2, "a")})

        build = await build_snapshot(db, registry, page_size=10)
        payload = build.envelope.to_payload()

        assert list(payload) == ["_metadata", "profiles", "authors", "books"]
        metadata = payload["_metadata"]
        assert metadata["backup_version"] == SNAPSHOT_VERSION
        assert metadata["total_tables"] == 3
        assert metadata["total_records"] == 5
        assert metadata["tables_backed_up"] == ["profiles", "authors", "books"]
        assert build.errors == []

    async def test_failed_table_recorded_empty(self, registry):
        db = FakeDatabase({"authors": _rows(2), "books": _rows(1)})
        db.fail[("select", "authors")] = "timeout"

        build = await build_snapshot(db, registry)

        assert build.envelope.tables["authors"] == []
        assert build.envelope.tables["books"] == [{"id": "r0"}]
        assert build.errors == ["Error fetching authors: timeout"]

    async def test_export_only_tables_left_out(self):
        registry = TableRegistry.from_entries(
            [RegistryEntry(name="authors"), RegistryEntry(name="settings", restorable=False)]
        )
        db = FakeDatabase({"authors": _rows(1), "settings": [{"id": "s1", "cron_token": "tok"}]})

        build = await build_snapshot(db, registry)

        assert list(build.envelope.tables) == ["authors"]
        assert "settings" not in db.calls_for("select")

    async def test_values_json_encoded_with_catalog(self, registry):
        db = FakeDatabase(
            {"authors": [{"id": "a1", "tags": ["x"], "meta": ["y"], "fee": Decimal("2.50")}]}
        )
        catalog = CatalogSnapshot(
            tables=(
                TableCatalog(
                    name="authors",
                    columns=(
                        ColumnDescriptor(name="tags", data_type="ARRAY", udt_name="_text"),
                        ColumnDescriptor(name="meta", data_type="jsonb", udt_name="jsonb"),
                    ),
                ),
            )
        )

        build = await build_snapshot(db, registry, catalog=catalog)

        assert build.envelope.tables["authors"] == [{"id": "a1", "tags": ["x"], "meta": ["y"], "fee": 2.5}]

    async def test_serialized_is_indented_utf8(self, registry):
        db = FakeDatabase({"authors": [{"id": "a1", "name": "Nguyễn"}]})

        data = serialize_snapshot((await build_snapshot(db, registry)).envelope)

        assert "Nguyễn" in data.decode("utf-8")
        assert data.startswith(b'{\n  "_metadata"')


class TestEnvelope:
    def test_legacy_payload_accepted(self):
        envelope = SnapshotEnvelope.from_payload({"authors": _rows(2)})

        assert envelope.metadata.backup_version == LEGACY_VERSION
        assert envelope.metadata.total_records == 2
        assert envelope.record_counts == {"authors": 2}

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            "nope",
            {"authors": "not a list"},
            {"authors": [1, 2]},
            {"_metadata": "bad", "authors": []},
            {"_metadata": {"total_records": "many"}},
        ],
    )
    def test_unusable_payload_rejected(self, payload):
        with pytest.raises(InvalidSnapshotError):
            SnapshotEnvelope.from_payload(payload)

    def test_round_trip_through_json(self):
        envelope = SnapshotEnvelope.from_payload(
            {"_metadata": {"backup_version": "2.0", "total_tables": 1, "total_records": 1}, "a": [{"id": 1}]}
        )
        again = SnapshotEnvelope.from_payload(json.loads(serialize_snapshot(envelope)))
        assert again == envelope


class TestTimestamp:
    def test_file_safe_millisecond_format(self):
        moment = datetime(2026, 1, 15, 2, 0, 0, 123456, tzinfo=timezone.utc)
        assert snapshot_timestamp(moment) == "2026-01-15T02-00-00-123Z"


class TestValidate:
    def test_valid_snapshot(self, registry):
        payload = {
            "_metadata": {"backup_version": "2.0", "total_tables": 1, "total_records": 2},
            "authors": _rows(2),
        }
        report = validate_snapshot(payload, registry)
        assert report.valid
        assert report.warnings == []

    def test_count_mismatch_and_unknown_table_warn(self, registry):
        payload = {
            "_metadata": {"backup_version": "2.0", "total_tables": 1, "total_records": 9},
            "authors": _rows(2),
            "unknown": [],
        }
        report = validate_snapshot(payload, registry)

        assert report.valid
        assert any("total_records 9" in w for w in report.warnings)
        assert any("total_tables 1" in w for w in report.warnings)
        assert "Unknown table 'unknown' will be skipped" in report.warnings

    def test_export_only_table_warns(self):
        registry = TableRegistry.from_entries([RegistryEntry(name="settings", restorable=False)])
        report = validate_snapshot({"settings": [{"id": "s1"}]}, registry)
        assert "Table 'settings' is export-only and will be skipped" in report.warnings

    def test_unknown_version_warns(self, registry):
        report = validate_snapshot({"_metadata": {"backup_version": "9.9"}}, registry)
        assert any("Unsupported backup version '9.9'" in w for w in report.warnings)

    def test_invalid_structure_is_error(self, registry):
        report = validate_snapshot({"authors": "x"}, registry)
        assert not report.valid
        assert report.errors == ["Table 'authors' must be a list of row objects"]

    def test_file_not_found(self, registry, tmp_path):
        report = validate_snapshot_file(tmp_path / "missing.json", registry)
        assert not report.valid
        assert "not found" in report.errors[0]

    def test_invalid_json_file(self, registry, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        report = validate_snapshot_file(path, registry)
        assert not report.valid
        assert report.errors[0].startswith("Invalid JSON")
