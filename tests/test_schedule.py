"""Tests for schedule settings, status recording and trigger registration."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeDatabase
from db_snapshot.backup.schedule import (
    BackupStatus,
    ScheduleStore,
    SupabaseRpcScheduler,
    civil_to_utc,
    update_schedule,
)


class RecordingScheduler:
    def __init__(self) -> None:
        self.registrations: list[tuple[int, int, str, bool]] = []

    async def register_daily(self, utc_hour, utc_minute, token, enabled):
        self.registrations.append((utc_hour, utc_minute, token, enabled))


def _settings_db(**row) -> FakeDatabase:
    return FakeDatabase({"backup_settings": [{"id": "s1", "backup_hour": 2, "backup_minute": 0, **row}]})


class TestCivilToUtc:
    @pytest.mark.parametrize(
        ("hour", "expected"),
        [(9, 2), (2, 19), (7, 0), (0, 17)],
    )
    def test_wraps_around_midnight(self, hour, expected):
        assert civil_to_utc(hour, 15, 7) == (expected, 15)


class TestUpdateSchedule:
    async def test_registers_utc_trigger_and_saves_civil_time(self):
        db = _settings_db(cron_token="existing")
        scheduler = RecordingScheduler()

        saved = await update_schedule(ScheduleStore(db), scheduler, hour=9, minute=30, email="ops@example.com")

        assert scheduler.registrations == [(2, 30, "existing", True)]
        assert saved.backup_hour == 9
        assert saved.notification_email == "ops@example.com"
        assert db.tables["backup_settings"][0]["backup_hour"] == 9

    async def test_token_minted_once(self):
        db = FakeDatabase({"backup_settings": []})
        scheduler = RecordingScheduler()

        saved = await update_schedule(ScheduleStore(db), scheduler, hour=1)

        token = scheduler.registrations[0][2]
        assert token
        assert saved.cron_token == token
        assert db.calls_for("insert") == ["backup_settings"]

    async def test_email_kept_when_not_given(self):
        db = _settings_db(notification_email="ops@example.com", cron_token="t")
        saved = await update_schedule(ScheduleStore(db), RecordingScheduler(), hour=3, enabled=False)
        assert saved.notification_email == "ops@example.com"
        assert not saved.is_enabled

    @pytest.mark.parametrize(("hour", "minute"), [(24, 0), (-1, 0), (5, 60)])
    async def test_out_of_range_rejected(self, hour, minute):
        db = _settings_db()
        scheduler = RecordingScheduler()

        with pytest.raises(ValueError):
            await update_schedule(ScheduleStore(db), scheduler, hour=hour, minute=minute)

        assert scheduler.registrations == []
        assert db.calls_for("update") == []


class TestRecordStatus:
    async def test_writes_status_and_file(self):
        db = _settings_db()

        await ScheduleStore(db).record_status(BackupStatus.SUCCESS, file_name="full-backup-x.json")

        row = db.tables["backup_settings"][0]
        assert row["last_backup_status"] == "success"
        assert row["last_backup_file"] == "full-backup-x.json"
        assert row["last_backup_error"] is None

    async def test_status_only_keeps_file(self):
        db = _settings_db(last_backup_file="earlier.json")

        await ScheduleStore(db).record_status(BackupStatus.EMAIL_ERROR, error="Email error: HTTP 500")

        row = db.tables["backup_settings"][0]
        assert row["last_backup_status"] == "email_error"
        assert row["last_backup_file"] == "earlier.json"

    async def test_failures_are_swallowed(self):
        db = _settings_db()
        db.fail[("update", "backup_settings")] = "read-only transaction"

        await ScheduleStore(db).record_status(BackupStatus.FAILED, error="boom")

    async def test_missing_row_is_skipped(self):
        db = FakeDatabase({"backup_settings": []})
        await ScheduleStore(db).record_status(BackupStatus.SUCCESS, file_name="f.json")
        assert db.calls_for("update") == []


class TestSupabaseRpcScheduler:
    async def test_calls_cron_function(self):
        client = MagicMock()
        client.rpc.return_value.execute = AsyncMock()

        await SupabaseRpcScheduler(client, "https://proj.supabase.co").register_daily(19, 30, "tok", True)

        client.rpc.assert_called_once_with(
            "upsert_backup_cron",
            {
                "_hour": 19,
                "_minute": 30,
                "_enabled": True,
                "_base_url": "https://proj.supabase.co",
                "_anon_key": "tok",
            },
        )
        client.rpc.return_value.execute.assert_awaited_once()
