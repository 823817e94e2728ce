"""Backup schedule settings, run status, and the scheduler capability.

The schedule is stored in civil time (the operators' timezone) and
registered with the hosting platform's scheduler in UTC.  The settings row
also carries the opaque token the scheduler presents when it triggers an
unattended backup, and the status of the last run.

Usage:
    store = ScheduleStore(adapter)
    settings = await update_schedule(store, scheduler, hour=9, minute=30)
    await store.record_status(BackupStatus.SUCCESS, file_name="full-backup-....json")
"""

import logging
import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict
from supabase import AsyncClient

from db_snapshot.adapters.base import DatabaseClient

logger = logging.getLogger(__name__)


class BackupStatus(str, Enum):
    SUCCESS = "success"
    SUCCESS_WITH_ERRORS = "success_with_errors"
    EMAIL_ERROR = "email_error"
    FAILED = "failed"


class ScheduleSettings(BaseModel):
    """One row of the ``backup_settings`` table.

    ``backup_hour``/``backup_minute`` are civil time.  Unknown columns of
    the row are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    backup_hour: int = 2
    backup_minute: int = 0
    notification_email: str | None = None
    is_enabled: bool = True
    cron_token: str | None = None
    last_backup_at: str | None = None
    last_backup_file: str | None = None
    last_backup_status: BackupStatus | None = None
    last_backup_error: str | None = None
    last_scheduled_at: str | None = None


class ScheduleStore:
    """Reads and writes the single settings row through a ``DatabaseClient``."""

    def __init__(self, adapter: DatabaseClient, table: str = "backup_settings") -> None:
        self._adapter = adapter
        self._table = table

    async def load(self) -> ScheduleSettings | None:
        rows = await self._adapter.select(self._table, "*", limit=1)
        if not rows:
            return None
        return ScheduleSettings.model_validate(rows[0])

    async def save(self, settings: ScheduleSettings) -> ScheduleSettings:
        """Update the row when it has an id, insert it otherwise."""
        data = settings.model_dump(mode="json", exclude={"id"}, exclude_none=True)
        if settings.id:
            row = await self._adapter.update(self._table, data, {"id": settings.id})
        else:
            row = await self._adapter.insert(self._table, data)
        return ScheduleSettings.model_validate(row)

    async def record_status(
        self,
        status: BackupStatus,
        file_name: str | None = None,
        error: str | None = None,
    ) -> None:
        """Persist the outcome of a run.  Best effort: failures are logged only.

        ``file_name`` is left unchanged when ``None`` (used when a later
        step, such as the email, downgrades the status of the same run).
        """
        try:
            current = await self.load()
            if current is None or not current.id:
                logger.warning(f"No {self._table} row; backup status not recorded")
                return

            data: dict = {
                "last_backup_status": status.value,
                "last_backup_error": error,
            }
            if file_name is not None:
                data["last_backup_at"] = datetime.now(timezone.utc).isoformat()
                data["last_backup_file"] = file_name
            await self._adapter.update(self._table, data, {"id": current.id})
        except Exception as e:
            logger.warning(f"Could not update {self._table} status: {e}")


# ============================================================================
# Scheduler capability
# ============================================================================


class Scheduler(Protocol):
    """Registers the recurring daily trigger with the hosting platform."""

    async def register_daily(self, utc_hour: int, utc_minute: int, token: str, enabled: bool) -> None: ...


class SupabaseRpcScheduler:
    """Scheduler backed by the ``upsert_backup_cron`` database function.

    The function (pg_cron + pg_net on the Supabase side) creates or replaces
    a daily job that POSTs to ``<base_url>/functions/v1/backup-database``
    with the token as bearer credential.
    """

    def __init__(self, client: AsyncClient, base_url: str, function: str = "upsert_backup_cron"):
        self._client = client
        self._base_url = base_url
        self._function = function

    async def register_daily(self, utc_hour: int, utc_minute: int, token: str, enabled: bool) -> None:
        await self._client.rpc(
            self._function,
            {
                "_hour": utc_hour,
                "_minute": utc_minute,
                "_enabled": enabled,
                "_base_url": self._base_url,
                "_anon_key": token,
            },
        ).execute()


def civil_to_utc(hour: int, minute: int, offset_hours: int) -> tuple[int, int]:
    """Convert a civil wall-clock time to UTC.

    Example:
        >>> civil_to_utc(2, 30, 7)
        (19, 30)
    """
    return (hour - offset_hours) % 24, minute


async def update_schedule(
    store: ScheduleStore,
    scheduler: Scheduler,
    hour: int,
    minute: int = 0,
    email: str | None = None,
    enabled: bool = True,
    offset_hours: int = 7,
) -> ScheduleSettings:
    """Save the civil schedule and register the matching UTC trigger.

    A scheduler token is minted the first time the settings row is written
    and kept afterwards.

    Raises:
        ValueError: If hour is not 0-23 or minute is not 0-59.
    """
    if not 0 <= hour <= 23:
        raise ValueError(f"hour must be between 0 and 23, got {hour}")
    if not 0 <= minute <= 59:
        raise ValueError(f"minute must be between 0 and 59, got {minute}")

    current = await store.load() or ScheduleSettings()
    token = current.cron_token or secrets.token_urlsafe(32)

    updated = current.model_copy(
        update={
            "backup_hour": hour,
            "backup_minute": minute,
            "notification_email": email or current.notification_email,
            "is_enabled": enabled,
            "cron_token": token,
            "last_scheduled_at": datetime.now(timezone.utc).isoformat(),
        }
    )
    saved = await store.save(updated)

    utc_hour, utc_minute = civil_to_utc(hour, minute, offset_hours)
    logger.info(
        f"Updating backup schedule: civil={hour:02d}:{minute:02d}, "
        f"UTC={utc_hour:02d}:{utc_minute:02d}, enabled={enabled}"
    )
    await scheduler.register_daily(utc_hour, utc_minute, saved.cron_token or token, enabled)
    return saved
