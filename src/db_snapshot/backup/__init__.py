"""Snapshot, SQL export, restore, and the services around them.

Usage:
    from db_snapshot.backup import EngineContext, run_backup, run_export, run_restore
    from db_snapshot.backup import RestoreRequest, validate_snapshot_file
"""

from db_snapshot.backup.auth import (
    AdapterRoleStore,
    Authorizer,
    IdentityProvider,
    RoleStore,
    SupabaseIdentityProvider,
)
from db_snapshot.backup.export import SqlExport, export_sql
from db_snapshot.backup.jobs import BackupResponse, EngineContext, run_backup, run_export, run_restore
from db_snapshot.backup.notify import EmailSender, ResendEmailSender, render_backup_report
from db_snapshot.backup.publish import ObjectStorage, PublishOutcome, StoragePublisher, SupabaseObjectStorage
from db_snapshot.backup.restore import RestoreOrchestrator, RestoreReport, RestoreRequest
from db_snapshot.backup.schedule import (
    BackupStatus,
    Scheduler,
    ScheduleSettings,
    ScheduleStore,
    SupabaseRpcScheduler,
    update_schedule,
)
from db_snapshot.backup.snapshot import (
    SnapshotEnvelope,
    SnapshotMetadata,
    ValidationReport,
    build_snapshot,
    serialize_snapshot,
    validate_snapshot,
    validate_snapshot_file,
)

__all__ = [
    # Entry points
    "EngineContext",
    "BackupResponse",
    "run_backup",
    "run_export",
    "run_restore",
    # Snapshot
    "SnapshotEnvelope",
    "SnapshotMetadata",
    "ValidationReport",
    "build_snapshot",
    "serialize_snapshot",
    "validate_snapshot",
    "validate_snapshot_file",
    # Export
    "SqlExport",
    "export_sql",
    # Restore
    "RestoreOrchestrator",
    "RestoreReport",
    "RestoreRequest",
    # Auth
    "Authorizer",
    "IdentityProvider",
    "RoleStore",
    "SupabaseIdentityProvider",
    "AdapterRoleStore",
    # Publishing and notification
    "ObjectStorage",
    "SupabaseObjectStorage",
    "StoragePublisher",
    "PublishOutcome",
    "EmailSender",
    "ResendEmailSender",
    "render_backup_report",
    # Schedule
    "BackupStatus",
    "Scheduler",
    "ScheduleSettings",
    "ScheduleStore",
    "SupabaseRpcScheduler",
    "update_schedule",
]
