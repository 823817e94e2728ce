"""db-snapshot: full logical backup, SQL export and restore for PostgreSQL.

Captures every application table into a versioned JSON snapshot or an
idempotent SQL dump, and restores snapshots in dependency order.

Usage:
    from db_snapshot import build_context, run_backup, run_restore, RestoreRequest
    from db_snapshot import AsyncPostgresAdapter, default_registry
"""

__version__ = "0.1.0"

# Adapters
from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.adapters.postgres import AsyncPostgresAdapter
from db_snapshot.adapters.supabase import AsyncSupabaseAdapter

# Config
from db_snapshot.config.loader import load_db_config
from db_snapshot.config.models import DatabaseConfig, DatabaseProfile, SnapshotSettings

# Registry
from db_snapshot.registry import TableDescriptor, TableRegistry, default_registry

# Engine
from db_snapshot.backup.jobs import EngineContext, run_backup, run_export, run_restore
from db_snapshot.backup.restore import RestoreReport, RestoreRequest
from db_snapshot.backup.snapshot import SnapshotEnvelope, validate_snapshot

# Factory
from db_snapshot.factory import (
    ProfileNotFoundError,
    build_context,
    connect,
    get_adapter,
    resolve_url,
)

# Errors
from db_snapshot.errors import AuthError, InvalidSnapshotError, SnapshotError

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    "AsyncSupabaseAdapter",
    # Config
    "load_db_config",
    "DatabaseConfig",
    "DatabaseProfile",
    "SnapshotSettings",
    # Registry
    "TableDescriptor",
    "TableRegistry",
    "default_registry",
    # Engine
    "EngineContext",
    "run_backup",
    "run_export",
    "run_restore",
    "RestoreRequest",
    "RestoreReport",
    "SnapshotEnvelope",
    "validate_snapshot",
    # Factory
    "build_context",
    "connect",
    "get_adapter",
    "resolve_url",
    "ProfileNotFoundError",
    # Errors
    "SnapshotError",
    "AuthError",
    "InvalidSnapshotError",
]
