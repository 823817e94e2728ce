"""Pydantic models for database profiles and engine settings."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"  # postgres | supabase
    supabase_url: str | None = None  # Needed for storage, auth and the supabase provider


class SnapshotSettings(BaseModel):
    """Engine tuning and artifact naming from the ``[snapshot]`` section."""

    schema_name: str = Field(default="public", alias="schema")
    page_size: int = Field(default=1000, gt=0)
    insert_batch_size: int = Field(default=100, gt=0)
    bucket: str = "database-backups"
    signed_url_ttl: int = 86400  # 24 hours
    file_prefix: str = "full-backup"
    export_prefix: str = "full-export"
    emergency_phrase: str = "confirm"
    civil_utc_offset_hours: int = 7
    notification_sender: str = "Backup <onboarding@resend.dev>"
    default_recipient: str = ""
    # Tables rendered as preview tables in the email report: table -> columns
    preview_tables: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "employees": ["full_name", "position", "department", "phone", "date_joined"],
            "projects": ["name", "status", "priority", "location", "start_date", "end_date", "budget"],
            "tasks": ["title", "status", "priority", "due_date", "completion_percentage"],
            "asset_master_data": ["asset_id", "asset_name", "asset_type", "cost_basis", "current_status"],
        }
    )
    preview_limit: int = 50

    model_config = {"populate_by_name": True}


class RegistryEntry(BaseModel):
    """One ``[[registry.tables]]`` entry."""

    name: str
    depends_on: list[str] = Field(default_factory=list)
    identity_owned: bool = False
    identity_column: str = "user_id"
    restorable: bool = True  # false: SQL export only


class DatabaseConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    snapshot: SnapshotSettings = Field(default_factory=SnapshotSettings)
    registry: list[RegistryEntry] | None = None  # None -> built-in registry
