"""Profile resolution and engine assembly.

Profiles live in ``db.toml``.  The active profile comes from the
``{prefix}DB_PROFILE`` environment variable, else from the ``.db-profile``
lock file written by a successful ``connect()``.  Secrets are read from the
environment only:

- ``{prefix}SUPABASE_SERVICE_ROLE_KEY``: storage, auth, scheduler RPC and
  the supabase provider
- ``{prefix}RESEND_API_KEY``: backup report emails
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from supabase import AsyncClient, acreate_client

from db_snapshot.adapters import AsyncPostgresAdapter, AsyncSupabaseAdapter, DatabaseClient
from db_snapshot.backup.auth import AdapterRoleStore, Authorizer, SupabaseIdentityProvider
from db_snapshot.backup.jobs import EngineContext
from db_snapshot.backup.notify import ResendEmailSender
from db_snapshot.backup.publish import StoragePublisher, SupabaseObjectStorage
from db_snapshot.backup.schedule import ScheduleStore, SupabaseRpcScheduler
from db_snapshot.config.loader import load_db_config
from db_snapshot.config.models import DatabaseConfig, DatabaseProfile
from db_snapshot.registry import TableRegistry, default_registry
from db_snapshot.schema.introspector import SchemaIntrospector
from db_snapshot.schema.models import ConnectionResult

logger = logging.getLogger(__name__)

_PROFILE_LOCK_FILE = ".db-profile"


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


# ============================================================================
# Profile Lock File Operations
# ============================================================================


def _lock_path() -> Path:
    return Path.cwd() / _PROFILE_LOCK_FILE


def read_profile_lock() -> str | None:
    """Profile name from the lock file in the working directory, if any."""
    path = _lock_path()
    if path.exists():
        return path.read_text().strip() or None
    return None


def write_profile_lock(profile_name: str) -> None:
    """Persist *profile_name*.  Only called after a successful connect."""
    _lock_path().write_text(profile_name)


def clear_profile_lock() -> None:
    path = _lock_path()
    if path.exists():
        path.unlink()


def get_active_profile_name(env_prefix: str = "") -> str:
    """Active profile name.

    Priority:
    1. ``{env_prefix}DB_PROFILE`` env var
    2. ``.db-profile`` file (from a previous connect)

    Raises:
        ProfileNotFoundError: If neither is set.
    """
    env_profile = os.environ.get(f"{env_prefix}DB_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_prefix}DB_PROFILE=<name> db-snapshot connect"
    )


def get_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> tuple[str, DatabaseProfile, DatabaseConfig]:
    """Resolve a profile by name (or the active one) from the config.

    Raises:
        ProfileNotFoundError: If no profile is configured or the name is unknown.
        FileNotFoundError: If db.toml is missing.
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    if config is None:
        config = load_db_config()

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles)
        raise ProfileNotFoundError(f"Profile '{profile_name}' not found. Available: {available}")
    return profile_name, config.profiles[profile_name], config


def resolve_url(profile: DatabaseProfile) -> str:
    """Profile URL with the ``[YOUR-PASSWORD]`` placeholder substituted.

    Example:
        >>> resolve_url(DatabaseProfile(url="postgresql://u:[YOUR-PASSWORD]@h/db", db_password="p@ss"))
        'postgresql://u:p%40ss@h/db'
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def build_registry(config: DatabaseConfig) -> TableRegistry:
    """The configured registry, or the built-in one when db.toml declares none."""
    if config.registry is None:
        return default_registry()
    return TableRegistry.from_entries(config.registry)


def _service_role_key(env_prefix: str) -> str | None:
    return os.environ.get(f"{env_prefix}SUPABASE_SERVICE_ROLE_KEY")


# ============================================================================
# Adapter and client factories
# ============================================================================


def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> DatabaseClient:
    """Adapter for the profile's provider.

    Raises:
        ProfileNotFoundError: If no profile is configured.
        ValueError: If a supabase profile lacks its URL or service-role key.
    """
    _, profile, config = get_profile(profile_name, env_prefix, config)

    if profile.provider == "supabase":
        key = _service_role_key(env_prefix)
        if not profile.supabase_url or not key:
            raise ValueError(
                f"Supabase provider needs supabase_url and {env_prefix}SUPABASE_SERVICE_ROLE_KEY"
            )
        return AsyncSupabaseAdapter(url=profile.supabase_url, key=key)

    return AsyncPostgresAdapter(
        database_url=resolve_url(profile),
        schema_name=config.snapshot.schema_name,
    )


async def create_supabase_client(profile: DatabaseProfile, env_prefix: str = "") -> AsyncClient | None:
    """Service-role Supabase client, or None when the profile has no Supabase project."""
    key = _service_role_key(env_prefix)
    if not profile.supabase_url or not key:
        return None
    return await acreate_client(profile.supabase_url, key)


async def build_context(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> EngineContext:
    """Assemble every collaborator for one profile.

    Storage publishing, token verification and the scheduler need a
    Supabase project; emails need a Resend key.  Missing pieces are
    switched off with a warning.
    """
    name, profile, config = get_profile(profile_name, env_prefix, config)
    settings = config.snapshot
    adapter = get_adapter(name, env_prefix, config)

    if isinstance(adapter, AsyncSupabaseAdapter):
        client = await adapter.get_client()
    else:
        client = await create_supabase_client(profile, env_prefix)

    publisher = None
    identity = None
    scheduler = None
    if client is not None:
        publisher = StoragePublisher(SupabaseObjectStorage(client, settings.bucket), settings.signed_url_ttl)
        identity = SupabaseIdentityProvider(client)
        scheduler = SupabaseRpcScheduler(client, base_url=profile.supabase_url or "")
    else:
        logger.warning("No Supabase project configured: publishing, token checks and scheduling disabled")

    notifier = None
    resend_key = os.environ.get(f"{env_prefix}RESEND_API_KEY")
    if resend_key:
        notifier = ResendEmailSender(resend_key, settings.notification_sender)
    else:
        logger.warning(f"{env_prefix}RESEND_API_KEY not set: backup emails disabled")

    database_url = resolve_url(profile)

    def introspector_factory() -> SchemaIntrospector:
        return SchemaIntrospector(database_url, schema_name=settings.schema_name)

    logger.info(f"Engine ready for profile {name} ({profile.provider})")
    return EngineContext(
        adapter=adapter,
        registry=build_registry(config),
        settings=settings,
        publisher=publisher,
        notifier=notifier,
        schedule=ScheduleStore(adapter),
        introspector_factory=introspector_factory,
        authorizer=Authorizer(identity, AdapterRoleStore(adapter), settings.emergency_phrase),
        scheduler=scheduler,
        recipient=settings.default_recipient or None,
    )


# ============================================================================
# Connection check
# ============================================================================


async def connect(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> ConnectionResult:
    """Check connectivity and registry coverage, then lock the profile.

    Missing registry tables do not fail the connection; they are reported
    so the operator knows those tables will be captured empty.

    Example:
        >>> result = await connect("dev")
        >>> if result.success:
        ...     print(f"Connected to {result.profile_name}")
    """
    try:
        name, profile, config = get_profile(profile_name, env_prefix, config)
    except (ProfileNotFoundError, FileNotFoundError) as e:
        return ConnectionResult(success=False, profile_name=profile_name, error=str(e))

    registry = build_registry(config)
    try:
        async with SchemaIntrospector(resolve_url(profile), schema_name=config.snapshot.schema_name) as introspector:
            await introspector.test_connection()
            existing = set(await introspector.existing_tables())
    except Exception as e:
        return ConnectionResult(
            success=False,
            profile_name=name,
            error=f"Failed to connect to database: {e}",
        )

    write_profile_lock(name)
    return ConnectionResult(
        success=True,
        profile_name=name,
        existing_tables=[t for t in registry.names() if t in existing],
        missing_tables=[t for t in registry.names() if t not in existing],
    )
