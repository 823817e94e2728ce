"""TOML configuration loader.

Usage:
    from db_snapshot.config.loader import load_db_config

    config = load_db_config()                  # ./db.toml
    config = load_db_config(Path("db.toml"))
"""

import tomllib
from pathlib import Path

from db_snapshot.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    RegistryEntry,
    SnapshotSettings,
)


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Read profiles, ``[snapshot]`` settings and the optional registry.

    *config_path* defaults to ``db.toml`` in the working directory.

    Raises:
        FileNotFoundError: No config file.
        ValueError: Malformed registry or settings.
    """
    if config_path is None:
        config_path = Path.cwd() / "db.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Copy db.toml.example to db.toml and configure your profiles."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    profiles = {name: DatabaseProfile(**fields) for name, fields in data.get("profiles", {}).items()}

    snapshot = SnapshotSettings(**data.get("snapshot", {}))

    # Registry is optional; absent section means the built-in table set
    registry = None
    registry_data = data.get("registry")
    if registry_data is not None:
        tables = registry_data.get("tables")
        if not isinstance(tables, list):
            raise ValueError("[registry] must declare [[registry.tables]] entries")
        registry = [RegistryEntry(**entry) for entry in tables]

    return DatabaseConfig(
        profiles=profiles,
        snapshot=snapshot,
        registry=registry,
    )
