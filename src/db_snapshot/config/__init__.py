"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from db_snapshot.config import load_db_config, DatabaseProfile, DatabaseConfig
"""

from db_snapshot.config.loader import load_db_config
from db_snapshot.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    RegistryEntry,
    SnapshotSettings,
)

__all__ = [
    "load_db_config",
    "DatabaseConfig",
    "DatabaseProfile",
    "RegistryEntry",
    "SnapshotSettings",
]
