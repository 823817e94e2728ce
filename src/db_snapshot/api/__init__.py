"""HTTP service exposing the backup, export and restore entry points.

Usage:
    uvicorn --factory db_snapshot.api:create_app
"""

from db_snapshot.api.app import create_app

__all__ = ["create_app"]
