"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and concrete async adapter
implementations for PostgreSQL and Supabase.

Usage:
    from db_snapshot.adapters import DatabaseClient, AsyncPostgresAdapter
    from db_snapshot.adapters import AsyncSupabaseAdapter
"""

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.adapters.postgres import AsyncPostgresAdapter, quote_ident
from db_snapshot.adapters.supabase import AsyncSupabaseAdapter

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
    "AsyncSupabaseAdapter",
    "quote_ident",
]
