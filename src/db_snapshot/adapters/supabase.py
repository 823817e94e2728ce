"""``DatabaseClient`` over the Supabase REST layer (PostgREST).

The async client is created on first use and then shared. Storage
publishing, the auth checks and the scheduler RPC reach it through
``get_client()``, so one project connection serves the whole engine.

Usage:
    adapter = AsyncSupabaseAdapter(url="https://abc.supabase.co", key="eyJ...")
    rows = await adapter.select("employees", "*", limit=1000, offset=0)
    await adapter.close()
"""

import asyncio
from typing import Any

from supabase import AsyncClient, acreate_client


class AsyncSupabaseAdapter:
    """Supabase-backed ``DatabaseClient``.

    Args:
        url: Project URL.
        key: API key. Restores need the service-role key because row-level
            security applies to every other key.
        primary_key: Column used by the match-all filter of ``delete_all``.
    """

    def __init__(self, url: str, key: str, primary_key: str = "id") -> None:
        self._url = url
        self._key = key
        self._primary_key = primary_key
        self._client: AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def get_client(self) -> AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    self._client = await acreate_client(self._url, self._key)
        return self._client

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict]:
        """Read one page; PostgREST ranges are inclusive on both ends."""
        client = await self.get_client()
        builder = client.table(table).select(columns)
        for column, value in (filters or {}).items():
            builder = builder.eq(column, value)
        if order_by:
            builder = builder.order(order_by)
        if limit is not None:
            first = offset or 0
            builder = builder.range(first, first + limit - 1)
        response = await builder.execute()
        return response.data

    async def insert(self, table: str, data: dict) -> dict:
        client = await self.get_client()
        row = {column: value for column, value in data.items() if not column.startswith("_")}
        response = await client.table(table).insert(row).execute()
        return response.data[0]

    async def insert_many(self, table: str, rows: list[dict]) -> int:
        """Send the whole batch as one request; PostgREST applies it atomically."""
        if not rows:
            return 0
        client = await self.get_client()
        await client.table(table).insert(rows, default_to_null=True).execute()
        return len(rows)

    async def upsert(self, table: str, row: dict, on_conflict: str = "id") -> None:
        client = await self.get_client()
        await client.table(table).upsert(row, on_conflict=on_conflict).execute()

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        client = await self.get_client()
        builder = client.table(table).update(data)
        for column, value in filters.items():
            builder = builder.eq(column, value)
        response = await builder.execute()
        return response.data[0]

    async def delete_all(self, table: str) -> int:
        """Empty *table*.

        PostgREST refuses an unfiltered DELETE, so the request filters on
        ``<primary key> IS NOT NULL``, which every row satisfies.
        """
        client = await self.get_client()
        response = await (
            client.table(table).delete().not_.is_(self._primary_key, "null").execute()
        )
        return len(response.data or [])

    async def execute(self, sql: str, params: dict | None = None) -> None:
        raise NotImplementedError(
            "Raw SQL needs a direct PostgreSQL profile; PostgREST only exposes tables and RPCs"
        )

    async def close(self) -> None:
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None
