"""The ``DatabaseClient`` protocol shared by every storage backend.

The snapshot engine only talks to this surface, so the same backup and
restore code runs over a direct PostgreSQL connection or the Supabase
REST layer.

Usage:
    from db_snapshot.adapters.base import DatabaseClient

    async def copy_page(client: DatabaseClient) -> None:
        rows = await client.select("employees", "*", limit=1000, offset=0)
        await client.insert_many("employees", rows)
"""

from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Async row-level access to one database schema."""

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict]:
        """Read rows of *table*.

        Args:
            table: Table name.
            columns: Column list, or ``"*"``.
            filters: Equality filters, combined with AND.
            order_by: Sort column.
            limit: Page size; no limit when omitted.
            offset: Rows to skip before the page starts.

        Example:
            page = await client.select("tasks", "*", limit=1000, offset=2000)
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert a single row; constraint violations raise."""
        ...

    async def insert_many(self, table: str, rows: list[dict]) -> int:
        """Insert *rows* in one statement and return how many went in.

        Either every row is written or none is. Keys absent from a row are
        written as NULL.
        """
        ...

    async def upsert(self, table: str, row: dict, on_conflict: str = "id") -> None:
        """Insert *row*, overwriting the existing row with the same *on_conflict* key."""
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        ...

    async def delete_all(self, table: str) -> int:
        """Empty *table*, returning the number of rows removed."""
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Run a statement that returns no rows.

        Raises:
            NotImplementedError: Backends without raw SQL access.
        """
        ...

    async def close(self) -> None:
        ...
