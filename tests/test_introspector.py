"""Tests for SchemaIntrospector: connection handling and failure isolation.

No database is needed: the psycopg connection and the per-class catalog
queries are mocked.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from db_snapshot.errors import IntrospectionError
from db_snapshot.schema.introspector import SchemaIntrospector
from db_snapshot.schema.models import ColumnDescriptor, EnumType


def _connected(url: str = "postgresql://localhost/erp") -> SchemaIntrospector:
    introspector = SchemaIntrospector(url)
    introspector._conn = MagicMock()
    return introspector


def _mock_cursor(conn: MagicMock, rows=None, error: Exception | None = None) -> AsyncMock:
    cursor = AsyncMock()
    if error is not None:
        cursor.execute.side_effect = error
    cursor.fetchall.return_value = rows or []
    context = MagicMock()
    context.__aenter__.return_value = cursor
    context.__aexit__.return_value = False
    conn.cursor.return_value = context
    return cursor


class TestConnection:
    async def test_driver_suffix_stripped_and_timeout_added(self):
        conn = AsyncMock()
        with patch("db_snapshot.schema.introspector.AsyncConnection") as connection_cls:
            connection_cls.connect = AsyncMock(return_value=conn)
            async with SchemaIntrospector("postgresql+asyncpg://u:p@host/db"):
                pass

        connection_cls.connect.assert_awaited_once_with(
            "postgresql://u:p@host/db?connect_timeout=10", autocommit=True
        )
        conn.close.assert_awaited_once()

    async def test_introspect_requires_connection(self):
        with pytest.raises(RuntimeError, match="not connected"):
            await SchemaIntrospector("postgresql://localhost/erp").introspect(["a"])


class TestFetch:
    async def test_driver_error_becomes_introspection_error(self):
        introspector = _connected()
        _mock_cursor(introspector._conn, error=psycopg.Error("permission denied for table pg_policies"))

        with pytest.raises(IntrospectionError, match="permission denied"):
            await introspector._fetch("SELECT 1")

    async def test_existing_tables(self):
        introspector = _connected()
        cursor = _mock_cursor(introspector._conn, rows=[("authors",), ("books",)])

        assert await introspector.existing_tables() == ["authors", "books"]
        assert cursor.execute.await_args.args[1] == ("public",)

    async def test_enum_rows_parsed(self):
        introspector = _connected()
        _mock_cursor(introspector._conn, rows=[("status", ["draft", "done"])])

        assert await introspector._get_enums() == [EnumType(name="status", labels=("draft", "done"))]


class TestIntrospect:
    """One failing artifact class never hides the others."""

    @pytest.fixture
    def introspector(self) -> SchemaIntrospector:
        introspector = _connected()
        introspector._get_enums = AsyncMock(return_value=[EnumType(name="status", labels=("a",))])
        introspector._get_columns = AsyncMock(
            return_value={"authors": [ColumnDescriptor(name="id", data_type="uuid", udt_name="uuid")]}
        )
        introspector._get_constraints = AsyncMock(return_value={})
        introspector._get_indexes = AsyncMock(return_value=[])
        introspector._get_functions = AsyncMock(return_value=[])
        introspector._get_triggers = AsyncMock(return_value=[])
        introspector._get_policies = AsyncMock(return_value=[])
        return introspector

    async def test_tables_keep_requested_order(self, introspector):
        catalog = await introspector.introspect(["books", "authors"])
        assert [t.name for t in catalog.tables] == ["books", "authors"]
        assert not catalog.table("books").exists
        assert catalog.table("authors").exists

    async def test_failed_class_recorded_and_others_kept(self, introspector):
        introspector._get_functions = AsyncMock(side_effect=IntrospectionError("permission denied"))

        catalog = await introspector.introspect(["authors"])

        assert catalog.functions == ()
        assert catalog.errors == ("functions: permission denied",)
        assert catalog.enums[0].name == "status"
        assert catalog.table("authors").exists

    async def test_every_class_can_fail_independently(self, introspector):
        introspector._get_enums = AsyncMock(side_effect=IntrospectionError("e"))
        introspector._get_policies = AsyncMock(side_effect=IntrospectionError("p"))

        catalog = await introspector.introspect(["authors"])

        assert catalog.errors == ("enum types: e", "policies: p")
        assert catalog.table("authors").exists
