"""PostgreSQL catalog introspection for the SQL dump.

This module queries the live database to extract, for a list of tables:
- Enum types used in the schema (name + ordered labels)
- Columns (type, underlying type name, nullability, default, length/precision)
- Primary key, unique and foreign key constraints (multi-column aware)
- Indexes that do not back a constraint
- User-defined functions/procedures, non-internal triggers, RLS policies

Each artifact class is fetched independently.  The connection runs in
autocommit mode, so a failing catalog query does not poison the queries
that follow it; the failure is logged, recorded in
``CatalogSnapshot.errors`` and that class is left empty.

Uses psycopg (v3) async connections.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import psycopg
from psycopg import AsyncConnection

from db_snapshot.errors import IntrospectionError
from db_snapshot.schema.models import (
    CatalogSnapshot,
    ColumnDescriptor,
    ConstraintDescriptor,
    ConstraintKind,
    EnumType,
    FunctionDescriptor,
    IndexDescriptor,
    PolicyDescriptor,
    TableCatalog,
    TriggerDescriptor,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CONSTRAINT_KINDS = {
    "p": ConstraintKind.PRIMARY_KEY,
    "u": ConstraintKind.UNIQUE,
    "f": ConstraintKind.FOREIGN_KEY,
}


class SchemaIntrospector:
    """Introspects a PostgreSQL schema.

    Usage:
        async with SchemaIntrospector(database_url) as introspector:
            catalog = await introspector.introspect(["projects", "tasks"])
            for error in catalog.errors:
                print(error)
    """

    def __init__(
        self,
        database_url: str,
        schema_name: str = "public",
        connect_timeout: int = 10,
    ):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL
            schema_name: Schema to introspect (default: public)
            connect_timeout: Connection timeout in seconds
        """
        self._database_url = database_url
        self._schema_name = schema_name
        self._connect_timeout = connect_timeout
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "SchemaIntrospector":
        """Async context manager entry - opens an autocommit connection."""
        url = self._database_url
        # SQLAlchemy-style driver suffixes are not understood by libpq
        url = url.replace("postgresql+asyncpg://", "postgresql://", 1)
        if "connect_timeout" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}connect_timeout={self._connect_timeout}"

        self._conn = await AsyncConnection.connect(url, autocommit=True)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - closes connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def test_connection(self) -> None:
        """Run ``SELECT 1``; raises if the database is unreachable."""
        await self._fetch("SELECT 1")

    async def existing_tables(self) -> list[str]:
        """Base tables present in the schema, sorted by name."""
        rows = await self._fetch(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            (self._schema_name,),
        )
        return [row[0] for row in rows]

    async def introspect(self, tables: list[str]) -> CatalogSnapshot:
        """Capture catalog metadata for *tables*.

        Args:
            tables: Table names in the order they should appear in the dump.

        Returns:
            CatalogSnapshot.  Tables missing from the database are returned
            with no columns.
        """
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use async with statement.")

        errors: list[str] = []

        async def collect(label: str, fetch: Callable[[], Awaitable[T]], empty: T) -> T:
            try:
                return await fetch()
            except IntrospectionError as e:
                logger.error(f"Introspection of {label} failed: {e}")
                errors.append(f"{label}: {e}")
                return empty

        enums = await collect("enum types", self._get_enums, [])
        columns = await collect("columns", lambda: self._get_columns(tables), {})
        constraints = await collect("constraints", lambda: self._get_constraints(tables), {})
        indexes = await collect("indexes", lambda: self._get_indexes(tables), [])
        functions = await collect("functions", self._get_functions, [])
        triggers = await collect("triggers", self._get_triggers, [])
        policies = await collect("policies", self._get_policies, [])

        table_catalogs = tuple(
            TableCatalog(
                name=name,
                columns=tuple(columns.get(name, [])),
                constraints=tuple(constraints.get(name, [])),
            )
            for name in tables
        )
        logger.info(
            f"Introspected {sum(1 for t in table_catalogs if t.exists)}/{len(tables)} tables, "
            f"{len(enums)} enums, {len(functions)} functions, {len(triggers)} triggers, "
            f"{len(policies)} policies"
        )

        return CatalogSnapshot(
            schema_name=self._schema_name,
            enums=tuple(enums),
            tables=table_catalogs,
            indexes=tuple(indexes),
            functions=tuple(functions),
            triggers=tuple(triggers),
            policies=tuple(policies),
            errors=tuple(errors),
        )

    # ------------------------------------------------------------------
    # Catalog queries
    # ------------------------------------------------------------------

    async def _fetch(self, query: str, params: tuple[Any, ...] = ()) -> list[tuple]:
        """Run one catalog query, converting driver errors to IntrospectionError."""
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use async with statement.")
        try:
            async with self._conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
        except psycopg.Error as e:
            raise IntrospectionError(str(e).strip()) from e

    async def _get_enums(self) -> list[EnumType]:
        rows = await self._fetch(
            """
            SELECT t.typname, array_agg(e.enumlabel ORDER BY e.enumsortorder)
            FROM pg_type t
            JOIN pg_enum e ON t.oid = e.enumtypid
            JOIN pg_namespace n ON t.typnamespace = n.oid
            WHERE n.nspname = %s
            GROUP BY t.typname
            ORDER BY t.typname
            """,
            (self._schema_name,),
        )
        return [EnumType(name=name, labels=tuple(labels)) for name, labels in rows]

    async def _get_columns(self, tables: list[str]) -> dict[str, list[ColumnDescriptor]]:
        rows = await self._fetch(
            """
            SELECT table_name, column_name, data_type, udt_name, is_nullable,
                   column_default, character_maximum_length,
                   numeric_precision, numeric_scale
            FROM information_schema.columns
            WHERE table_schema = %s
              AND table_name = ANY(%s)
            ORDER BY table_name, ordinal_position
            """,
            (self._schema_name, list(tables)),
        )
        columns: dict[str, list[ColumnDescriptor]] = {}
        for (
            table_name,
            column_name,
            data_type,
            udt_name,
            is_nullable,
            default,
            max_length,
            precision,
            scale,
        ) in rows:
            columns.setdefault(table_name, []).append(
                ColumnDescriptor(
                    name=column_name,
                    data_type=data_type,
                    udt_name=udt_name,
                    is_nullable=(is_nullable == "YES"),
                    default=default,
                    character_maximum_length=max_length,
                    numeric_precision=precision,
                    numeric_scale=scale,
                )
            )
        return columns

    async def _get_constraints(
        self, tables: list[str]
    ) -> dict[str, list[ConstraintDescriptor]]:
        """Primary key, unique and foreign key constraints.

        Column lists follow the constraint's key order; for foreign keys the
        local and referenced columns are paired position by position.
        """
        rows = await self._fetch(
            """
            SELECT
                con.conname,
                con.contype,
                cl.relname,
                array_agg(att.attname ORDER BY k.ord) AS columns,
                fn.nspname AS references_schema,
                fcl.relname AS references_table,
                array_agg(fatt.attname ORDER BY k.ord) AS references_columns
            FROM pg_constraint con
            JOIN pg_class cl ON cl.oid = con.conrelid
            JOIN pg_namespace n ON n.oid = cl.relnamespace
            CROSS JOIN LATERAL unnest(con.conkey, coalesce(con.confkey, con.conkey))
                WITH ORDINALITY AS k(attnum, fattnum, ord)
            JOIN pg_attribute att ON att.attrelid = con.conrelid AND att.attnum = k.attnum
            LEFT JOIN pg_class fcl ON fcl.oid = con.confrelid
            LEFT JOIN pg_namespace fn ON fn.oid = fcl.relnamespace
            LEFT JOIN pg_attribute fatt ON fatt.attrelid = con.confrelid AND fatt.attnum = k.fattnum
            WHERE n.nspname = %s
              AND cl.relname = ANY(%s)
              AND con.contype IN ('p', 'u', 'f')
            GROUP BY con.conname, con.contype, cl.relname, fn.nspname, fcl.relname
            ORDER BY cl.relname, con.contype, con.conname
            """,
            (self._schema_name, list(tables)),
        )
        constraints: dict[str, list[ConstraintDescriptor]] = {}
        for name, contype, table_name, cols, ref_schema, ref_table, ref_cols in rows:
            kind = _CONSTRAINT_KINDS[contype]
            is_fk = kind is ConstraintKind.FOREIGN_KEY
            constraints.setdefault(table_name, []).append(
                ConstraintDescriptor(
                    name=name,
                    kind=kind,
                    table=table_name,
                    columns=tuple(cols),
                    references_schema=ref_schema if is_fk else None,
                    references_table=ref_table if is_fk else None,
                    references_columns=tuple(ref_cols) if is_fk else None,
                )
            )
        return constraints

    async def _get_indexes(self, tables: list[str]) -> list[IndexDescriptor]:
        """Indexes on *tables*, excluding those that back a constraint."""
        rows = await self._fetch(
            """
            SELECT i.relname, t.relname, pg_get_indexdef(ix.indexrelid)
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            WHERE n.nspname = %s
              AND t.relname = ANY(%s)
              AND NOT ix.indisprimary
              AND NOT EXISTS (
                  SELECT 1 FROM pg_constraint c WHERE c.conindid = ix.indexrelid
              )
            ORDER BY t.relname, i.relname
            """,
            (self._schema_name, list(tables)),
        )
        return [
            IndexDescriptor(name=name, table=table, definition=definition)
            for name, table, definition in rows
        ]

    async def _get_functions(self) -> list[FunctionDescriptor]:
        """User-defined functions and procedures (prokind 'f' and 'p').

        Functions owned by extensions are skipped: they are recreated by
        the extension itself.
        """
        rows = await self._fetch(
            """
            SELECT p.proname, pg_get_functiondef(p.oid)
            FROM pg_proc p
            JOIN pg_namespace n ON n.oid = p.pronamespace
            WHERE n.nspname = %s
              AND p.prokind IN ('f', 'p')
              AND NOT EXISTS (
                  SELECT 1 FROM pg_depend d
                  WHERE d.objid = p.oid AND d.deptype = 'e'
              )
            ORDER BY p.proname
            """,
            (self._schema_name,),
        )
        return [FunctionDescriptor(name=name, definition=definition) for name, definition in rows]

    async def _get_triggers(self) -> list[TriggerDescriptor]:
        rows = await self._fetch(
            """
            SELECT t.tgname, c.relname, pg_get_triggerdef(t.oid)
            FROM pg_trigger t
            JOIN pg_class c ON t.tgrelid = c.oid
            JOIN pg_namespace n ON c.relnamespace = n.oid
            WHERE n.nspname = %s
              AND NOT t.tgisinternal
            ORDER BY c.relname, t.tgname
            """,
            (self._schema_name,),
        )
        return [
            TriggerDescriptor(name=name, table=table, definition=definition)
            for name, table, definition in rows
        ]

    async def _get_policies(self) -> list[PolicyDescriptor]:
        rows = await self._fetch(
            """
            SELECT policyname, tablename, permissive, roles, cmd, qual, with_check
            FROM pg_policies
            WHERE schemaname = %s
            ORDER BY tablename, policyname
            """,
            (self._schema_name,),
        )
        return [
            PolicyDescriptor(
                name=name,
                table=table,
                permissive=permissive or "PERMISSIVE",
                command=cmd or "ALL",
                roles=tuple(roles or ("public",)),
                using=qual,
                with_check=with_check,
            )
            for name, table, permissive, roles, cmd, qual, with_check in rows
        ]
