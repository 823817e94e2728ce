"""Idempotent SQL document synthesis from a ``CatalogSnapshot``.

The document is laid out in fixed sections:

    ENUM TYPES        guarded ``CREATE TYPE`` blocks
    BEGIN;
    CREATE TABLE      one ``CREATE TABLE IF NOT EXISTS`` per table, in dependency order
    FOREIGN KEYS      guarded ``ALTER TABLE ... ADD CONSTRAINT``, after every table exists
    INDEXES           ``CREATE INDEX IF NOT EXISTS``
    DATABASE FUNCTIONS
    TRIGGERS          ``DROP TRIGGER IF EXISTS`` + definition
    RLS POLICIES      ``ENABLE ROW LEVEL SECURITY`` + ``DROP POLICY IF EXISTS`` + definition
    DATA              ``INSERT ... ON CONFLICT DO NOTHING``
    COMMIT;

Every statement either creates-if-absent or drops-then-creates, so the
document can be replayed against the same database.

Usage:
    synth = DdlSynthesizer("public")
    lines = synth.header(generated_at) + synth.schema_sections(catalog, order)
    lines += synth.data_header() + data_lines + synth.footer()
"""

import re
from collections.abc import Iterable

from db_snapshot.adapters.postgres import quote_ident
from db_snapshot.schema.models import (
    CatalogSnapshot,
    ColumnDescriptor,
    ConstraintDescriptor,
    TableCatalog,
)

_BANNER = "-- ============================================="
_TABLE_BANNER = "-- -----------------------------------------------"

# information_schema types that are spelled the same in DDL
_PLAIN_TYPES = {
    "bigint",
    "boolean",
    "date",
    "double precision",
    "integer",
    "json",
    "jsonb",
    "real",
    "smallint",
    "text",
    "time without time zone",
    "uuid",
}

_INDEX_PREFIX = re.compile(r"^CREATE (UNIQUE )?INDEX ", re.IGNORECASE)
_SEQUENCE_DEFAULT = re.compile(r"nextval\('([^']+)'::regclass\)")


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def column_type(column: ColumnDescriptor) -> str:
    """Map an introspected column to its DDL type.

    Example:
        >>> column_type(ColumnDescriptor(name="tags", data_type="ARRAY", udt_name="_text"))
        'text[]'
    """
    data_type = column.data_type
    if data_type == "ARRAY":
        return f"{column.udt_name.removeprefix('_')}[]"
    if data_type == "USER-DEFINED":
        return quote_ident(column.udt_name)
    if data_type == "character varying":
        if column.character_maximum_length:
            return f"varchar({column.character_maximum_length})"
        return "varchar"
    if data_type == "character":
        if column.character_maximum_length:
            return f"char({column.character_maximum_length})"
        return "char"
    if data_type == "numeric":
        if column.numeric_precision is not None and column.numeric_scale is not None:
            return f"numeric({column.numeric_precision},{column.numeric_scale})"
        if column.numeric_precision is not None:
            return f"numeric({column.numeric_precision})"
        return "numeric"
    if data_type == "timestamp with time zone":
        return "timestamptz"
    if data_type == "timestamp without time zone":
        return "timestamp"
    if data_type in _PLAIN_TYPES:
        return data_type
    return column.udt_name


class DdlSynthesizer:
    """Render catalog metadata as an idempotent SQL document."""

    def __init__(self, schema_name: str = "public", title: str = "Full Database Export (Schema + Data)"):
        self._schema = schema_name
        self._title = title

    def qualified(self, table: str, schema: str | None = None) -> str:
        return f"{quote_ident(schema or self._schema)}.{quote_ident(table)}"

    # ------------------------------------------------------------------
    # Document frame
    # ------------------------------------------------------------------

    def header(self, generated_at: str) -> list[str]:
        return [
            _BANNER,
            f"-- {self._title}",
            f"-- Generated: {generated_at}",
            "-- PostgreSQL compatible",
            _BANNER,
            "",
        ]

    @staticmethod
    def section(title: str) -> list[str]:
        return [_BANNER, f"-- {title}", _BANNER]

    def data_header(self) -> list[str]:
        return self.section("DATA")

    @staticmethod
    def footer() -> list[str]:
        return ["COMMIT;", "", "-- End of full export"]

    # ------------------------------------------------------------------
    # Schema sections
    # ------------------------------------------------------------------

    def schema_sections(self, catalog: CatalogSnapshot, order: Iterable[str]) -> list[str]:
        """Every section from ENUM TYPES up to and including RLS POLICIES.

        Args:
            catalog: Introspected metadata.
            order: Table names, parents before children.
        """
        tables: list[TableCatalog] = []
        missing: list[str] = []
        for name in order:
            table = catalog.table(name)
            if table is not None and table.exists:
                tables.append(table)
            else:
                missing.append(name)
        dumped = {t.name for t in tables}

        lines: list[str] = []
        lines += self._enum_section(catalog)
        lines += ["", "BEGIN;", ""]
        lines += self._table_section(tables, missing)
        lines += self._foreign_key_section(tables, dumped)
        lines += self._index_section(catalog, dumped)
        lines += self._function_section(catalog)
        lines += self._trigger_section(catalog, dumped)
        lines += self._policy_section(catalog, tables, dumped)
        return lines

    def _enum_section(self, catalog: CatalogSnapshot) -> list[str]:
        lines = self.section("ENUM TYPES")
        for enum in catalog.enums:
            labels = ", ".join(quote_literal(label) for label in enum.labels)
            lines += [
                "DO $$ BEGIN",
                f"  CREATE TYPE {self.qualified(enum.name)} AS ENUM ({labels});",
                "EXCEPTION WHEN duplicate_object THEN NULL;",
                "END $$;",
                "",
            ]
        return lines

    def _table_section(self, tables: list[TableCatalog], missing: list[str]) -> list[str]:
        lines: list[str] = []
        for name in missing:
            lines += [f"-- Table {name} not found in schema", ""]

        for table in tables:
            lines += [_TABLE_BANNER, f"-- Table: {self._schema}.{table.name}", _TABLE_BANNER]

            # Sequences referenced by serial-style defaults must exist first
            for column in table.columns:
                for sequence in _SEQUENCE_DEFAULT.findall(column.default or ""):
                    lines.append(f"CREATE SEQUENCE IF NOT EXISTS {sequence};")

            definitions = [self._column_definition(c) for c in table.columns]
            pk = table.primary_key()
            if pk is not None:
                definitions.append(
                    f"  CONSTRAINT {quote_ident(pk.name)} PRIMARY KEY ({self._column_list(pk.columns)})"
                )
            for unique in table.unique_constraints():
                definitions.append(
                    f"  CONSTRAINT {quote_ident(unique.name)} UNIQUE ({self._column_list(unique.columns)})"
                )

            lines.append(f"CREATE TABLE IF NOT EXISTS {self.qualified(table.name)} (")
            lines.append(",\n".join(definitions))
            lines += [");", ""]
        return lines

    def _column_definition(self, column: ColumnDescriptor) -> str:
        definition = f"  {quote_ident(column.name)} {column_type(column)}"
        if not column.is_nullable:
            definition += " NOT NULL"
        if column.default is not None:
            definition += f" DEFAULT {column.default}"
        return definition

    def _foreign_key_section(self, tables: list[TableCatalog], dumped: set[str]) -> list[str]:
        lines = self.section("FOREIGN KEYS")
        for table in tables:
            for fk in table.foreign_keys():
                lines += self._foreign_key_block(table.name, fk, dumped)
        lines.append("")
        return lines

    def _foreign_key_block(
        self, table: str, fk: ConstraintDescriptor, dumped: set[str]
    ) -> list[str]:
        ref_schema = fk.references_schema or self._schema
        statement = (
            f"ALTER TABLE {self.qualified(table)} ADD CONSTRAINT {quote_ident(fk.name)} "
            f"FOREIGN KEY ({self._column_list(fk.columns)}) "
            f"REFERENCES {self.qualified(fk.references_table or '', ref_schema)}"
            f"({self._column_list(fk.references_columns or ())}) ON DELETE CASCADE;"
        )
        in_dump = ref_schema == self._schema and fk.references_table in dumped
        handler = "EXCEPTION WHEN duplicate_object THEN NULL;"
        if not in_dump:
            # Referenced table lives outside the dump (e.g. the identity schema)
            handler = "EXCEPTION WHEN duplicate_object OR undefined_table THEN NULL;"
        return ["DO $$ BEGIN", f"  {statement}", handler, "END $$;"]

    def _index_section(self, catalog: CatalogSnapshot, dumped: set[str]) -> list[str]:
        lines = self.section("INDEXES")
        for index in catalog.indexes:
            if index.table not in dumped:
                continue
            definition = _INDEX_PREFIX.sub(r"CREATE \1INDEX IF NOT EXISTS ", index.definition)
            lines.append(f"{definition};")
        lines.append("")
        return lines

    def _function_section(self, catalog: CatalogSnapshot) -> list[str]:
        lines = self.section("DATABASE FUNCTIONS")
        for function in catalog.functions:
            lines += [f"-- Function: {function.name}", f"{function.definition.rstrip().rstrip(';')};", ""]
        lines.append("")
        return lines

    def _trigger_section(self, catalog: CatalogSnapshot, dumped: set[str]) -> list[str]:
        lines = self.section("TRIGGERS")
        for trigger in catalog.triggers:
            if trigger.table not in dumped:
                continue
            lines += [
                f"-- Trigger: {trigger.name} on {trigger.table}",
                f"DROP TRIGGER IF EXISTS {quote_ident(trigger.name)} ON {self.qualified(trigger.table)};",
                f"{trigger.definition};",
                "",
            ]
        lines.append("")
        return lines

    def _policy_section(
        self, catalog: CatalogSnapshot, tables: list[TableCatalog], dumped: set[str]
    ) -> list[str]:
        lines = self.section("ROW LEVEL SECURITY (RLS) POLICIES")
        for table in tables:
            lines.append(f"ALTER TABLE {self.qualified(table.name)} ENABLE ROW LEVEL SECURITY;")
        lines.append("")

        for policy in catalog.policies:
            if policy.table not in dumped:
                continue
            permissive = "PERMISSIVE" if policy.permissive == "PERMISSIVE" else "RESTRICTIVE"
            statement = (
                f"CREATE POLICY {quote_ident(policy.name)} ON {self.qualified(policy.table)}"
                f" AS {permissive} FOR {policy.command} TO {', '.join(policy.roles)}"
            )
            if policy.using:
                statement += f" USING ({policy.using})"
            if policy.with_check:
                statement += f" WITH CHECK ({policy.with_check})"
            lines += [
                f"DROP POLICY IF EXISTS {quote_ident(policy.name)} ON {self.qualified(policy.table)};",
                f"{statement};",
                "",
            ]
        lines.append("")
        return lines

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def insert_statement(self, table: str, columns: list[str], literals: list[str]) -> str:
        """One idempotent row insert (`ON CONFLICT DO NOTHING`)."""
        return (
            f"INSERT INTO {self.qualified(table)} ({self._column_list(columns)}) "
            f"VALUES ({', '.join(literals)}) ON CONFLICT DO NOTHING;"
        )

    @staticmethod
    def _column_list(columns: Iterable[str]) -> str:
        return ", ".join(quote_ident(c) for c in columns)
