"""Full SQL export: schema sections followed by idempotent data inserts."""

import logging
from datetime import datetime, timezone
from typing import Protocol

from pydantic import BaseModel, Field

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.backup.paginator import fetch_all_rows
from db_snapshot.backup.snapshot import snapshot_timestamp
from db_snapshot.backup.values import encode_row_sql
from db_snapshot.config.models import SnapshotSettings
from db_snapshot.outcome import Err
from db_snapshot.registry import TableRegistry
from db_snapshot.schema.ddl import DdlSynthesizer
from db_snapshot.schema.models import CatalogSnapshot

logger = logging.getLogger(__name__)


class CatalogSource(Protocol):
    """Anything that can introspect a list of tables (an open ``SchemaIntrospector``)."""

    async def introspect(self, tables: list[str]) -> CatalogSnapshot: ...


class SqlExport(BaseModel):
    """A generated SQL document and the problems met while building it."""

    file_name: str
    content: str
    errors: list[str] = Field(default_factory=list)


def _column_order(rows: list[dict], catalog_columns: list[str]) -> list[str]:
    """Catalog column order, else the union of row keys in first-seen order."""
    if catalog_columns:
        return catalog_columns
    seen: dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)


async def export_sql(
    adapter: DatabaseClient,
    introspector: CatalogSource,
    registry: TableRegistry,
    settings: SnapshotSettings,
) -> SqlExport:
    """Build the full SQL document for every registry table.

    Table order comes from the registry with the live foreign keys folded
    in, so every referenced table is created and filled before the tables
    that reference it.

    Args:
        adapter: Source of row data.
        introspector: Open catalog source.
        registry: Tables to export.
        settings: Page size, schema name and file prefix.
    """
    now = datetime.now(timezone.utc)
    errors: list[str] = []

    catalog = await introspector.introspect(registry.names())
    errors.extend(catalog.errors)
    ordered = registry.with_foreign_keys(catalog.foreign_key_edges())
    order = ordered.names()

    synth = DdlSynthesizer(settings.schema_name)
    lines = synth.header(now.isoformat())
    lines += synth.schema_sections(catalog, order)
    lines += synth.data_header()

    for table in order:
        table_catalog = catalog.table(table)
        if table_catalog is not None and not table_catalog.exists:
            # Not in the database: nothing to read, already noted in the schema sections
            continue

        outcome = await fetch_all_rows(adapter, table, settings.page_size)
        if isinstance(outcome, Err):
            errors.append(outcome.error)
            comment = " ".join(outcome.error.removeprefix("Error ").split())
            lines.append(f"-- ERROR {comment}")
            rows: list[dict] = []
        else:
            rows = outcome.value

        lines.append(f"-- Data: {table} ({len(rows)} records)")
        if rows:
            column_names = table_catalog.column_names if table_catalog else []
            columns = {c.name: c for c in table_catalog.columns} if table_catalog else {}
            order_columns = _column_order(rows, column_names)
            for row in rows:
                literals = encode_row_sql(row, order_columns, columns)
                lines.append(synth.insert_statement(table, order_columns, literals))
        lines.append("")

    lines += synth.footer()

    file_name = f"{settings.export_prefix}-{snapshot_timestamp(now)}.sql"
    logger.info(f"SQL export {file_name}: {len(lines)} lines, {len(errors)} errors")
    return SqlExport(file_name=file_name, content="\n".join(lines), errors=errors)
