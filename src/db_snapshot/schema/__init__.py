"""Catalog introspection and idempotent DDL synthesis.

Usage:
    from db_snapshot.schema import SchemaIntrospector, DdlSynthesizer

    async with SchemaIntrospector(url) as introspector:
        catalog = await introspector.introspect(registry.names())
    lines = DdlSynthesizer().schema_sections(catalog, registry.names())
"""

from db_snapshot.schema.ddl import DdlSynthesizer, column_type
from db_snapshot.schema.introspector import SchemaIntrospector
from db_snapshot.schema.models import (
    CatalogSnapshot,
    ColumnDescriptor,
    ConnectionResult,
    ConstraintDescriptor,
    ConstraintKind,
    EnumType,
    FunctionDescriptor,
    IndexDescriptor,
    PolicyDescriptor,
    TableCatalog,
    TriggerDescriptor,
)

__all__ = [
    "SchemaIntrospector",
    "DdlSynthesizer",
    "column_type",
    "CatalogSnapshot",
    "ColumnDescriptor",
    "ConnectionResult",
    "ConstraintDescriptor",
    "ConstraintKind",
    "EnumType",
    "FunctionDescriptor",
    "IndexDescriptor",
    "PolicyDescriptor",
    "TableCatalog",
    "TriggerDescriptor",
]
