"""Pydantic models for catalog introspection.

This module contains schema-domain models:
- Introspection models: EnumType, ColumnDescriptor, ConstraintDescriptor,
  IndexDescriptor, FunctionDescriptor, TriggerDescriptor, PolicyDescriptor,
  TableCatalog, CatalogSnapshot
- Connection result: ConnectionResult

All introspection models are frozen: they are derived once per
introspection and never change within a run.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ============================================================================
# Connection Result
# ============================================================================


class ConnectionResult(BaseModel):
    """Result of ``connect()``.

    Example:
        >>> result = ConnectionResult(success=True, profile_name="dev")
        >>> result.missing_tables
        []
    """

    success: bool
    profile_name: str | None = None
    existing_tables: list[str] = Field(default_factory=list)
    missing_tables: list[str] = Field(default_factory=list)
    error: str | None = None


# ============================================================================
# Schema Introspection Models
# ============================================================================


class EnumType(_Frozen):
    """A user-defined enum type with its labels in sort order."""

    name: str
    labels: tuple[str, ...] = ()


class ColumnDescriptor(_Frozen):
    """Schema for a database column.

    ``data_type`` is the ``information_schema`` type (``ARRAY``,
    ``USER-DEFINED``, ``character varying`` ...) and ``udt_name`` the
    underlying type name (``_text``, ``asset_status``, ``varchar`` ...).

    Example:
        >>> col = ColumnDescriptor(name="id", data_type="uuid", udt_name="uuid")
        >>> col.is_nullable
        True
    """

    name: str
    data_type: str
    udt_name: str
    is_nullable: bool = True
    default: str | None = None
    character_maximum_length: int | None = None
    numeric_precision: int | None = None
    numeric_scale: int | None = None

    @property
    def is_array(self) -> bool:
        return self.data_type == "ARRAY"

    @property
    def is_json(self) -> bool:
        return self.udt_name in ("json", "jsonb")


class ConstraintKind(str, Enum):
    PRIMARY_KEY = "primary_key"
    UNIQUE = "unique"
    FOREIGN_KEY = "foreign_key"


class ConstraintDescriptor(_Frozen):
    """Primary key, unique or foreign key constraint of one table."""

    name: str
    kind: ConstraintKind
    table: str
    columns: tuple[str, ...]
    references_schema: str | None = None
    references_table: str | None = None
    references_columns: tuple[str, ...] | None = None


class IndexDescriptor(_Frozen):
    """Index definition as returned by ``pg_get_indexdef``."""

    name: str
    table: str
    definition: str


class FunctionDescriptor(_Frozen):
    """Function or procedure definition as returned by ``pg_get_functiondef``."""

    name: str
    definition: str


class TriggerDescriptor(_Frozen):
    """Non-internal trigger definition as returned by ``pg_get_triggerdef``."""

    name: str
    table: str
    definition: str


class PolicyDescriptor(_Frozen):
    """Row-level-security policy from ``pg_policies``."""

    name: str
    table: str
    permissive: str = "PERMISSIVE"
    command: str = "ALL"
    roles: tuple[str, ...] = ("public",)
    using: str | None = None
    with_check: str | None = None


class TableCatalog(_Frozen):
    """Catalog metadata for a single table."""

    name: str
    columns: tuple[ColumnDescriptor, ...] = ()
    constraints: tuple[ConstraintDescriptor, ...] = ()

    @property
    def exists(self) -> bool:
        return bool(self.columns)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> ColumnDescriptor | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def primary_key(self) -> ConstraintDescriptor | None:
        for constraint in self.constraints:
            if constraint.kind is ConstraintKind.PRIMARY_KEY:
                return constraint
        return None

    def unique_constraints(self) -> list[ConstraintDescriptor]:
        return [c for c in self.constraints if c.kind is ConstraintKind.UNIQUE]

    def foreign_keys(self) -> list[ConstraintDescriptor]:
        return [c for c in self.constraints if c.kind is ConstraintKind.FOREIGN_KEY]


class CatalogSnapshot(_Frozen):
    """Everything one introspection run captured.

    ``tables`` preserves the order in which tables were requested.
    ``errors`` holds one message per artifact class that could not be read;
    the matching collection is empty in that case.
    """

    schema_name: str = "public"
    enums: tuple[EnumType, ...] = ()
    tables: tuple[TableCatalog, ...] = ()
    indexes: tuple[IndexDescriptor, ...] = ()
    functions: tuple[FunctionDescriptor, ...] = ()
    triggers: tuple[TriggerDescriptor, ...] = ()
    policies: tuple[PolicyDescriptor, ...] = ()
    errors: tuple[str, ...] = ()

    def table(self, name: str) -> TableCatalog | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def foreign_key_edges(self) -> list[tuple[str, str]]:
        """``(child, parent)`` pairs for every foreign key in the snapshot."""
        edges: list[tuple[str, str]] = []
        for table in self.tables:
            for fk in table.foreign_keys():
                if fk.references_table:
                    edges.append((table.name, fk.references_table))
        return edges
