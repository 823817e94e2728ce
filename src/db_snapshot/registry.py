"""Declarative table registry with a single dependency DAG.

Every ordering the engine needs (dump order, insert order, delete order) is
derived from one registry instead of parallel hand-maintained lists.  Ranks
are computed once by a stable topological sort: declaration order breaks
ties, so a registry that is already in a valid order keeps it.

Usage:
    from db_snapshot.registry import TableRegistry, DEFAULT_ENTRIES

    registry = TableRegistry.from_entries(DEFAULT_ENTRIES)
    registry.forward()     # parents first (create / insert)
    registry.deletable()   # children first, identity-owned tables removed

    # Fold in the live FK graph from introspection
    registry = registry.with_foreign_keys(catalog.foreign_key_edges())
"""

import logging
from collections.abc import Iterable, Iterator

from pydantic import BaseModel, ConfigDict, Field

from db_snapshot.config.models import RegistryEntry

logger = logging.getLogger(__name__)


class TableDescriptor(BaseModel):
    """A registry table with its computed dependency rank."""

    model_config = ConfigDict(frozen=True)

    name: str
    rank: int
    identity_owned: bool = False
    identity_column: str = "user_id"
    restorable: bool = True
    depends_on: tuple[str, ...] = Field(default_factory=tuple)


def _entry(
    name: str,
    *depends_on: str,
    identity_owned: bool = False,
    identity_column: str = "user_id",
    restorable: bool = True,
) -> RegistryEntry:
    return RegistryEntry(
        name=name,
        depends_on=list(depends_on),
        identity_owned=identity_owned,
        identity_column=identity_column,
        restorable=restorable,
    )


# Built-in ERP table set.  Identity-owned tables reference accounts in the
# external identity store and are never bulk-deleted.  Non-restorable tables
# appear in the SQL export only: JSON snapshots and restores leave them alone.
DEFAULT_ENTRIES: list[RegistryEntry] = [
    # Identity-backed tables
    _entry("profiles", identity_owned=True, identity_column="id"),
    _entry("user_roles", "profiles", identity_owned=True),
    _entry("user_permissions", "profiles", identity_owned=True),
    # HR and projects
    _entry("employees", "profiles"),
    _entry("employee_contracts", "employees"),
    _entry("projects"),
    _entry("team_members", "projects", "employees"),
    _entry("tasks", "projects", "employees"),
    _entry("project_items", "projects"),
    _entry("project_kpis", "projects"),
    _entry("client_requirements", "projects"),
    _entry("materials", "projects"),
    # Organization charts
    _entry("organization_charts"),
    _entry("org_chart_positions", "organization_charts", "employees"),
    _entry("org_chart_connections", "organization_charts", "org_chart_positions"),
    # Inventory and assets
    _entry("brands"),
    _entry("product_categories"),
    _entry("product_groups", "product_categories"),
    _entry("warehouses"),
    _entry("inventory_items", "brands", "product_categories", "product_groups", "warehouses"),
    _entry("asset_master_data", "inventory_items", "warehouses"),
    _entry("asset_allocations", "asset_master_data", "employees", "projects"),
    _entry("asset_location_history", "asset_master_data", "warehouses"),
    _entry("asset_disposals", "asset_master_data"),
    _entry("asset_deletion_history", "asset_master_data"),
    _entry("depreciation_schedules", "asset_master_data"),
    _entry("maintenance_records", "asset_master_data"),
    _entry("goods_receipt_notes", "warehouses"),
    _entry("grn_items", "goods_receipt_notes", "inventory_items"),
    _entry("goods_issue_notes", "warehouses"),
    _entry("gin_items", "goods_issue_notes", "inventory_items"),
    _entry("handover_slips", "asset_allocations"),
    # Accounting
    _entry("contracts", "projects"),
    _entry("contract_guarantees", "contracts"),
    _entry("accounting_transactions", "contracts", "projects"),
    # Notifications and engine bookkeeping
    _entry("notifications", "profiles"),
    # Schedule row with the scheduler token
    _entry("backup_settings", restorable=False),
]


def _topological_sort(names: list[str], dependencies: dict[str, set[str]]) -> list[str]:
    """Stable topological sort: parents first, ties kept in declaration order.

    Cycles are broken at the back edge (the table is emitted where the cycle
    is first detected) and logged.
    """
    relevant = {n: dependencies.get(n, set()) & set(names) for n in names}

    sorted_names: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(name: str) -> None:
        if name in visited:
            return
        if name in visiting:
            logger.warning(f"Dependency cycle involving '{name}'; breaking at back edge")
            return
        visiting.add(name)
        # Visit dependencies in declaration order for a deterministic result
        for dep in names:
            if dep in relevant[name] and dep != name:
                visit(dep)
        visiting.discard(name)
        visited.add(name)
        sorted_names.append(name)

    for name in names:
        visit(name)

    return sorted_names


class TableRegistry:
    """Ordered, rank-annotated set of tables handled by the engine."""

    def __init__(self, tables: Iterable[TableDescriptor]) -> None:
        self._tables: list[TableDescriptor] = sorted(tables, key=lambda t: t.rank)
        self._by_name: dict[str, TableDescriptor] = {t.name: t for t in self._tables}

    @classmethod
    def from_entries(cls, entries: Iterable[RegistryEntry]) -> "TableRegistry":
        """Build a registry and compute ranks from declared dependencies.

        Dependencies naming tables outside the registry are ignored.
        Duplicate names raise ``ValueError``.
        """
        entries = list(entries)
        names = [e.name for e in entries]
        if len(set(names)) != len(names):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate registry tables: {', '.join(duplicates)}")

        dependencies = {e.name: set(e.depends_on) for e in entries}
        order = _topological_sort(names, dependencies)
        rank = {name: i for i, name in enumerate(order)}

        return cls(
            TableDescriptor(
                name=e.name,
                rank=rank[e.name],
                identity_owned=e.identity_owned,
                identity_column=e.identity_column,
                restorable=e.restorable,
                depends_on=tuple(d for d in e.depends_on if d in rank and d != e.name),
            )
            for e in entries
        )

    def with_foreign_keys(self, foreign_keys: Iterable[tuple[str, str]]) -> "TableRegistry":
        """Return a registry whose DAG also includes live FK edges.

        Args:
            foreign_keys: ``(child_table, parent_table)`` pairs, typically
                from ``CatalogSnapshot.foreign_key_edges()``.
        """
        extra: dict[str, set[str]] = {}
        for child, parent in foreign_keys:
            if child != parent and child in self and parent in self:
                extra.setdefault(child, set()).add(parent)

        entries = [
            RegistryEntry(
                name=t.name,
                depends_on=list(dict.fromkeys([*t.depends_on, *sorted(extra.get(t.name, set()))])),
                identity_owned=t.identity_owned,
                identity_column=t.identity_column,
                restorable=t.restorable,
            )
            for t in self._tables
        ]
        return TableRegistry.from_entries(entries)

    # ------------------------------------------------------------------
    # Orderings
    # ------------------------------------------------------------------

    def forward(self) -> list[TableDescriptor]:
        """Parent-before-child order (creation, insertion, dumping)."""
        return list(self._tables)

    def reverse(self) -> list[TableDescriptor]:
        """Child-before-parent order."""
        return list(reversed(self._tables))

    def restorable(self) -> list[TableDescriptor]:
        """Forward order of the tables captured in snapshots and restored."""
        return [t for t in self._tables if t.restorable]

    def deletable(self) -> list[TableDescriptor]:
        """Delete-phase order: restorable tables, children first, identity-owned removed."""
        return [t for t in self.reverse() if t.restorable and not t.identity_owned]

    def names(self) -> list[str]:
        """Table names in forward order."""
        return [t.name for t in self._tables]

    def get(self, name: str) -> TableDescriptor | None:
        return self._by_name.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[TableDescriptor]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)


def default_registry() -> TableRegistry:
    """Registry for the built-in ERP table set."""
    return TableRegistry.from_entries(DEFAULT_ENTRIES)
