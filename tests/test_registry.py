"""Tests for the table registry and its derived orderings."""

import pytest

from db_snapshot.config.models import RegistryEntry
from db_snapshot.registry import DEFAULT_ENTRIES, TableRegistry, default_registry


def _names(descriptors) -> list[str]:
    return [d.name for d in descriptors]


class TestOrderings:
    """forward / reverse / deletable all come from one DAG."""

    def test_forward_puts_parents_first(self, registry):
        assert _names(registry.forward()) == ["profiles", "authors", "books"]

    def test_reverse_is_forward_reversed(self, registry):
        assert _names(registry.reverse()) == list(reversed(_names(registry.forward())))

    def test_deletable_excludes_identity_owned(self, registry):
        assert _names(registry.deletable()) == ["books", "authors"]

    def test_declaration_order_kept_when_already_valid(self):
        registry = TableRegistry.from_entries(
            [RegistryEntry(name="a"), RegistryEntry(name="b"), RegistryEntry(name="c")]
        )
        assert registry.names() == ["a", "b", "c"]

    def test_dependency_declared_later_moves_first(self):
        registry = TableRegistry.from_entries(
            [RegistryEntry(name="child", depends_on=["parent"]), RegistryEntry(name="parent")]
        )
        assert registry.names() == ["parent", "child"]

    def test_unknown_dependency_ignored(self):
        registry = TableRegistry.from_entries([RegistryEntry(name="a", depends_on=["elsewhere"])])
        assert registry.get("a").depends_on == ()

    def test_cycle_does_not_hang(self):
        registry = TableRegistry.from_entries(
            [RegistryEntry(name="a", depends_on=["b"]), RegistryEntry(name="b", depends_on=["a"])]
        )
        assert sorted(registry.names()) == ["a", "b"]

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate registry tables: a"):
            TableRegistry.from_entries([RegistryEntry(name="a"), RegistryEntry(name="a")])


class TestForeignKeyFolding:
    """Live FK edges refine the declared order."""

    def test_fk_edge_reorders(self):
        registry = TableRegistry.from_entries([RegistryEntry(name="orders"), RegistryEntry(name="customers")])
        folded = registry.with_foreign_keys([("orders", "customers")])
        assert folded.names() == ["customers", "orders"]

    def test_edges_outside_registry_ignored(self, registry):
        folded = registry.with_foreign_keys([("books", "users"), ("books", "books")])
        assert folded.names() == registry.names()

    def test_identity_flags_preserved(self, registry):
        folded = registry.with_foreign_keys([])
        assert folded.get("profiles").identity_owned
        assert folded.get("profiles").identity_column == "id"

    def test_restorable_flag_preserved(self):
        registry = TableRegistry.from_entries([RegistryEntry(name="settings", restorable=False)])
        assert not registry.with_foreign_keys([]).get("settings").restorable


class TestDefaultRegistry:
    """Built-in ERP table set."""

    def test_every_entry_present(self):
        registry = default_registry()
        assert len(registry) == len(DEFAULT_ENTRIES)
        assert "asset_master_data" in registry

    def test_every_dependency_precedes_its_dependent(self):
        registry = default_registry()
        for descriptor in registry:
            for parent in descriptor.depends_on:
                assert registry.get(parent).rank < descriptor.rank, (descriptor.name, parent)

    def test_identity_tables_never_deleted(self):
        deletable = set(_names(default_registry().deletable()))
        assert not deletable & {"profiles", "user_roles", "user_permissions"}

    def test_schedule_table_is_export_only(self):
        registry = default_registry()
        assert "backup_settings" in registry.names()
        assert "backup_settings" not in _names(registry.restorable())
        assert "backup_settings" not in _names(registry.deletable())
