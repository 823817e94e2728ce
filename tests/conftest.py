"""Shared fixtures: an in-memory DatabaseClient and stub auth collaborators."""

from collections.abc import Callable

import pytest

from db_snapshot.backup.auth import Authorizer
from db_snapshot.config.models import RegistryEntry
from db_snapshot.registry import TableRegistry

ADMIN_TOKEN = "admin-token"
USER_TOKEN = "user-token"


class FakeDatabase:
    """In-memory ``DatabaseClient``.

    Failures are injected two ways:

    - ``fail[(method, table)] = "message"`` makes every call of that method
      on that table raise.
    - ``row_rules[table] = fn`` rejects individual rows: ``fn(row)`` returns
      an error message or ``None``.  Batch inserts are all-or-nothing.
    """

    def __init__(self, tables: dict[str, list[dict]] | None = None) -> None:
        self.tables: dict[str, list[dict]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.fail: dict[tuple[str, str], str] = {}
        self.row_rules: dict[str, Callable[[dict], str | None]] = {}
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def _check(self, method: str, table: str) -> None:
        self.calls.append((method, table))
        message = self.fail.get((method, table))
        if message:
            raise RuntimeError(message)

    def _reject(self, table: str, row: dict) -> None:
        rule = self.row_rules.get(table)
        if rule is not None:
            message = rule(row)
            if message:
                raise RuntimeError(message)

    def calls_for(self, method: str) -> list[str]:
        return [table for m, table in self.calls if m == method]

    async def select(self, table, columns, filters=None, order_by=None, limit=None, offset=None):
        self._check("select", table)
        rows = [
            r for r in self.tables.get(table, [])
            if all(r.get(k) == v for k, v in (filters or {}).items())
        ]
        start = offset or 0
        end = start + limit if limit is not None else None
        return [dict(r) for r in rows[start:end]]

    async def insert(self, table, data):
        self._check("insert", table)
        self._reject(table, data)
        self.tables.setdefault(table, []).append(dict(data))
        return dict(data)

    async def insert_many(self, table, rows):
        self._check("insert_many", table)
        for row in rows:
            self._reject(table, row)
        self.tables.setdefault(table, []).extend(dict(r) for r in rows)
        return len(rows)

    async def upsert(self, table, row, on_conflict="id"):
        self._check("upsert", table)
        self._reject(table, row)
        existing = self.tables.setdefault(table, [])
        for i, current in enumerate(existing):
            if current.get(on_conflict) == row.get(on_conflict):
                existing[i] = {**current, **row}
                return
        existing.append(dict(row))

    async def update(self, table, data, filters):
        self._check("update", table)
        for row in self.tables.get(table, []):
            if all(row.get(k) == v for k, v in filters.items()):
                row.update(data)
                return dict(row)
        return {}

    async def delete_all(self, table):
        self._check("delete_all", table)
        count = len(self.tables.get(table, []))
        self.tables[table] = []
        return count

    async def execute(self, sql, params=None):
        self._check("execute", "")

    async def close(self):
        self.closed = True


class StaticIdentity:
    """Token -> user id lookup."""

    def __init__(self, users: dict[str, str]) -> None:
        self._users = users

    async def verify_token(self, token):
        return self._users.get(token)


class StaticRoles:
    def __init__(self, admins: set[str]) -> None:
        self._admins = admins

    async def is_admin(self, user_id):
        return user_id in self._admins


def small_registry() -> TableRegistry:
    """profiles (identity-owned) <- authors <- books."""
    return TableRegistry.from_entries(
        [
            RegistryEntry(name="profiles", identity_owned=True, identity_column="id"),
            RegistryEntry(name="authors", depends_on=["profiles"]),
            RegistryEntry(name="books", depends_on=["authors"]),
        ]
    )


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def registry() -> TableRegistry:
    return small_registry()


@pytest.fixture
def authorizer() -> Authorizer:
    """Admin ``u-admin`` behind ADMIN_TOKEN, plain user ``u-user`` behind USER_TOKEN."""
    return Authorizer(
        StaticIdentity({ADMIN_TOKEN: "u-admin", USER_TOKEN: "u-user"}),
        StaticRoles({"u-admin"}),
        emergency_phrase="confirm",
    )
