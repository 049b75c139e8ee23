"""
Shared test fixtures.

Environment variables are set here, before any test module imports app code,
because app.db creates the Supabase clients at import time.

FakeSupabase is an in-memory stand-in for the supabase-py query builder. It
implements the subset of the PostgREST chain the app uses:
    table().select/insert/update/upsert/delete
           .eq/neq/in_/ilike/order/limit
           .execute() -> object with .data
Column projections in select() are ignored (full rows are returned).
Unique constraints mirror the database migrations so conflict paths can be
exercised.
"""

import copy
import os
import re
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

os.environ["SUPABASE_URL"] = "https://test.supabase.co"
# supabase-py rejects keys that are not JWT-shaped
os.environ["SUPABASE_KEY"] = "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoiYW5vbiJ9.test"
os.environ["SUPABASE_SERVICE_KEY"] = "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoic2VydmljZV9yb2xlIn0.test"
os.environ["INBOUND_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ.pop("SUPABASE_JWT_SECRET", None)
os.environ.pop("EMAIL_PROVIDER", None)
os.environ.pop("VENDOR_REGISTRY_PATH", None)


USER_ID = "abcd1234-0000-0000-0000-000000000000"
OTHER_USER_ID = "ffff9999-0000-0000-0000-000000000000"

UNIQUE_KEYS: dict[str, list[tuple[str, ...]]] = {
    "orders": [("account_id", "vendor", "order_number")],
    "inventory": [("order_id", "brand", "model", "color", "size")],
    "emails": [("account_id", "content_hash")],
    "vendor_catalog": [("cache_key",)],
}


class UniqueViolation(Exception):
    pass


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._action = "select"
        self._payload = None
        self._on_conflict: tuple[str, ...] = ()
        self._filters: list = []
        self._order: list[tuple[str, bool]] = []
        self._limit = None

    # -- actions ------------------------------------------------------------

    def select(self, *columns, **kwargs):
        self._action = "select"
        return self

    def insert(self, payload):
        self._action = "insert"
        self._payload = payload
        return self

    def update(self, payload: dict):
        self._action = "update"
        self._payload = payload
        return self

    def upsert(self, payload, on_conflict: str = ""):
        self._action = "upsert"
        self._payload = payload
        self._on_conflict = tuple(c.strip() for c in on_conflict.split(",") if c.strip())
        return self

    def delete(self):
        self._action = "delete"
        return self

    # -- filters ------------------------------------------------------------

    def eq(self, column: str, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column: str, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column: str, values):
        allowed = list(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def ilike(self, column: str, pattern: str):
        regex = re.compile("^" + ".*".join(re.escape(p) for p in pattern.split("%")) + "$", re.I)
        self._filters.append(lambda row: bool(regex.match(str(row.get(column) or ""))))
        return self

    def order(self, column: str, desc: bool = False):
        self._order.append((column, desc))
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    # -- execution ----------------------------------------------------------

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self):
        for hook in list(self._db.hooks):
            hook(self._table, self._action)

        rows = self._db.tables.setdefault(self._table, [])
        if self._action == "select":
            found = [r for r in rows if self._matches(r)]
            for column, desc in reversed(self._order):
                found.sort(key=lambda r: (r.get(column) is None, str(r.get(column))), reverse=desc)
            if self._limit is not None:
                found = found[: self._limit]
            return SimpleNamespace(data=copy.deepcopy(found))

        if self._action == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            new_rows = [self._db._new_row(self._table, p) for p in payload]
            self._db._check_unique(self._table, new_rows)
            rows.extend(new_rows)
            return SimpleNamespace(data=copy.deepcopy(new_rows))

        if self._action == "update":
            changed = []
            for row in rows:
                if self._matches(row):
                    row.update(copy.deepcopy(self._payload))
                    changed.append(row)
            return SimpleNamespace(data=copy.deepcopy(changed))

        if self._action == "upsert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            out = []
            for p in payload:
                existing = next(
                    (r for r in rows if all(r.get(c) == p.get(c) for c in self._on_conflict)),
                    None,
                ) if self._on_conflict else None
                if existing is not None:
                    existing.update(copy.deepcopy(p))
                    out.append(existing)
                else:
                    row = self._db._new_row(self._table, p)
                    self._db._check_unique(self._table, [row])
                    rows.append(row)
                    out.append(row)
            return SimpleNamespace(data=copy.deepcopy(out))

        if self._action == "delete":
            removed = [r for r in rows if self._matches(r)]
            self._db.tables[self._table] = [r for r in rows if not self._matches(r)]
            return SimpleNamespace(data=copy.deepcopy(removed))

        raise AssertionError(f"Unsupported action {self._action}")


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        # Called as hook(table, action) before every execute(); tests use
        # these to inject failures or concurrent writes.
        self.hooks: list = []
        self._seq = 0

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def seed(self, table: str, *rows: dict) -> list[dict]:
        created = [self._new_row(table, r) for r in rows]
        self.tables.setdefault(table, []).extend(created)
        return copy.deepcopy(created)

    def rows(self, table: str, **where) -> list[dict]:
        return [
            copy.deepcopy(r)
            for r in self.tables.get(table, [])
            if all(r.get(k) == v for k, v in where.items())
        ]

    def _new_row(self, table: str, payload: dict) -> dict:
        self._seq += 1
        row = copy.deepcopy(payload)
        row.setdefault("id", str(uuid.uuid4()))
        stamp = datetime(2026, 1, 1, tzinfo=timezone.utc).replace(microsecond=self._seq).isoformat()
        row.setdefault("created_at", stamp)
        row.setdefault("updated_at", stamp)
        return row

    def _check_unique(self, table: str, new_rows: list[dict]) -> None:
        for columns in UNIQUE_KEYS.get(table, []):
            seen = {
                tuple(r.get(c) for c in columns)
                for r in self.tables.get(table, [])
            }
            for row in new_rows:
                key = tuple(row.get(c) for c in columns)
                if None in key:
                    continue
                if key in seen:
                    raise UniqueViolation(
                        f"duplicate key value violates unique constraint on {table}{columns}"
                    )
                seen.add(key)


@pytest.fixture()
def fake_db():
    return FakeSupabase()


@pytest.fixture(autouse=True)
def _fresh_registry_and_cache():
    """Each test starts with the built-in vendor table and an empty catalog cache."""
    from app.services import catalog_cache, catalog_client, vendor_registry

    vendor_registry.reset_registry()
    catalog_cache._cache = None
    catalog_client._client = None
    yield
    vendor_registry.reset_registry()
    catalog_cache._cache = None
    catalog_client._client = None


@pytest.fixture()
def auth_headers():
    """Authenticate requests as USER_ID through the Supabase Auth fallback path."""
    with patch("app.auth.SUPABASE_JWT_SECRET", None), patch("app.auth.supabase") as mock_auth_sb:
        mock_auth_sb.auth.get_user.return_value = Mock(user=Mock(id=USER_ID))
        yield {"Authorization": "Bearer test-token"}


@pytest.fixture()
def api(fake_db):
    """TestClient with every router's supabase_admin pointed at fake_db."""
    from fastapi.testclient import TestClient
    from app.main import app

    with patch("app.routers.email_intake.supabase_admin", fake_db), \
         patch("app.routers.orders.supabase_admin", fake_db), \
         patch("app.routers.inventory.supabase_admin", fake_db), \
         patch("app.auth.supabase_admin", fake_db):
        yield TestClient(app)
