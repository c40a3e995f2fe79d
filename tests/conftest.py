"""
Shared pytest fixtures for the order repository tests.

``fake_db`` swaps the connection pool used by the storage backend for an
in-memory stand-in that understands the handful of statements
PostgresOrderStorage issues. Search results are canned: set
``fake_db.select_rows`` / ``fake_db.count`` before calling ``query``.
"""

import re
from datetime import datetime
from decimal import Decimal

import pytest

import storage.postgres_storage as postgres_storage


class FakeCursor:
    def __init__(self, db):
        self.db = db
        self._result: list = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.db.statements.append((" ".join(sql.split()), params))
        if self.db.fail_on and self.db.fail_on in sql:
            raise self.db.error
        self._result = self.db.run(sql, params or {})

    def executemany(self, sql, seq):
        for params in seq:
            self.execute(sql, params)

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result)


class FakeConnection:
    def __init__(self, db):
        self.db = db
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return FakeCursor(self.db)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakeDatabase:
    """Just enough of PostgreSQL for the storage tests."""

    def __init__(self, orders="orders", relations="order_relations", indexed="order_indexed_fields"):
        self.orders_table = orders
        self.side_tables = {relations: [], indexed: []}
        self.orders: dict[int, dict] = {}
        self.next_id = 1
        self.statements: list = []
        self.select_rows: list = []
        self.count = 0
        self.fail_on = None
        self.error = RuntimeError("driver failure")
        self.connection = FakeConnection(self)
        self.released = 0

    def triples(self, table):
        return sorted((o, k, v) for o, k, v in self.side_tables[table])

    @staticmethod
    def check_bindings(text, params):
        """Fail the way PostgreSQL or psycopg2 would on a broken statement."""
        missing = set(re.findall(r"%\((\w+)\)s", text)) - set(params)
        if missing:
            raise KeyError(f"Unbound placeholders: {sorted(missing)}")
        if "IN ()" in text:
            raise AssertionError(f"Empty IN list: {text}")
        if text.count("(") != text.count(")"):
            raise AssertionError(f"Unbalanced parentheses: {text}")

    def run(self, sql, params):
        text = " ".join(sql.split())
        self.check_bindings(text, params)
        if text.startswith(f"INSERT INTO {self.orders_table} "):
            order_id = self.next_id
            self.next_id += 1
            self.orders[order_id] = dict(params, id=order_id)
            return [(order_id,)]
        if text.startswith(f"UPDATE {self.orders_table} "):
            row = self.orders[params["id"]]
            row.update({k: v for k, v in params.items() if k != "id"})
            return []
        for table, triples in self.side_tables.items():
            if text.startswith(f"DELETE FROM {table} "):
                triples[:] = [t for t in triples if t[0] != params["order_id"]]
                return []
            if text.startswith(f"INSERT INTO {table} "):
                triples.append((params["order_id"], params["rel_key"], params["rel_value"]))
                return []
        if "value" in params and text.startswith(f"SELECT * FROM {self.orders_table} WHERE id = "):
            row = self.orders.get(params["value"])
            return [row] if row else []
        if "value" in params and text.startswith(f"SELECT * FROM {self.orders_table} WHERE order_no = "):
            return [r for r in self.orders.values() if r["order_no"] == params["value"]]
        if text.startswith(f"SELECT COUNT(*) FROM {self.orders_table}"):
            return [{"count": self.count}]
        if text.startswith(f"SELECT * FROM {self.orders_table}"):
            return list(self.select_rows)
        raise AssertionError(f"Unexpected SQL: {text}")


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeDatabase()

    def release(conn):
        db.released += 1

    monkeypatch.setattr(postgres_storage, "get_connection", lambda: db.connection)
    monkeypatch.setattr(postgres_storage, "release_connection", release)
    return db


@pytest.fixture
def fixed_clock():
    """A clock that returns successive, known timestamps."""
    ticks = iter([
        datetime(2024, 3, 1, 10, 0, 0, 123456),
        datetime(2024, 3, 2, 11, 30, 0),
        datetime(2024, 3, 3, 12, 45, 0),
        datetime(2024, 3, 4, 8, 15, 0),
    ])
    return lambda: next(ticks)


@pytest.fixture
def order_row():
    """A row as RealDictCursor returns it."""
    return {
        "id": 7,
        "order_no": "SO-1001",
        "type": "sale",
        "status": "paid",
        "amount": Decimal("199.90"),
        "currency": "CNY",
        "buyer_id": "42",
        "attributes_json": '{"note": "gift wrap", "items": 3}',
        "relations_json": '{"tag": ["vip", "promo"], "store": "sh-01"}',
        "indexed_fields_json": '{"channel": "app"}',
        "created_at": datetime(2024, 1, 5, 9, 0, 0),
        "updated_at": datetime(2024, 1, 6, 18, 30, 0),
    }
