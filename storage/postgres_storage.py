"""
storage/postgres_storage.py
---------------------------
PostgreSQL backend for orders.
All SQL touching the orders table and its two key-value side tables lives here.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Mapping, Optional, Union

from config import ORDERS_TABLE, ORDER_RELATIONS_TABLE, ORDER_INDEXED_TABLE
from db.connection import dict_cursor, get_connection, release_connection
from models.order import OrderRecord, flatten_key_values, format_timestamp, to_datetime, to_kv_text
from models.order_page import OrderPage
from models.order_query import OrderQuery
from storage.base import OrderStorage
from storage.query_compiler import OrderQueryCompiler
from utils.logger import get_logger

logger = get_logger(__name__)


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_json_map(data: Mapping) -> str:
    """Serialize a map for one of the JSON text columns."""
    return json.dumps(dict(data or {}), ensure_ascii=False, default=_json_default)


def decode_json_map(payload: Optional[str]) -> dict:
    """
    Decode a JSON text column.
    Empty, malformed or non-object payloads decode to an empty dict.
    """
    if payload is None or payload == "":
        return {}
    if isinstance(payload, dict):
        return payload
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed JSON column value")
        return {}
    return data if isinstance(data, dict) else {}


class PostgresOrderStorage(OrderStorage):
    """
    Stores orders in PostgreSQL through the shared connection pool.

    Each save runs on a single connection and commits once, so the main
    row and both side tables change together. Concurrent saves of the same
    order are last-writer-wins.
    """

    def __init__(
        self,
        orders_table: str = ORDERS_TABLE,
        relations_table: str = ORDER_RELATIONS_TABLE,
        indexed_table: str = ORDER_INDEXED_TABLE,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.compiler = OrderQueryCompiler(orders_table, relations_table, indexed_table)
        self.orders_table = self.compiler.orders_table
        self.relations_table = self.compiler.relations_table
        self.indexed_table = self.compiler.indexed_table
        self.clock = clock or datetime.now

    # ── WRITE ─────────────────────────────────────────────

    def save(self, record: OrderRecord) -> OrderRecord:
        """
        Insert a new order or update an existing one.

        Args:
            record: The order to persist. Without an id it is inserted.

        Returns:
            The record with its id assigned and ``updated_at`` refreshed.
        """
        now = to_datetime(self.clock())
        conn = get_connection()
        try:
            with conn.cursor() as cur:
                if record.id is None:
                    order_id = self._insert(cur, record, now)
                    record = record.with_id(order_id)
                else:
                    self._update(cur, record, now)
                    order_id = record.id
                self._replace_key_values(cur, self.relations_table, order_id, record.relations)
                self._replace_key_values(cur, self.indexed_table, order_id, record.indexed_fields)
            conn.commit()
            logger.info(f"Saved order {record.order_no} #{order_id}")
            return record.with_updated_at(now)
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to save order {record.order_no}: {e}")
            raise
        finally:
            release_connection(conn)

    def _insert(self, cur, record: OrderRecord, now: datetime) -> int:
        sql = f"""
            INSERT INTO {self.orders_table}
                (order_no, type, status, amount, currency, buyer_id,
                 attributes_json, relations_json, indexed_fields_json, created_at, updated_at)
            VALUES (%(order_no)s, %(type)s, %(status)s, %(amount)s, %(currency)s, %(buyer_id)s,
                    %(attributes_json)s, %(relations_json)s, %(indexed_fields_json)s,
                    %(created_at)s, %(updated_at)s)
            RETURNING id;
        """
        params = self._row_params(record, now)
        params["order_no"] = record.order_no
        params["created_at"] = format_timestamp(record.created_at)
        cur.execute(sql, params)
        return cur.fetchone()[0]

    def _update(self, cur, record: OrderRecord, now: datetime) -> None:
        sql = f"""
            UPDATE {self.orders_table}
            SET type = %(type)s, status = %(status)s, amount = %(amount)s, currency = %(currency)s,
                buyer_id = %(buyer_id)s, attributes_json = %(attributes_json)s,
                relations_json = %(relations_json)s, indexed_fields_json = %(indexed_fields_json)s,
                updated_at = %(updated_at)s
            WHERE id = %(id)s;
        """
        params = self._row_params(record, now)
        params["id"] = record.id
        cur.execute(sql, params)

    @staticmethod
    def _row_params(record: OrderRecord, now: datetime) -> dict:
        """Values for the mutable columns of the orders table."""
        return {
            "type": record.type,
            "status": record.status,
            "amount": record.amount,
            "currency": record.currency,
            "buyer_id": to_kv_text(record.buyer_id) if record.buyer_id is not None else None,
            "attributes_json": encode_json_map(record.attributes),
            "relations_json": encode_json_map(record.relations),
            "indexed_fields_json": encode_json_map(record.indexed_fields),
            "updated_at": format_timestamp(now),
        }

    @staticmethod
    def _replace_key_values(cur, table: str, order_id: int, entries: dict) -> None:
        """Delete every triple of the order in ``table`` and write the new set."""
        cur.execute(f"DELETE FROM {table} WHERE order_id = %(order_id)s;", {"order_id": order_id})

        pairs = flatten_key_values(entries)
        if not pairs:
            return

        cur.executemany(
            f"INSERT INTO {table} (order_id, rel_key, rel_value) "
            f"VALUES (%(order_id)s, %(rel_key)s, %(rel_value)s);",
            [{"order_id": order_id, "rel_key": key, "rel_value": value} for key, value in pairs],
        )

    # ── READ ──────────────────────────────────────────────

    def find_by_id(self, order_id: Union[int, str]) -> Optional[OrderRecord]:
        """Fetch a single order by primary key, or None if not found."""
        return self._find_one("id", order_id)

    def find_by_order_no(self, order_no: str) -> Optional[OrderRecord]:
        """Fetch a single order by order number, or None if not found."""
        return self._find_one("order_no", order_no)

    def _find_one(self, column: str, value) -> Optional[OrderRecord]:
        sql = f"SELECT * FROM {self.orders_table} WHERE {column} = %(value)s;"
        conn = get_connection()
        try:
            with dict_cursor(conn) as cur:
                cur.execute(sql, {"value": value})
                row = cur.fetchone()
                return self.map_row(row) if row else None
        finally:
            release_connection(conn)

    def query(self, query: OrderQuery) -> OrderPage:
        """
        Run an order search.

        Returns:
            An OrderPage; its total is None unless the query asked for it.
        """
        compiled = self.compiler.compile(query)
        conn = get_connection()
        try:
            with dict_cursor(conn) as cur:
                cur.execute(compiled.select_sql, compiled.select_params())
                items = [self.map_row(row) for row in cur.fetchall()]

                total = None
                if compiled.count_sql is not None:
                    cur.execute(compiled.count_sql, compiled.params)
                    total = int(cur.fetchone()["count"])
            return OrderPage(items, total)
        finally:
            release_connection(conn)

    # ── HELPERS ───────────────────────────────────────────

    @staticmethod
    def map_row(row: dict) -> OrderRecord:
        """Convert a database row mapping to an OrderRecord."""
        return OrderRecord.from_dict({
            "id": row["id"],
            "order_no": row["order_no"],
            "type": row["type"],
            "status": row["status"],
            "amount": row["amount"],
            "currency": row["currency"],
            "buyer_id": row["buyer_id"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "attributes": decode_json_map(row.get("attributes_json")),
            "relations": decode_json_map(row.get("relations_json")),
            "indexed_fields": decode_json_map(row.get("indexed_fields_json")),
        })
