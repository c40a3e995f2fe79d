"""
storage/query_compiler.py
-------------------------
Compiles an OrderQuery into parameterized SQL for the orders table.

Only table names, column names from a fixed allow-list and SQL keywords are
ever written into the statement text. Every value the caller supplied is
bound through a psycopg2 named placeholder (``%(name)s``).

Relation and indexed-field filters are rendered as correlated EXISTS
subqueries against their side tables, one per key, so an order must satisfy
every key while a list value for a key matches any of its elements. A join
would multiply order rows and corrupt both paging and the total count.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from config import ORDERS_TABLE, ORDER_RELATIONS_TABLE, ORDER_INDEXED_TABLE
from models.order import format_timestamp, to_kv_text
from models.order_query import (
    DEFAULT_ORDER_COLUMN,
    KeyValueFilter,
    OneOf,
    OrderQuery,
    resolve_key_value_filters,
)
from utils.logger import get_logger

logger = get_logger(__name__)

SORTABLE_COLUMNS = ("id", "created_at", "updated_at", "order_no", "amount")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def validate_identifier(name: str) -> str:
    """
    Check that a table name is safe to write into SQL text.

    Raises:
        ValueError: If the name is not a plain (optionally schema-qualified) identifier.
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid table name: {name!r}")
    return name


def sanitize_order_column(column: Optional[str]) -> str:
    """Return the column if it is sortable, else the default sort column."""
    return column if column in SORTABLE_COLUMNS else DEFAULT_ORDER_COLUMN


def placeholder(name: str) -> str:
    return f"%({name})s"


@dataclass(frozen=True)
class CompiledQuery:
    """
    SQL and parameters for one OrderQuery.

    ``params`` holds the filter values shared by both statements;
    ``paging_params`` holds ``limit`` and ``offset`` for the SELECT only.
    ``count_sql`` is None when the query did not ask for a total.
    """
    where_sql: str
    order_sql: str
    select_sql: str
    count_sql: Optional[str]
    params: dict = field(default_factory=dict)
    paging_params: dict = field(default_factory=dict)

    def select_params(self) -> dict:
        return {**self.params, **self.paging_params}


class OrderQueryCompiler:
    """Renders OrderQuery objects against a configurable set of tables."""

    def __init__(
        self,
        orders_table: str = ORDERS_TABLE,
        relations_table: str = ORDER_RELATIONS_TABLE,
        indexed_table: str = ORDER_INDEXED_TABLE,
    ):
        self.orders_table = validate_identifier(orders_table)
        self.relations_table = validate_identifier(relations_table)
        self.indexed_table = validate_identifier(indexed_table)

    def compile(self, query: OrderQuery) -> CompiledQuery:
        """
        Build the SELECT (and optionally COUNT) statement for a query.

        Args:
            query: The search to render.

        Returns:
            A CompiledQuery; executing ``select_sql`` with ``select_params()``
            yields the page, ``count_sql`` with ``params`` yields the total.
        """
        conditions, params = self.build_conditions(query)
        where_sql = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        order_sql = self.build_order_by(query)

        select_sql = " ".join(part for part in (
            f"SELECT * FROM {self.orders_table}",
            where_sql,
            order_sql,
            f"LIMIT {placeholder('limit')} OFFSET {placeholder('offset')}",
        ) if part)

        count_sql = None
        if query.should_with_total():
            count_sql = " ".join(part for part in (
                f"SELECT COUNT(*) FROM {self.orders_table}",
                where_sql,
            ) if part)

        logger.debug(f"Compiled order query: {select_sql} | params={params}")
        return CompiledQuery(
            where_sql=where_sql,
            order_sql=order_sql,
            select_sql=select_sql,
            count_sql=count_sql,
            params=params,
            paging_params={"limit": query.limit, "offset": query.offset},
        )

    # ── FILTERS ───────────────────────────────────────────

    def build_conditions(self, query: OrderQuery) -> tuple[list[str], dict]:
        """Return the ANDed predicate fragments and their bound values."""
        conditions: list[str] = []
        params: dict = {}

        if query.types:
            conditions.append(self._in_clause("type", query.types, params, "type"))

        if query.statuses:
            conditions.append(self._in_clause("status", query.statuses, params, "status"))

        if query.buyer_id is not None:
            conditions.append(f"buyer_id = {placeholder('buyer_id')}")
            params["buyer_id"] = to_kv_text(query.buyer_id)
        elif query.buyer_ids:
            buyer_ids = [to_kv_text(buyer_id) for buyer_id in query.buyer_ids]
            conditions.append(self._in_clause("buyer_id", buyer_ids, params, "buyer"))

        if query.order_no:
            conditions.append(f"order_no = {placeholder('order_no')}")
            params["order_no"] = query.order_no
        elif query.order_no_like:
            conditions.append(f"order_no ILIKE {placeholder('order_no_like')}")
            params["order_no_like"] = query.order_no_like

        if query.keyword:
            conditions.append(
                f"(order_no ILIKE {placeholder('keyword')} OR attributes_json ILIKE {placeholder('keyword')})"
            )
            params["keyword"] = query.keyword

        for column, operator, name, value in (
            ("created_at", ">=", "created_from", query.created_from),
            ("created_at", "<=", "created_to", query.created_to),
            ("updated_at", ">=", "updated_from", query.updated_from),
            ("updated_at", "<=", "updated_to", query.updated_to),
        ):
            if value is not None:
                conditions.append(f"{column} {operator} {placeholder(name)}")
                params[name] = format_timestamp(value)

        if query.amount_min is not None:
            conditions.append(f"amount >= {placeholder('amount_min')}")
            params["amount_min"] = query.amount_min

        if query.amount_max is not None:
            conditions.append(f"amount <= {placeholder('amount_max')}")
            params["amount_max"] = query.amount_max

        conditions.extend(self._key_value_clauses(query.relations, self.relations_table, "rel", params))
        conditions.extend(self._key_value_clauses(query.indexed_fields, self.indexed_table, "idx", params))

        return conditions, params

    def build_order_by(self, query: OrderQuery) -> str:
        """ORDER BY on an allow-listed column, with id as tie-breaker."""
        column = sanitize_order_column(query.order_column)
        direction = "ASC" if query.order_direction == "asc" else "DESC"
        if column == "id":
            return f"ORDER BY id {direction}"
        return f"ORDER BY {column} {direction}, id {direction}"

    @staticmethod
    def _in_clause(column: str, values, params: dict, prefix: str) -> str:
        names = []
        for index, value in enumerate(values):
            name = f"{prefix}_{index}"
            params[name] = value
            names.append(placeholder(name))
        return f"{column} IN ({', '.join(names)})"

    def _key_value_clauses(
        self,
        filters: dict[str, KeyValueFilter],
        table: str,
        prefix: str,
        params: dict,
    ) -> list[str]:
        clauses = []
        # Already-tagged filters pass through unchanged.
        filters = resolve_key_value_filters(filters)
        for counter, (key, value) in enumerate(filters.items(), start=1):
            key_name = f"{prefix}_key_{counter}"
            params[key_name] = key
            if isinstance(value, OneOf) and not value.values:
                value_clause = "FALSE"
            elif isinstance(value, OneOf):
                value_clause = self._in_clause("kv.rel_value", value.values, params, f"{prefix}_val_{counter}")
            else:
                value_name = f"{prefix}_val_{counter}"
                params[value_name] = value.value
                value_clause = f"kv.rel_value = {placeholder(value_name)}"

            clauses.append(
                f"EXISTS (SELECT 1 FROM {table} kv WHERE kv.order_id = {self.orders_table}.id "
                f"AND kv.rel_key = {placeholder(key_name)} AND {value_clause})"
            )
        return clauses
