"""
models/order_query.py
---------------------
Immutable, builder-style description of an order search.

Every ``with_*`` call returns a new OrderQuery and leaves the receiver
untouched, so a base query can be shared and refined freely:

    base = OrderQuery().with_status("paid")
    recent = base.with_created_after("2024-01-01").with_limit(50)
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

from config import DEFAULT_PAGE_SIZE
from models.order import to_datetime, to_decimal, to_kv_text

DEFAULT_ORDER_COLUMN = "created_at"


@dataclass(frozen=True)
class Scalar:
    """Key-value filter matching exactly one value."""
    value: str


@dataclass(frozen=True)
class OneOf:
    """Key-value filter matching any of several values."""
    values: tuple[str, ...]


KeyValueFilter = Union[Scalar, OneOf]


def resolve_key_value_filters(filters: Optional[dict]) -> dict[str, KeyValueFilter]:
    """
    Turn a loosely typed ``{key: scalar | list}`` map into tagged filters.

    ``None`` list elements are dropped. A key left with nothing to match
    (``None``, ``[]``, ``[None]``) is kept as an empty ``OneOf``: stored
    triples never hold a null value, so that condition matches no order.
    """
    resolved: dict[str, KeyValueFilter] = {}
    for key, value in (filters or {}).items():
        if isinstance(value, (Scalar, OneOf)):
            resolved[to_kv_text(key)] = value
        elif isinstance(value, (list, tuple, set, frozenset)):
            values = tuple(to_kv_text(item) for item in value if item is not None)
            resolved[to_kv_text(key)] = OneOf(values)
        elif value is None:
            resolved[to_kv_text(key)] = OneOf(())
        else:
            resolved[to_kv_text(key)] = Scalar(to_kv_text(value))
    return resolved


def _optional_datetime(value: Any) -> Optional[datetime]:
    return to_datetime(value) if value else None


def _optional_decimal(value: Any) -> Optional[Decimal]:
    return to_decimal(value) if value is not None else None


def _clean(text: Optional[str]) -> Optional[str]:
    text = (text or "").strip()
    return text or None


@dataclass(frozen=True)
class OrderQuery:
    """
    Filter, sort and paging intent for an order search.

    Filter maps are resolved into read-only ``Scalar`` / ``OneOf`` views.
    Precedence between overlapping filters (``buyer_id`` over
    ``buyer_ids``, ``order_no`` over ``order_no_like``) is applied by the
    compiler; the query keeps whatever it was given.
    """
    types: tuple = ()
    statuses: tuple = ()
    buyer_id: Optional[Union[int, str]] = None
    buyer_ids: tuple = ()
    order_no: Optional[str] = None
    order_no_like: Optional[str] = None
    keyword: Optional[str] = None
    relations: Mapping = field(default_factory=dict)
    indexed_fields: Mapping = field(default_factory=dict)
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    updated_from: Optional[datetime] = None
    updated_to: Optional[datetime] = None
    amount_min: Optional[Decimal] = None
    amount_max: Optional[Decimal] = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0
    order_column: str = DEFAULT_ORDER_COLUMN
    order_direction: str = "desc"
    include_total: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "relations", MappingProxyType(resolve_key_value_filters(self.relations)))
        object.__setattr__(self, "indexed_fields", MappingProxyType(resolve_key_value_filters(self.indexed_fields)))

    # ── SCALAR FILTERS ────────────────────────────────────

    def with_types(self, types: Iterable[str]) -> "OrderQuery":
        return replace(self, types=tuple(types))

    def with_type(self, type: str) -> "OrderQuery":
        return self.with_types([type])

    def with_statuses(self, statuses: Iterable[str]) -> "OrderQuery":
        return replace(self, statuses=tuple(statuses))

    def with_status(self, status: str) -> "OrderQuery":
        return self.with_statuses([status])

    def with_buyer_id(self, buyer_id: Optional[Union[int, str]]) -> "OrderQuery":
        """Match a single buyer. Takes precedence over ``with_buyer_ids``."""
        return replace(self, buyer_id=buyer_id)

    def with_buyer_ids(self, buyer_ids: Iterable[Union[int, str]]) -> "OrderQuery":
        return replace(self, buyer_ids=tuple(buyer_ids))

    def with_order_no(self, order_no: Optional[str]) -> "OrderQuery":
        """Exact order number match. Takes precedence over ``with_order_no_like``."""
        return replace(self, order_no=order_no or None)

    def with_order_no_like(self, text: str, prefix_only: bool = True) -> "OrderQuery":
        """
        Pattern match on the order number.

        Args:
            text: Fragment to look for; blank clears the filter.
            prefix_only: Match ``text%`` when True, ``%text%`` otherwise.
        """
        text = _clean(text)
        if text is None:
            return replace(self, order_no_like=None)
        pattern = f"{text}%" if prefix_only else f"%{text}%"
        return replace(self, order_no_like=pattern)

    def with_keyword(self, keyword: str) -> "OrderQuery":
        """Free-text search over the order number and the attributes JSON; blank clears it."""
        keyword = _clean(keyword)
        return replace(self, keyword=f"%{keyword}%" if keyword else None)

    # ── KEY-VALUE FILTERS ─────────────────────────────────

    def with_relations(self, relations: Optional[dict]) -> "OrderQuery":
        """Every key must match; a list value matches any of its elements."""
        return replace(self, relations=resolve_key_value_filters(relations))

    def with_indexed_fields(self, indexed_fields: Optional[dict]) -> "OrderQuery":
        """Same semantics as ``with_relations`` against the indexed fields."""
        return replace(self, indexed_fields=resolve_key_value_filters(indexed_fields))

    # ── RANGES ────────────────────────────────────────────

    def with_created_between(self, start: Any, end: Any) -> "OrderQuery":
        return replace(self, created_from=_optional_datetime(start), created_to=_optional_datetime(end))

    def with_created_after(self, start: Any) -> "OrderQuery":
        return self.with_created_between(start, self.created_to)

    def with_created_before(self, end: Any) -> "OrderQuery":
        return self.with_created_between(self.created_from, end)

    def with_updated_between(self, start: Any, end: Any) -> "OrderQuery":
        return replace(self, updated_from=_optional_datetime(start), updated_to=_optional_datetime(end))

    def with_updated_after(self, start: Any) -> "OrderQuery":
        return self.with_updated_between(start, self.updated_to)

    def with_updated_before(self, end: Any) -> "OrderQuery":
        return self.with_updated_between(self.updated_from, end)

    def with_amount_between(self, minimum: Any, maximum: Any) -> "OrderQuery":
        """Inclusive amount range; ``None`` leaves that side open."""
        return replace(self, amount_min=_optional_decimal(minimum), amount_max=_optional_decimal(maximum))

    def with_amount_min(self, minimum: Any) -> "OrderQuery":
        return self.with_amount_between(minimum, self.amount_max)

    def with_amount_max(self, maximum: Any) -> "OrderQuery":
        return self.with_amount_between(self.amount_min, maximum)

    # ── PAGING & SORTING ──────────────────────────────────

    def with_limit(self, limit: int) -> "OrderQuery":
        return replace(self, limit=max(1, int(limit)))

    def with_offset(self, offset: int) -> "OrderQuery":
        return replace(self, offset=max(0, int(offset)))

    def with_page(self, page: int, per_page: Optional[int] = None) -> "OrderQuery":
        """1-based page helper that sets both limit and offset."""
        limit = max(1, int(per_page if per_page is not None else self.limit))
        return replace(self, limit=limit, offset=(max(1, int(page)) - 1) * limit)

    def order_by(self, column: str, direction: str = "desc") -> "OrderQuery":
        """
        Sort by a column. Unknown columns are replaced by the default
        when the query is compiled; any direction but 'asc' means 'desc'.
        """
        direction = "asc" if str(direction).strip().lower() == "asc" else "desc"
        return replace(self, order_column=column, order_direction=direction)

    def with_total(self, include_total: bool) -> "OrderQuery":
        return replace(self, include_total=bool(include_total))

    def should_with_total(self) -> bool:
        """Returns True when the total row count should be computed."""
        return self.include_total
