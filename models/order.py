"""
models/order.py
---------------
Domain model for persisted orders, plus the value coercion helpers
shared by the query and storage layers.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

from config import DEFAULT_CURRENCY

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Fields that may never change once a record has them.
_IMMUTABLE_FIELDS = ("id", "order_no", "created_at")


class ImmutableFieldError(ValueError):
    """Raised when a change would rewrite an identifier or the creation time."""


def to_datetime(value: Any) -> datetime:
    """
    Coerce a timestamp-like value to a naive datetime with second precision.

    Accepts datetime, date, ISO-8601 text or ``None`` (meaning now).
    Aware datetimes are converted to local time before dropping the zone.
    """
    if value is None or value == "now":
        result = datetime.now()
    elif isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime(value.year, value.month, value.day)
    else:
        result = datetime.fromisoformat(str(value).strip())

    if result.tzinfo is not None:
        result = result.astimezone().replace(tzinfo=None)
    return result.replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the store's canonical text form."""
    return value.strftime(TIMESTAMP_FORMAT)


def to_decimal(value: Any) -> Decimal:
    """
    Coerce an amount to Decimal without going through binary floats.

    Raises:
        ValueError: If the value is not a number.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not an amount: {value!r}")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Not an amount: {value!r}") from e


def to_kv_text(value: Any) -> str:
    """Render a key-value entry the way it is stored in a side table."""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def flatten_key_values(entries: dict) -> list[tuple[str, str]]:
    """
    Flatten a relations/indexed-fields map into (key, value) pairs.

    A scalar yields one pair, a list yields one pair per element, and
    ``None`` (alone or inside a list) yields nothing.
    """
    pairs = []
    for key, value in entries.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            for item in value:
                if item is None:
                    continue
                pairs.append((to_kv_text(key), to_kv_text(item)))
            continue

        if value is None:
            continue

        pairs.append((to_kv_text(key), to_kv_text(value)))
    return pairs


@dataclass(frozen=True)
class OrderRecord:
    """
    Immutable snapshot of one persisted order.

    Attributes:
        order_no: Unique business key.
        type: Order type (e.g., 'sale', 'refund').
        status: Current status.
        amount: Order amount, always a Decimal.
        currency: ISO currency code (default from config).
        buyer_id: Optional buyer identifier.
        created_at: When the order was first created.
        updated_at: When the order was last saved.
        attributes: Free-form data, stored only as JSON.
        relations: Key to scalar-or-list map, mirrored into the relations table.
        indexed_fields: Same shape as relations, mirrored into its own table.
        id: Database primary key (None until the first save).

    The three maps are read-only views over a private copy.
    """
    order_no: str
    type: str
    status: str
    amount: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    buyer_id: Optional[Union[int, str]] = None
    created_at: datetime = field(default_factory=lambda: to_datetime(None))
    updated_at: datetime = field(default_factory=lambda: to_datetime(None))
    attributes: Mapping = field(default_factory=dict)
    relations: Mapping = field(default_factory=dict)
    indexed_fields: Mapping = field(default_factory=dict)
    id: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "order_no", str(self.order_no))
        object.__setattr__(self, "type", str(self.type))
        object.__setattr__(self, "status", str(self.status))
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "created_at", to_datetime(self.created_at))
        object.__setattr__(self, "updated_at", to_datetime(self.updated_at))
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes or {})))
        object.__setattr__(self, "relations", MappingProxyType(dict(self.relations or {})))
        object.__setattr__(self, "indexed_fields", MappingProxyType(dict(self.indexed_fields or {})))

    # ── CONSTRUCTION ──────────────────────────────────────

    @classmethod
    def create(
        cls,
        order_no: str,
        type: str,
        status: str,
        amount: Any = 0,
        currency: str = DEFAULT_CURRENCY,
        buyer_id: Optional[Union[int, str]] = None,
        attributes: Optional[dict] = None,
        relations: Optional[dict] = None,
        indexed_fields: Optional[dict] = None,
    ) -> "OrderRecord":
        """Build a new, unsaved order stamped with the current time."""
        now = to_datetime(None)
        return cls(
            order_no=order_no,
            type=type,
            status=status,
            amount=amount,
            currency=currency,
            buyer_id=buyer_id,
            created_at=now,
            updated_at=now,
            attributes=attributes or {},
            relations=relations or {},
            indexed_fields=indexed_fields or {},
        )

    @classmethod
    def from_dict(cls, data: dict) -> "OrderRecord":
        """
        Build a record from its mapping form (see ``to_dict``).

        Missing timestamps default to now; a missing amount is zero.
        """
        return cls(
            id=data.get("id"),
            order_no=data["order_no"],
            type=data["type"],
            status=data["status"],
            amount=data.get("amount") if data.get("amount") is not None else 0,
            currency=data.get("currency") or DEFAULT_CURRENCY,
            buyer_id=data.get("buyer_id"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            attributes=data.get("attributes") or {},
            relations=data.get("relations") or {},
            indexed_fields=data.get("indexed_fields") or {},
        )

    def to_dict(self) -> dict:
        """Plain mapping form with canonical timestamp text and the amount as a string."""
        return {
            "id": self.id,
            "order_no": self.order_no,
            "type": self.type,
            "status": self.status,
            "amount": str(self.amount),
            "currency": self.currency,
            "buyer_id": self.buyer_id,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "attributes": dict(self.attributes),
            "relations": dict(self.relations),
            "indexed_fields": dict(self.indexed_fields),
        }

    # ── COPY-ON-WRITE ─────────────────────────────────────

    def with_id(self, id: int) -> "OrderRecord":
        """
        Return a copy carrying the given identifier.

        Raises:
            ImmutableFieldError: If a different identifier is already assigned.
        """
        if self.id is not None and self.id != id:
            raise ImmutableFieldError(f"Order {self.order_no} already has id {self.id}")
        return replace(self, id=id)

    def with_updated_at(self, updated_at: Any) -> "OrderRecord":
        return replace(self, updated_at=updated_at)

    def with_status(self, status: str) -> "OrderRecord":
        return replace(self, status=status)

    def with_attributes(self, attributes: dict) -> "OrderRecord":
        return replace(self, attributes=attributes)

    def with_relations(self, relations: dict) -> "OrderRecord":
        return replace(self, relations=relations)

    def with_indexed_fields(self, indexed_fields: dict) -> "OrderRecord":
        return replace(self, indexed_fields=indexed_fields)

    def with_changes(self, **changes: Any) -> "OrderRecord":
        """
        Return a copy with the given fields replaced.

        Raises:
            ImmutableFieldError: If ``id``, ``order_no`` or ``created_at`` is named.
            TypeError: If a name is not a field of the record.
        """
        blocked = [name for name in _IMMUTABLE_FIELDS if name in changes]
        if blocked:
            raise ImmutableFieldError(f"Cannot change {', '.join(blocked)} of order {self.order_no}")
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise TypeError(f"Unknown order fields: {', '.join(unknown)}")
        return replace(self, **changes)

    def is_persisted(self) -> bool:
        """Returns True once the record has been saved."""
        return self.id is not None

    def __str__(self) -> str:
        return f"#{self.id} {self.order_no} | {self.type}/{self.status} | {self.amount} {self.currency}"


def records_to_dicts(records: Iterable[OrderRecord]) -> list[dict]:
    """Convenience for serializing a batch of records."""
    return [record.to_dict() for record in records]
