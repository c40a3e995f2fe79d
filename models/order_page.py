"""
models/order_page.py
--------------------
Result envelope returned by an order search.
"""

from dataclasses import dataclass
from typing import Iterator, Optional

from models.order import OrderRecord, records_to_dicts


@dataclass(frozen=True)
class OrderPage:
    """
    One page of query results.

    Attributes:
        items: Matching orders in the requested sort order (may be empty).
        total: Number of orders matching the filters across all pages,
            or None when counting was not requested.
    """
    items: tuple[OrderRecord, ...] = ()
    total: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))

    def __iter__(self) -> Iterator[OrderRecord]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def has_total(self) -> bool:
        return self.total is not None

    def to_dict(self) -> dict:
        return {"items": records_to_dicts(self.items), "total": self.total}
