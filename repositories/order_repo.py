"""
repositories/order_repo.py
--------------------------
Domain-facing order repository.
Callers depend on this class, never on a concrete storage backend.
"""

from typing import Optional, Union

from models.order import OrderRecord
from models.order_page import OrderPage
from models.order_query import OrderQuery
from storage.base import OrderStorage
from storage.postgres_storage import PostgresOrderStorage


class OrderRepository:
    """Delegates every call to the configured OrderStorage."""

    def __init__(self, storage: Optional[OrderStorage] = None):
        self._storage = storage if storage is not None else PostgresOrderStorage()

    @property
    def storage(self) -> OrderStorage:
        return self._storage

    def save(self, record: OrderRecord) -> OrderRecord:
        return self._storage.save(record)

    def find_by_id(self, order_id: Union[int, str]) -> Optional[OrderRecord]:
        return self._storage.find_by_id(order_id)

    def find_by_order_no(self, order_no: str) -> Optional[OrderRecord]:
        return self._storage.find_by_order_no(order_no)

    def query(self, query: OrderQuery) -> OrderPage:
        return self._storage.query(query)
