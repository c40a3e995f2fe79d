"""
storage/base.py
---------------
Contract every order storage backend implements.
"""

from abc import ABC, abstractmethod
from typing import Optional, Union

from models.order import OrderRecord
from models.order_page import OrderPage
from models.order_query import OrderQuery


class OrderStorage(ABC):

    @abstractmethod
    def save(self, record: OrderRecord) -> OrderRecord:
        """Insert or update an order; return it with its id and fresh updated_at."""

    @abstractmethod
    def find_by_id(self, order_id: Union[int, str]) -> Optional[OrderRecord]:
        """Return an order by its id, or None if not found."""

    @abstractmethod
    def find_by_order_no(self, order_no: str) -> Optional[OrderRecord]:
        """Return an order by its order number, or None if not found."""

    @abstractmethod
    def query(self, query: OrderQuery) -> OrderPage:
        """Return the page of orders matching the query."""
