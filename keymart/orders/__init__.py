"""
Orders - the record materialized once per confirmed checkout.
"""

from keymart.orders._types import PaymentStatus, OrderStatus, OrderItem, Order, OrderStore
from keymart.orders._memory import MemoryOrderStore
from keymart.orders._sqlalchemy import SQLAlchemyOrderStore

__all__ = (
    "PaymentStatus",
    "OrderStatus",
    "OrderItem",
    "Order",
    "OrderStore",
    "MemoryOrderStore",
    "SQLAlchemyOrderStore",
)
