"""
Checkout Session - a frozen, priced, time-limited payment intent.
"""

from keymart.checkout._types import (
    CheckoutStatus,
    PaymentMethod,
    LineItem,
    CheckoutSession,
    split_payment,
    CheckoutStore,
)
from keymart.checkout._memory import MemoryCheckoutStore
from keymart.checkout._sqlalchemy import SQLAlchemyCheckoutStore
from keymart.checkout._service import CheckoutService, CreateError, GetError, CancelError, CardError

__all__ = (
    "CheckoutStatus",
    "PaymentMethod",
    "LineItem",
    "CheckoutSession",
    "split_payment",
    "CheckoutStore",
    "MemoryCheckoutStore",
    "SQLAlchemyCheckoutStore",
    "CheckoutService",
    "CreateError",
    "GetError",
    "CancelError",
    "CardError",
)
