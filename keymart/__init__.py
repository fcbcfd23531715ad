"""
keymart - order fulfillment core for a digital-goods marketplace.

    from keymart import saga as S    # compensating multi-step writes
    from keymart import cache as C   # injected TTL cache
    from keymart import graph as G   # promotion graph runner

    from keymart.wiring import build_memory, build_sql
    from keymart.api import create_app
"""

from keymart import saga
from keymart import cache
from keymart import graph
from keymart._types import (
    Cents,
    ProductId,
    SellerId,
    UserId,
    CheckoutId,
    OrderId,
    KeyId,
)

__version__ = "0.1.0"

__all__ = (
    "saga",
    "cache",
    "graph",
    "Cents",
    "ProductId",
    "SellerId",
    "UserId",
    "CheckoutId",
    "OrderId",
    "KeyId",
)
