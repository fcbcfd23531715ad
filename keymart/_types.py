"""
Core types for keymart - identifier aliases, money and the clock.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime

# ═══════════════════════════════════════════════════════════════════════════════
# Identifiers
# ═══════════════════════════════════════════════════════════════════════════════

type ProductId = str
type SellerId = str
type UserId = str
type CheckoutId = str
type OrderId = str
type KeyId = str

type Cents = int
"""Money in minor units. Never a float."""


def new_id(prefix: str) -> str:
    """Opaque identifier, e.g. ``chk_5f0c...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


# ═══════════════════════════════════════════════════════════════════════════════
# Clock
# ═══════════════════════════════════════════════════════════════════════════════

type Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """
    Naive UTC timestamp.

    Note: naive because SQLite round-trips DateTime without tzinfo, and
    comparing aware with naive values raises.
    """
    return datetime.now(UTC).replace(tzinfo=None)


__all__ = (
    "ProductId",
    "SellerId",
    "UserId",
    "CheckoutId",
    "OrderId",
    "KeyId",
    "Cents",
    "new_id",
    "Clock",
    "utcnow",
)
