"""
Catalog types - read-side snapshots owned by external services.

The core never holds live references into these services: it copies the
fields it needs into the checkout and order records at the moment it reads
them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from kungfu import Error, Ok, Result

from keymart._types import Cents, ProductId, SellerId, UserId
from keymart.errors import ValidationError


# ═══════════════════════════════════════════════════════════════════════════════
# Owner
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Owner:
    """A registered user or a guest, never both."""

    user_id: UserId | None = None
    guest_email: str | None = None

    def __post_init__(self) -> None:
        if (self.user_id is None) == (self.guest_email is None):
            raise ValueError("owner needs exactly one of user_id or guest_email")

    @staticmethod
    def parse(user_id: str | None, guest_email: str | None) -> Result[Owner, ValidationError]:
        user_id = (user_id or "").strip() or None
        guest_email = (guest_email or "").strip().lower() or None
        if user_id and guest_email:
            return Error(ValidationError("user_id and guest_email are mutually exclusive", field="owner"))
        if user_id:
            return Ok(Owner(user_id=user_id))
        if guest_email:
            if "@" not in guest_email:
                return Error(ValidationError("guest_email is not an email address", field="guest_email"))
            return Ok(Owner(guest_email=guest_email))
        return Error(ValidationError("user_id or guest_email is required", field="owner"))

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def key(self) -> str:
        return f"user:{self.user_id}" if self.user_id is not None else f"guest:{self.guest_email}"


# ═══════════════════════════════════════════════════════════════════════════════
# Products & Carts
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Product:
    id: ProductId
    seller_id: SellerId
    name: str
    price: Cents
    discount_percent: Decimal = Decimal(0)


@dataclass(frozen=True, slots=True)
class CartLine:
    product_id: ProductId
    seller_id: SellerId
    qty: int
    unit_price_at_add: Cents


@dataclass(frozen=True, slots=True)
class CartSnapshot:
    owner: Owner
    lines: tuple[CartLine, ...]

    @property
    def product_ids(self) -> frozenset[ProductId]:
        return frozenset(line.product_id for line in self.lines)


# ═══════════════════════════════════════════════════════════════════════════════
# Promotions
# ═══════════════════════════════════════════════════════════════════════════════


class DiscountKind(StrEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True, slots=True)
class Window:
    """Active when ``is_active`` and ``starts_at <= at <= ends_at``."""

    starts_at: datetime
    ends_at: datetime | None
    is_active: bool = True

    def covers(self, at: datetime) -> bool:
        if not self.is_active or at < self.starts_at:
            return False
        return self.ends_at is None or at <= self.ends_at


@dataclass(frozen=True, slots=True)
class FlashDeal:
    id: str
    product_id: ProductId
    discount_percent: Decimal
    window: Window


@dataclass(frozen=True, slots=True)
class TrendingOffer:
    id: str
    product_ids: frozenset[ProductId]
    discount_percent: Decimal
    window: Window


@dataclass(frozen=True, slots=True)
class BundleDeal:
    """Unlocked when exactly these two products co-occur in a cart."""

    id: str
    product_ids: frozenset[ProductId]
    kind: DiscountKind
    value: Decimal
    window: Window

    def __post_init__(self) -> None:
        if len(self.product_ids) != 2:
            raise ValueError("a bundle pairs exactly two products")


# ═══════════════════════════════════════════════════════════════════════════════
# Subscriptions & Coupons
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Subscription:
    user_id: UserId
    status: str
    ends_at: datetime | None = None

    def is_active(self, at: datetime) -> bool:
        return self.status == "active" and (self.ends_at is None or self.ends_at >= at)


class CouponScope(StrEnum):
    ALL = "all"
    PRODUCT = "product"
    SELLER = "seller"


@dataclass(frozen=True, slots=True)
class Coupon:
    id: str
    code: str
    kind: DiscountKind
    value: Decimal
    window: Window
    scope: CouponScope = CouponScope.ALL
    product_ids: frozenset[ProductId] = field(default_factory=frozenset)
    seller_ids: frozenset[SellerId] = field(default_factory=frozenset)
    min_order_amount: Cents = 0
    usage_limit: int = 0
    used_count: int = 0
    per_user_limit: int = 0
    is_exclusive: bool = False


__all__ = (
    "Owner",
    "Product",
    "CartLine",
    "CartSnapshot",
    "DiscountKind",
    "Window",
    "FlashDeal",
    "TrendingOffer",
    "BundleDeal",
    "Subscription",
    "CouponScope",
    "Coupon",
)
