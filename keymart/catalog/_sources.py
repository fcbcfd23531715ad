"""
External collaborators - the only surface the core needs from them.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from keymart._types import OrderId, ProductId, UserId
from keymart.catalog._types import (
    BundleDeal,
    CartSnapshot,
    Coupon,
    FlashDeal,
    Owner,
    Product,
    Subscription,
    TrendingOffer,
)


class Catalog(Protocol):
    async def get_product(self, product_id: ProductId) -> Product | None: ...


class Carts(Protocol):
    async def get_cart(self, owner: Owner) -> CartSnapshot | None: ...


class Promotions(Protocol):
    """Time-windowed deals. Lookups return only deals active at ``at``."""

    async def flash_deal_for(self, product_id: ProductId, at: datetime) -> FlashDeal | None: ...

    async def trending_offer_for(self, product_id: ProductId, at: datetime) -> TrendingOffer | None: ...

    async def active_bundles(self, at: datetime) -> Sequence[BundleDeal]: ...


class Subscriptions(Protocol):
    async def subscription_for(self, user_id: UserId) -> Subscription | None: ...


class Coupons(Protocol):
    async def get_by_code(self, code: str) -> Coupon | None: ...

    async def usage_count(self, coupon_id: str, owner: Owner) -> int: ...

    async def redeem(self, coupon_id: str, order_id: OrderId, owner: Owner) -> None:
        """Increment usage and record who used it on which order."""
        ...


__all__ = ("Catalog", "Carts", "Promotions", "Subscriptions", "Coupons")
