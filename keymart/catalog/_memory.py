"""
In-memory collaborators for tests, demos and single-process deployments.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime

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


class MemoryCatalog:
    def __init__(self, products: Iterable[Product] = ()) -> None:
        self._products = {p.id: p for p in products}
        self.reads = 0

    def put(self, product: Product) -> None:
        self._products[product.id] = product

    async def get_product(self, product_id: ProductId) -> Product | None:
        self.reads += 1
        return self._products.get(product_id)


class MemoryCarts:
    def __init__(self) -> None:
        self._carts: dict[str, CartSnapshot] = {}

    def put(self, cart: CartSnapshot) -> None:
        self._carts[cart.owner.key] = cart

    async def get_cart(self, owner: Owner) -> CartSnapshot | None:
        return self._carts.get(owner.key)


class MemoryPromotions:
    def __init__(
        self,
        flash_deals: Iterable[FlashDeal] = (),
        trending_offers: Iterable[TrendingOffer] = (),
        bundles: Iterable[BundleDeal] = (),
    ) -> None:
        self.flash_deals = list(flash_deals)
        self.trending_offers = list(trending_offers)
        self.bundles = list(bundles)

    async def flash_deal_for(self, product_id: ProductId, at: datetime) -> FlashDeal | None:
        return next(
            (d for d in self.flash_deals if d.product_id == product_id and d.window.covers(at)),
            None,
        )

    async def trending_offer_for(self, product_id: ProductId, at: datetime) -> TrendingOffer | None:
        return next(
            (o for o in self.trending_offers if product_id in o.product_ids and o.window.covers(at)),
            None,
        )

    async def active_bundles(self, at: datetime) -> Sequence[BundleDeal]:
        return [b for b in self.bundles if b.window.covers(at)]


class MemorySubscriptions:
    def __init__(self, subscriptions: Iterable[Subscription] = ()) -> None:
        self._subs = {s.user_id: s for s in subscriptions}

    def put(self, subscription: Subscription) -> None:
        self._subs[subscription.user_id] = subscription

    async def subscription_for(self, user_id: UserId) -> Subscription | None:
        return self._subs.get(user_id)


class MemoryCoupons:
    def __init__(self, coupons: Iterable[Coupon] = ()) -> None:
        self._coupons = {c.code.upper(): c for c in coupons}
        self._usages: list[tuple[str, OrderId, str]] = []
        self._lock = asyncio.Lock()

    def put(self, coupon: Coupon) -> None:
        self._coupons[coupon.code.upper()] = coupon

    async def get_by_code(self, code: str) -> Coupon | None:
        return self._coupons.get(code.upper())

    async def usage_count(self, coupon_id: str, owner: Owner) -> int:
        return sum(1 for cid, _, who in self._usages if cid == coupon_id and who == owner.key)

    async def redeem(self, coupon_id: str, order_id: OrderId, owner: Owner) -> None:
        async with self._lock:
            for code, coupon in self._coupons.items():
                if coupon.id == coupon_id:
                    self._coupons[code] = replace(coupon, used_count=coupon.used_count + 1)
                    self._usages.append((coupon_id, order_id, owner.key))
                    return
            raise KeyError(f"coupon {coupon_id} not found")


__all__ = (
    "MemoryCatalog",
    "MemoryCarts",
    "MemoryPromotions",
    "MemorySubscriptions",
    "MemoryCoupons",
)
