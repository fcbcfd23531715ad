"""
Catalog - snapshots and contracts of the services around the core.

Products, carts, promotions, subscriptions and coupons are owned elsewhere;
the core reads them through these Protocols and never mutates them (coupon
redemption is the one write, and it goes through ``Coupons.redeem``).
"""

from keymart.catalog._types import (
    Owner,
    Product,
    CartLine,
    CartSnapshot,
    DiscountKind,
    Window,
    FlashDeal,
    TrendingOffer,
    BundleDeal,
    Subscription,
    CouponScope,
    Coupon,
)
from keymart.catalog._sources import Catalog, Carts, Promotions, Subscriptions, Coupons
from keymart.catalog._cached import ProductCache, product_cache
from keymart.catalog._memory import (
    MemoryCatalog,
    MemoryCarts,
    MemoryPromotions,
    MemorySubscriptions,
    MemoryCoupons,
)

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
    "Catalog",
    "Carts",
    "Promotions",
    "Subscriptions",
    "Coupons",
    "ProductCache",
    "product_cache",
    "MemoryCatalog",
    "MemoryCarts",
    "MemoryPromotions",
    "MemorySubscriptions",
    "MemoryCoupons",
)
