"""
Pricing - per-line promotion resolution and the cart discount pipeline.

    resolver = PricingResolver(products=..., promotions=..., subscriptions=...,
                               coupons=..., settings=settings)
    line = await resolver.resolve(product, quantity=2)
    quote = await resolver.quote(cart, coupon_code="SAVE10")
"""

from keymart.pricing._types import DiscountSource, LinePrice, QuoteLine, Breakdown, Quote
from keymart.pricing._math import (
    DiscountFn,
    discounted_unit_price,
    pct,
    fixed,
    by_kind,
    no_discount,
    stack,
    matching_bundle,
    handling_fee,
)
from keymart.pricing._coupons import CouponContext, normalize_code, validate_coupon
from keymart.pricing._resolver import PricingError, PricingResolver

__all__ = (
    # Types
    "DiscountSource",
    "LinePrice",
    "QuoteLine",
    "Breakdown",
    "Quote",
    # Math
    "DiscountFn",
    "discounted_unit_price",
    "pct",
    "fixed",
    "by_kind",
    "no_discount",
    "stack",
    "matching_bundle",
    "handling_fee",
    # Coupons
    "CouponContext",
    "normalize_code",
    "validate_coupon",
    # Resolver
    "PricingError",
    "PricingResolver",
)
