"""
Coupon rules.

Validation runs in a fixed order and stops at the first failure; an invalid
coupon fails the whole quote instead of being dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from kungfu import Error, Ok, Result

from keymart._types import Cents, ProductId, SellerId
from keymart.catalog import Coupon, CouponScope, Owner
from keymart.errors import ValidationError
from keymart.money import format_amount


@dataclass(frozen=True, slots=True)
class CouponContext:
    """Facts about the buyer and cart at the point the coupon is applied."""

    owner: Owner
    at: datetime
    subscribed: bool
    owner_usage: int
    amount: Cents
    product_ids: frozenset[ProductId]
    seller_ids: frozenset[SellerId]


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _invalid(message: str) -> Error[ValidationError]:
    return Error(ValidationError(message, field="coupon_code"))


def validate_coupon(
    code: str,
    coupon: Coupon | None,
    ctx: CouponContext,
) -> Result[Coupon, ValidationError]:
    if coupon is None:
        return _invalid(f"coupon {code} does not exist")

    window = coupon.window
    if not window.is_active:
        return _invalid(f"coupon {code} is not active")
    if ctx.at < window.starts_at:
        return _invalid(f"coupon {code} is not valid yet")
    if window.ends_at is not None and ctx.at > window.ends_at:
        return _invalid(f"coupon {code} has expired")

    if coupon.is_exclusive and not ctx.subscribed:
        return _invalid(f"coupon {code} is for subscribers only")

    if coupon.usage_limit > 0 and coupon.used_count >= coupon.usage_limit:
        return _invalid(f"coupon {code} usage limit reached")

    # Guests are only bound by the global limit.
    if not ctx.owner.is_guest and coupon.per_user_limit > 0 and ctx.owner_usage >= coupon.per_user_limit:
        return _invalid(f"coupon {code} already used the maximum number of times")

    if ctx.amount < coupon.min_order_amount:
        return _invalid(f"coupon {code} needs an order of at least {format_amount(coupon.min_order_amount)}")

    match coupon.scope:
        case CouponScope.PRODUCT if not (coupon.product_ids & ctx.product_ids):
            return _invalid(f"coupon {code} does not apply to these products")
        case CouponScope.SELLER if not (coupon.seller_ids & ctx.seller_ids):
            return _invalid(f"coupon {code} does not apply to these sellers")
        case _:
            return Ok(coupon)


__all__ = ("CouponContext", "normalize_code", "validate_coupon")
