"""
Pricing types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from keymart._types import Cents, ProductId, SellerId


class DiscountSource(StrEnum):
    """Which promotion priced a line. At most one applies."""

    FLASH_DEAL = "flash_deal"
    TRENDING_OFFER = "trending_offer"
    PRODUCT = "product"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class LinePrice:
    """
    Resolved price of one cart line.

    ``original_price`` and ``discounted_price`` are per unit;
    ``discount_amount`` is for the whole line.
    """

    original_price: Cents
    discounted_price: Cents
    discount_amount: Cents
    discount_type: DiscountSource
    discount_source_id: str | None
    quantity: int

    @property
    def line_total(self) -> Cents:
        return self.discounted_price * self.quantity


@dataclass(frozen=True, slots=True)
class QuoteLine:
    product_id: ProductId
    seller_id: SellerId
    name: str
    price: LinePrice


@dataclass(frozen=True, slots=True)
class Breakdown:
    """Cart-level discounts, in the order they were applied."""

    bundle: Cents = 0
    subscription: Cents = 0
    coupon: Cents = 0
    bundle_id: str | None = None
    coupon_id: str | None = None
    coupon_code: str | None = None

    @property
    def total(self) -> Cents:
        return self.bundle + self.subscription + self.coupon


@dataclass(frozen=True, slots=True)
class Quote:
    """
    Full price snapshot for a cart.

    Invariant: ``grand_total == subtotal - breakdown.total + handling_fee``
    and ``total_amount >= 0``.
    """

    lines: tuple[QuoteLine, ...]
    subtotal: Cents
    breakdown: Breakdown
    total_amount: Cents
    handling_fee: Cents

    @property
    def grand_total(self) -> Cents:
        return self.total_amount + self.handling_fee


__all__ = ("DiscountSource", "LinePrice", "QuoteLine", "Breakdown", "Quote")
