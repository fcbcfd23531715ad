"""
Pricing math - pure functions over integer cents.

Cart-level discounts form a chain: each one is computed on what is left
after the previous ones and clamped to it, so the total never goes below
zero. The handling fee sits outside the chain.

    >>> remaining, taken = stack(10_000, [pct(10), pct(5), pct(10)])
    >>> remaining, taken
    (7695, [1000, 450, 855])
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from decimal import Decimal

from keymart._types import Cents, ProductId
from keymart.catalog import BundleDeal, DiscountKind
from keymart.config import FeeKind, HandlingFee
from keymart.money import clamp, percent_of

type DiscountFn = Callable[[Cents], Cents]
"""Remaining amount -> raw discount (clamped by ``stack``)."""


# ═══════════════════════════════════════════════════════════════════════════════
# Unit prices
# ═══════════════════════════════════════════════════════════════════════════════


def discounted_unit_price(price: Cents, percent: Decimal) -> Cents:
    return price - clamp(percent_of(price, percent), price)


# ═══════════════════════════════════════════════════════════════════════════════
# Discount chain
# ═══════════════════════════════════════════════════════════════════════════════


def pct(percent: Decimal | int | str) -> DiscountFn:
    return lambda remaining: percent_of(remaining, percent)


def fixed(cents: Cents) -> DiscountFn:
    return lambda remaining: cents


def by_kind(kind: DiscountKind, value: Decimal) -> DiscountFn:
    """Percentage value is a percent; fixed value is cents."""
    match kind:
        case DiscountKind.PERCENTAGE:
            return pct(value)
        case DiscountKind.FIXED:
            return fixed(int(value))


def no_discount() -> DiscountFn:
    return lambda remaining: 0


def stack(subtotal: Cents, discounts: Sequence[DiscountFn]) -> tuple[Cents, list[Cents]]:
    """Apply discounts in order, each on the remaining amount."""
    remaining = max(0, subtotal)
    taken: list[Cents] = []
    for discount in discounts:
        amount = clamp(discount(remaining), remaining)
        taken.append(amount)
        remaining -= amount
    return remaining, taken


# ═══════════════════════════════════════════════════════════════════════════════
# Bundles
# ═══════════════════════════════════════════════════════════════════════════════


def matching_bundle(
    product_ids: Iterable[ProductId],
    bundles: Iterable[BundleDeal],
) -> BundleDeal | None:
    """A bundle applies only when the cart holds exactly its two products."""
    distinct = frozenset(product_ids)
    if len(distinct) != 2:
        return None
    return next((b for b in bundles if b.product_ids == distinct), None)


# ═══════════════════════════════════════════════════════════════════════════════
# Handling fee
# ═══════════════════════════════════════════════════════════════════════════════


def handling_fee(fee: HandlingFee, total: Cents) -> Cents:
    if not fee.enabled:
        return 0
    match fee.kind:
        case FeeKind.PERCENTAGE:
            return percent_of(total, fee.percentage)
        case FeeKind.FIXED:
            return fee.fixed_cents


__all__ = (
    "DiscountFn",
    "discounted_unit_price",
    "pct",
    "fixed",
    "by_kind",
    "no_discount",
    "stack",
    "matching_bundle",
    "handling_fee",
)
