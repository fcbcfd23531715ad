"""
Promotion graph - picks the single promotion that prices a line.

    LineRequest (injected)
         │
         ▼
      LineNode
         │
         ├──────────────────┐
         ▼                  ▼
    FlashDealNode    TrendingOfferNode        (looked up concurrently)
         │                  │
         ├── FlashDealApplies ──────┐
         ├── TrendingOfferApplies ──┼── PromotionOutcome (@polymorphic)
         ├── StaticDiscountApplies ─┤            │
         └── NoPromotion ───────────┘            ▼
                                          ResolvedLineNode

Each *Applies node validates one branch and the branches are mutually
exclusive: flash deal beats trending offer beats the product's own discount.

Note: no ``from __future__ import annotations`` here, nodnod reads the
``__compose__`` hints at runtime to wire dependencies.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from nodnod import NodeError, case, polymorphic

from keymart import graph as G
from keymart.catalog import FlashDeal, Product, Promotions, TrendingOffer
from keymart.pricing._math import discounted_unit_price
from keymart.pricing._types import DiscountSource, LinePrice


# ═══════════════════════════════════════════════════════════════════════════════
# Input
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class LineRequest:
    product: Product
    quantity: int
    at: datetime
    promotions: Promotions


@G.node
class LineNode:
    def __init__(self, request: LineRequest) -> None:
        self.request = request

    @classmethod
    def __compose__(cls, request: LineRequest) -> "LineNode":
        return cls(request)


# ═══════════════════════════════════════════════════════════════════════════════
# Lookups
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FlashDealNode:
    def __init__(self, deal: FlashDeal | None) -> None:
        self.deal = deal

    @classmethod
    async def __compose__(cls, line: LineNode) -> "FlashDealNode":
        req = line.request
        return cls(await req.promotions.flash_deal_for(req.product.id, req.at))


@G.node
class TrendingOfferNode:
    def __init__(self, offer: TrendingOffer | None) -> None:
        self.offer = offer

    @classmethod
    async def __compose__(cls, line: LineNode) -> "TrendingOfferNode":
        req = line.request
        return cls(await req.promotions.trending_offer_for(req.product.id, req.at))


# ═══════════════════════════════════════════════════════════════════════════════
# Branch validation
# ═══════════════════════════════════════════════════════════════════════════════


@G.node
class FlashDealApplies:
    def __init__(self, deal: FlashDeal, request: LineRequest) -> None:
        self.deal = deal
        self.request = request

    @classmethod
    def __compose__(cls, line: LineNode, flash: FlashDealNode) -> "FlashDealApplies":
        if flash.deal is None:
            raise NodeError("No flash deal")
        return cls(flash.deal, line.request)


@G.node
class TrendingOfferApplies:
    def __init__(self, offer: TrendingOffer, request: LineRequest) -> None:
        self.offer = offer
        self.request = request

    @classmethod
    def __compose__(
        cls, line: LineNode, flash: FlashDealNode, trending: TrendingOfferNode
    ) -> "TrendingOfferApplies":
        if flash.deal is not None:
            raise NodeError("Flash deal wins")
        if trending.offer is None:
            raise NodeError("No trending offer")
        return cls(trending.offer, line.request)


@G.node
class StaticDiscountApplies:
    def __init__(self, request: LineRequest) -> None:
        self.request = request

    @classmethod
    def __compose__(
        cls, line: LineNode, flash: FlashDealNode, trending: TrendingOfferNode
    ) -> "StaticDiscountApplies":
        if flash.deal is not None or trending.offer is not None:
            raise NodeError("Promotion wins")
        if line.request.product.discount_percent <= 0:
            raise NodeError("No product discount")
        return cls(line.request)


@G.node
class NoPromotion:
    def __init__(self, request: LineRequest) -> None:
        self.request = request

    @classmethod
    def __compose__(
        cls, line: LineNode, flash: FlashDealNode, trending: TrendingOfferNode
    ) -> "NoPromotion":
        if flash.deal is not None or trending.offer is not None:
            raise NodeError("Promotion wins")
        if line.request.product.discount_percent > 0:
            raise NodeError("Product discount applies")
        return cls(line.request)


# ═══════════════════════════════════════════════════════════════════════════════
# Outcome
# ═══════════════════════════════════════════════════════════════════════════════


def _priced(
    request: LineRequest,
    percent: Decimal | int,
    source: DiscountSource,
    source_id: str | None,
) -> LinePrice:
    price = request.product.price
    unit = discounted_unit_price(price, percent)
    return LinePrice(
        original_price=price,
        discounted_price=unit,
        discount_amount=(price - unit) * request.quantity,
        discount_type=source,
        discount_source_id=source_id,
        quantity=request.quantity,
    )


@polymorphic[LinePrice]
class PromotionOutcome:
    """Routes to whichever branch validated."""

    @case
    def flash_deal(cls, applied: FlashDealApplies) -> LinePrice:
        deal = applied.deal
        return _priced(applied.request, deal.discount_percent, DiscountSource.FLASH_DEAL, deal.id)

    @case
    def trending_offer(cls, applied: TrendingOfferApplies) -> LinePrice:
        offer = applied.offer
        return _priced(applied.request, offer.discount_percent, DiscountSource.TRENDING_OFFER, offer.id)

    @case
    def product_discount(cls, applied: StaticDiscountApplies) -> LinePrice:
        product = applied.request.product
        return _priced(applied.request, product.discount_percent, DiscountSource.PRODUCT, product.id)

    @case
    def full_price(cls, applied: NoPromotion) -> LinePrice:
        return _priced(applied.request, 0, DiscountSource.NONE, None)


@G.node
class ResolvedLineNode:
    def __init__(self, price: LinePrice) -> None:
        self.price = price

    @classmethod
    def __compose__(cls, outcome: PromotionOutcome) -> "ResolvedLineNode":
        return cls(outcome.value)


resolve_line = G.graph(ResolvedLineNode)


__all__ = (
    "LineRequest",
    "LineNode",
    "FlashDealNode",
    "TrendingOfferNode",
    "FlashDealApplies",
    "TrendingOfferApplies",
    "StaticDiscountApplies",
    "NoPromotion",
    "PromotionOutcome",
    "ResolvedLineNode",
    "resolve_line",
)
