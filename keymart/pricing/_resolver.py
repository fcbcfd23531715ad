"""
Pricing Resolver - unit prices and the cart-level discount pipeline.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from combinators import lift as L
from combinators import traverse_par
from kungfu import Error, LazyCoroResult, Ok, Result

from keymart._types import Clock, utcnow
from keymart.catalog import (
    CartLine,
    CartSnapshot,
    Coupon,
    Coupons,
    Owner,
    Product,
    ProductCache,
    Promotions,
    Subscriptions,
)
from keymart.config import Settings
from keymart.errors import NotFound, TransientStoreError, ValidationError, store_error
from keymart.log import get_logger
from keymart.pricing._coupons import CouponContext, normalize_code, validate_coupon
from keymart.pricing._graph import LineRequest, resolve_line
from keymart.pricing._math import by_kind, handling_fee, matching_bundle, no_discount, pct, stack
from keymart.pricing._types import Breakdown, LinePrice, Quote, QuoteLine

log = get_logger("pricing")

type PricingError = ValidationError | NotFound | TransientStoreError


class PricingResolver:
    """
    Computes price snapshots. Stateless apart from the injected cache.

    Example:
        resolver = PricingResolver(
            products=product_cache(catalog, ttl=settings.catalog_cache_ttl),
            promotions=promotions,
            subscriptions=subscriptions,
            coupons=coupons,
            settings=settings,
        )
        quote = await resolver.quote(cart, coupon_code="SAVE10")
    """

    def __init__(
        self,
        *,
        products: ProductCache,
        promotions: Promotions,
        subscriptions: Subscriptions,
        coupons: Coupons,
        settings: Settings,
        clock: Clock = utcnow,
    ) -> None:
        self._products = products
        self._promotions = promotions
        self._subscriptions = subscriptions
        self._coupons = coupons
        self._settings = settings
        self._clock = clock

    # ─── single line ─────────────────────────────────────────────────────────

    def resolve(
        self,
        product: Product,
        quantity: int,
        at: datetime | None = None,
    ) -> LazyCoroResult[LinePrice, PricingError]:
        """Price one line: flash deal > trending offer > product discount."""
        if quantity < 1:
            return L.fail(ValidationError(f"quantity must be positive, got {quantity}", field="qty"))

        request = LineRequest(
            product=product,
            quantity=quantity,
            at=at or self._clock(),
            promotions=self._promotions,
        )
        return L.catching_async(lambda: resolve_line(request), on_error=store_error).map(
            lambda node: node.price
        )

    def _price_line(self, line: CartLine, at: datetime) -> LazyCoroResult[QuoteLine, PricingError]:
        def priced(product: Product) -> LazyCoroResult[QuoteLine, PricingError]:
            return self.resolve(product, line.qty, at).map(
                lambda price: QuoteLine(
                    product_id=product.id,
                    seller_id=product.seller_id,
                    name=product.name,
                    price=price,
                )
            )

        return self._products.value(line.product_id).then(priced)

    # ─── whole cart ──────────────────────────────────────────────────────────

    def quote(
        self,
        cart: CartSnapshot,
        coupon_code: str | None = None,
        at: datetime | None = None,
    ) -> LazyCoroResult[Quote, PricingError]:
        """
        Price a cart.

        Order: lines -> bundle -> subscription -> coupon, each on the amount
        left by the previous step. Handling fee last, outside the chain.
        """

        async def execute() -> Result[Quote, PricingError]:
            now = at or self._clock()

            match _check_lines(cart.lines):
                case Error(e):
                    return Error(e)
                case Ok(_):
                    pass

            match await traverse_par(list(cart.lines), lambda line: self._price_line(line, now), concurrency=8):
                case Error(e):
                    return Error(e)
                case Ok(priced):
                    lines = tuple(priced)

            subtotal = sum(line.price.line_total for line in lines)
            product_ids = frozenset(line.product_id for line in lines)

            try:
                bundles = await self._promotions.active_bundles(now)
                subscribed = await self._is_subscribed(cart.owner, now)
            except Exception as e:
                return Error(store_error(e))

            bundle = matching_bundle(product_ids, bundles)
            after_sub, (bundle_amount, sub_amount) = stack(
                subtotal,
                [
                    by_kind(bundle.kind, bundle.value) if bundle else no_discount(),
                    pct(self._settings.subscription_discount_percent) if subscribed else no_discount(),
                ],
            )

            coupon: Coupon | None = None
            if coupon_code and coupon_code.strip():
                match await self._load_coupon(coupon_code, cart.owner, now, subscribed, after_sub, lines):
                    case Error(e):
                        return Error(e)
                    case Ok(valid):
                        coupon = valid

            total, (coupon_amount,) = stack(
                after_sub,
                [by_kind(coupon.kind, coupon.value) if coupon else no_discount()],
            )
            fee = handling_fee(self._settings.handling_fee, total)

            quote = Quote(
                lines=lines,
                subtotal=subtotal,
                breakdown=Breakdown(
                    bundle=bundle_amount,
                    subscription=sub_amount,
                    coupon=coupon_amount,
                    bundle_id=bundle.id if bundle else None,
                    coupon_id=coupon.id if coupon else None,
                    coupon_code=coupon.code if coupon else None,
                ),
                total_amount=total,
                handling_fee=fee,
            )
            log.debug(
                "cart_priced",
                owner=cart.owner.key,
                subtotal=subtotal,
                discounts=quote.breakdown.total,
                handling_fee=fee,
                grand_total=quote.grand_total,
            )
            return Ok(quote)

        return LazyCoroResult(execute)

    # ─── helpers ─────────────────────────────────────────────────────────────

    async def _is_subscribed(self, owner: Owner, at: datetime) -> bool:
        if owner.user_id is None:
            return False
        subscription = await self._subscriptions.subscription_for(owner.user_id)
        return subscription is not None and subscription.is_active(at)

    async def _load_coupon(
        self,
        raw_code: str,
        owner: Owner,
        at: datetime,
        subscribed: bool,
        amount: int,
        lines: Sequence[QuoteLine],
    ) -> Result[Coupon, PricingError]:
        code = normalize_code(raw_code)
        try:
            coupon = await self._coupons.get_by_code(code)
            usage = 0
            if coupon is not None and not owner.is_guest:
                usage = await self._coupons.usage_count(coupon.id, owner)
        except Exception as e:
            return Error(store_error(e))

        ctx = CouponContext(
            owner=owner,
            at=at,
            subscribed=subscribed,
            owner_usage=usage,
            amount=amount,
            product_ids=frozenset(line.product_id for line in lines),
            seller_ids=frozenset(line.seller_id for line in lines),
        )
        return validate_coupon(code, coupon, ctx)


def _check_lines(lines: Sequence[CartLine]) -> Result[None, ValidationError]:
    if not lines:
        return Error(ValidationError("cart is empty", field="items"))
    for line in lines:
        if not line.product_id:
            return Error(ValidationError("product id is required", field="product_id"))
        if line.qty < 1:
            return Error(ValidationError(f"quantity for {line.product_id} must be positive", field="qty"))
    return Ok(None)


__all__ = ("PricingError", "PricingResolver")
