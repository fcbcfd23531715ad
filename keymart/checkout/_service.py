"""
Checkout service - creates frozen price snapshots and drives the
non-payment transitions (lazy expiry, cancel, gateway linkage).

The ``pending -> paid`` gate belongs to the payment reconciler.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from combinators import lift as L
from combinators import traverse_par
from kungfu import Error, LazyCoroResult, Ok, Result

from keymart._types import CheckoutId, Clock, new_id, utcnow
from keymart.catalog import Carts, CartSnapshot, Owner
from keymart.checkout._types import (
    CheckoutSession,
    CheckoutStatus,
    CheckoutStore,
    LineItem,
    PaymentMethod,
    split_payment,
)
from keymart.config import Settings
from keymart.errors import (
    GatewayError,
    NotFound,
    OutOfStock,
    SessionNotPayable,
    TransientStoreError,
    ValidationError,
    retrying,
    store_error,
)
from keymart.gateway import PaymentGateway, gateway_error
from keymart.inventory import KeyPool
from keymart.log import get_logger
from keymart.pricing import PricingError, PricingResolver, Quote, QuoteLine
from keymart.wallet import WalletLedger

log = get_logger("checkout")

type CreateError = PricingError | OutOfStock
type GetError = NotFound | TransientStoreError
type CancelError = NotFound | SessionNotPayable | TransientStoreError
type CardError = NotFound | SessionNotPayable | ValidationError | GatewayError | TransientStoreError

RAILS = (PaymentMethod.CARD, PaymentMethod.PAYPAL)


class CheckoutService:
    def __init__(
        self,
        *,
        store: CheckoutStore,
        pricing: PricingResolver,
        pool: KeyPool,
        wallet: WalletLedger,
        gateway: PaymentGateway,
        carts: Carts,
        settings: Settings,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._pricing = pricing
        self._pool = pool
        self._wallet = wallet
        self._gateway = gateway
        self._carts = carts
        self._settings = settings
        self._clock = clock

    # ─── creation ────────────────────────────────────────────────────────────

    def create(
        self,
        cart: CartSnapshot,
        *,
        coupon_code: str | None = None,
        rail: PaymentMethod = PaymentMethod.PAYPAL,
    ) -> LazyCoroResult[CheckoutSession, CreateError]:
        """
        Price the cart once and store it as a pending session.

        Stock is checked per line but not reserved; allocation happens only
        after payment.
        """

        async def execute() -> Result[CheckoutSession, CreateError]:
            if rail not in RAILS:
                return Error(ValidationError(f"rail must be Card or PayPal, got {rail}", field="rail"))

            now = self._clock()
            match await self._pricing.quote(cart, coupon_code, now):
                case Error(e):
                    return Error(e)
                case Ok(quote):
                    pass

            match await traverse_par(list(quote.lines), self._in_stock, concurrency=8):
                case Error(e):
                    return Error(e)
                case Ok(_):
                    pass

            match await self._balance(cart.owner):
                case Error(e):
                    return Error(e)
                case Ok(balance):
                    pass

            session = self._snapshot(cart.owner, quote, balance, rail, now)
            match await retrying(L.call(self._store.insert, session), self._settings.store_retry_times):
                case Error(e):
                    return Error(e)
                case Ok(stored):
                    log.info(
                        "checkout_created",
                        checkout_id=stored.id,
                        owner=stored.owner.key,
                        grand_total=stored.grand_total,
                        payment_method=stored.payment_method.value,
                        wallet_amount=stored.wallet_amount,
                        card_amount=stored.card_amount,
                    )
                    return Ok(stored)

        return LazyCoroResult(execute)

    def create_from_cart(
        self,
        owner: Owner,
        *,
        coupon_code: str | None = None,
        rail: PaymentMethod = PaymentMethod.PAYPAL,
    ) -> LazyCoroResult[CheckoutSession, CreateError]:
        """Same as ``create`` for the owner's stored cart."""

        async def load() -> Result[CartSnapshot, ValidationError | TransientStoreError]:
            try:
                cart = await self._carts.get_cart(owner)
            except Exception as e:
                return Error(store_error(e))
            if cart is None or not cart.lines:
                return Error(ValidationError("cart is empty", field="items"))
            return Ok(cart)

        return LazyCoroResult(load).then(lambda cart: self.create(cart, coupon_code=coupon_code, rail=rail))

    def _in_stock(self, line: QuoteLine) -> LazyCoroResult[None, OutOfStock | TransientStoreError]:
        async def check() -> Result[None, OutOfStock | TransientStoreError]:
            match await self._pool.availability(line.product_id):
                case Error(e):
                    return Error(e)
                case Ok(level) if level.available < line.price.quantity:
                    return Error(OutOfStock(line.product_id, requested=line.price.quantity, available=level.available))
                case Ok(_):
                    return Ok(None)

        return LazyCoroResult(check)

    async def _balance(self, owner: Owner) -> Result[int, TransientStoreError]:
        if owner.user_id is None:
            return Ok(0)
        return await self._wallet.balance(owner.user_id)

    def _snapshot(
        self,
        owner: Owner,
        quote: Quote,
        balance: int,
        rail: PaymentMethod,
        now: datetime,
    ) -> CheckoutSession:
        method, wallet_amount, card_amount = split_payment(
            quote.grand_total, balance, rail, guest=owner.is_guest
        )
        return CheckoutSession(
            id=new_id("chk"),
            owner=owner,
            items=tuple(LineItem.from_quote(line) for line in quote.lines),
            subtotal=quote.subtotal,
            breakdown=quote.breakdown,
            total_amount=quote.total_amount,
            handling_fee=quote.handling_fee,
            grand_total=quote.grand_total,
            currency=self._settings.currency,
            payment_method=method,
            wallet_amount=wallet_amount,
            card_amount=card_amount,
            status=CheckoutStatus.PENDING,
            created_at=now,
            expires_at=now + self._settings.checkout_ttl,
        )

    # ─── reads ───────────────────────────────────────────────────────────────

    def get(self, checkout_id: CheckoutId) -> LazyCoroResult[CheckoutSession, GetError]:
        """Load a session; an overdue pending one is flipped to ``expired`` first."""

        async def execute() -> Result[CheckoutSession, GetError]:
            match await retrying(L.call(self._store.get, checkout_id), self._settings.store_retry_times):
                case Error(e):
                    return Error(e)
                case Ok(None):
                    return Error(NotFound("checkout", checkout_id))
                case Ok(session):
                    pass

            now = self._clock()
            if not session.is_overdue(now):
                return Ok(session)

            match await self._store.transition(checkout_id, CheckoutStatus.PENDING, CheckoutStatus.EXPIRED, now):
                case Error(e):
                    return Error(e)
                case Ok(True):
                    log.info("checkout_expired", checkout_id=checkout_id, expires_at=session.expires_at.isoformat())
                    return Ok(replace(session, status=CheckoutStatus.EXPIRED))
                case Ok(False):
                    # Lost the race to a payment or a cancel; report what won.
                    match await self._store.get(checkout_id):
                        case Ok(current) if current is not None:
                            return Ok(current)
                        case Ok(_):
                            return Error(NotFound("checkout", checkout_id))
                        case Error(e):
                            return Error(e)

        return LazyCoroResult(execute)

    # ─── transitions ─────────────────────────────────────────────────────────

    def cancel(self, checkout_id: CheckoutId, owner: Owner) -> LazyCoroResult[CheckoutSession, CancelError]:
        """Owner-only, from ``pending`` only."""

        async def apply(session: CheckoutSession) -> Result[CheckoutSession, CancelError]:
            if session.owner != owner:
                return Error(NotFound("checkout", checkout_id))
            if not session.is_pending:
                return Error(SessionNotPayable(checkout_id, session.status.value))

            match await self._store.transition(checkout_id, CheckoutStatus.PENDING, CheckoutStatus.CANCELLED, self._clock()):
                case Error(e):
                    return Error(e)
                case Ok(True):
                    log.info("checkout_cancelled", checkout_id=checkout_id)
                    return Ok(replace(session, status=CheckoutStatus.CANCELLED))
                case Ok(False):
                    return (await self.get(checkout_id)).then(
                        lambda current: Error(SessionNotPayable(checkout_id, current.status.value))
                    )

        return self.get(checkout_id).then(apply)

    def begin_card_payment(self, checkout_id: CheckoutId) -> LazyCoroResult[CheckoutSession, CardError]:
        """
        Create the gateway order for the card part and link it to the session.

        Idempotent: a session that already has a gateway order is returned as is.
        """

        async def apply(session: CheckoutSession) -> Result[CheckoutSession, CardError]:
            if not session.is_pending:
                return Error(SessionNotPayable(checkout_id, session.status.value))
            if not session.payment_method.uses_gateway or session.card_amount == 0:
                return Error(ValidationError("checkout has no card part", field="payment_method"))
            if session.paypal_order_id is not None:
                return Ok(session)

            created = await L.catching_async(
                lambda: self._gateway.create_order(session.card_amount, session.currency, checkout_id),
                on_error=gateway_error,
            )
            match created:
                case Error(e):
                    log.warning("gateway_order_failed", checkout_id=checkout_id, error=e.message)
                    return Error(e)
                case Ok(gateway_order):
                    pass

            match await self._store.link_gateway(checkout_id, gateway_order.id):
                case Error(e):
                    return Error(e)
                case Ok(True):
                    log.info("gateway_order_linked", checkout_id=checkout_id, paypal_order_id=gateway_order.id)
                    return Ok(replace(session, paypal_order_id=gateway_order.id))
                case Ok(False):
                    # A concurrent call linked first; its order wins.
                    return await self.get(checkout_id)

        return self.get(checkout_id).then(apply)

    def expire_overdue(self, at: datetime | None = None) -> LazyCoroResult[int, TransientStoreError]:
        """Sweeper: flip every overdue pending session to ``expired``."""

        async def execute() -> Result[int, TransientStoreError]:
            result = await self._store.expire_overdue(at or self._clock())
            if count := result.unwrap_or(0):
                log.info("checkouts_expired", count=count)
            return result

        return LazyCoroResult(execute)


__all__ = ("CheckoutService", "CreateError", "GetError", "CancelError", "CardError")
