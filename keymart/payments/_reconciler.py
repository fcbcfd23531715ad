"""
Payment reconciler - the only code path that marks a checkout paid and
creates its Order.

Both entry points settle through the same saga:

    gate (pending -> paid) -> debit wallet part -> insert order -> allocate keys

Any failing step rolls every earlier one back, so a caller never observes a
debit without an order, an order without keys, or a paid session without
either.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any

from combinators import lift as L
from kungfu import Error, LazyCoroResult, Ok, Result

from keymart import saga as S
from keymart._types import Cents, CheckoutId, Clock, OrderId, new_id, utcnow
from keymart.catalog import Coupons, Owner
from keymart.checkout import (
    CheckoutService,
    CheckoutSession,
    CheckoutStatus,
    CheckoutStore,
    LineItem,
    PaymentMethod,
)
from keymart.config import Settings
from keymart.errors import (
    IdempotencyConflict,
    InsufficientFunds,
    NotFound,
    OutOfStock,
    ReconciliationMismatch,
    SessionNotPayable,
    SignatureInvalid,
    TransientStoreError,
    ValidationError,
    retrying,
)
from keymart.gateway import PaymentGateway, gateway_error
from keymart.inventory import KeyPool
from keymart.log import get_logger
from keymart.notify import Notifications
from keymart.orders import Order, OrderItem, OrderStatus, OrderStore, PaymentStatus
from keymart.payments._events import (
    CAPTURE_COMPLETED,
    CAPTURE_DENIED,
    CAPTURE_REFUNDED,
    WebhookEvent,
    parse_event,
    verify,
)
from keymart.payments._types import (
    Alert,
    AlertKind,
    Alerts,
    Severity,
    WebhookOutcome,
    WebhookResult,
)
from keymart.wallet import WalletLedger

log = get_logger("payments")

type SettleError = (
    SessionNotPayable
    | InsufficientFunds
    | OutOfStock
    | IdempotencyConflict
    | ValidationError
    | TransientStoreError
)
type WalletPayError = (
    NotFound
    | ValidationError
    | SessionNotPayable
    | InsufficientFunds
    | OutOfStock
    | TransientStoreError
)
type WebhookError = SignatureInvalid | ValidationError | TransientStoreError
type RefundError = NotFound | ValidationError | TransientStoreError


class PaymentReconciler:
    def __init__(
        self,
        *,
        checkout: CheckoutService,
        checkouts: CheckoutStore,
        orders: OrderStore,
        pool: KeyPool,
        wallet: WalletLedger,
        gateway: PaymentGateway,
        coupons: Coupons,
        alerts: Alerts,
        notifications: Notifications,
        settings: Settings,
        clock: Clock = utcnow,
        compensation: S.CompensationRetry = S.CompensationRetry(times=3),
    ) -> None:
        self._checkout = checkout
        self._checkouts = checkouts
        self._orders = orders
        self._pool = pool
        self._wallet = wallet
        self._gateway = gateway
        self._coupons = coupons
        self._alerts = alerts
        self._notifications = notifications
        self._settings = settings
        self._clock = clock
        self._compensation = compensation

    # ═══════════════════════════════════════════════════════════════════════════
    # Wallet path
    # ═══════════════════════════════════════════════════════════════════════════

    def pay_with_wallet(self, checkout_id: CheckoutId, owner: Owner) -> LazyCoroResult[Order, WalletPayError]:
        """
        Settle a ``Wallet`` session inline.

        Idempotent: a session that is already paid returns its Order.
        """

        async def apply(session: CheckoutSession) -> Result[Order, WalletPayError]:
            if session.owner != owner:
                return Error(NotFound("checkout", checkout_id))
            if session.payment_method is not PaymentMethod.WALLET:
                return Error(ValidationError(
                    f"checkout is payable by {session.payment_method.value}, not Wallet",
                    field="payment_method",
                ))
            if session.status is CheckoutStatus.PAID:
                return await self._existing(checkout_id)
            if not session.is_pending:
                return Error(SessionNotPayable(checkout_id, session.status.value))

            match await self._settle(session):
                case Ok(order):
                    return Ok(order)
                case Error(IdempotencyConflict()):
                    return await self._existing(checkout_id)
                case Error(SessionNotPayable() as e):
                    current = await self._checkouts.get(checkout_id)
                    match current:
                        case Ok(s) if s is not None and s.status is CheckoutStatus.PAID:
                            return await self._existing(checkout_id)
                    return Error(e)
                case Error(e):
                    return Error(e)

        return self._checkout.get(checkout_id).then(apply)

    async def _existing(self, checkout_id: CheckoutId) -> Result[Order, WalletPayError]:
        match await self._orders.find_by_checkout(checkout_id):
            case Ok(None):
                # Gate taken by a settlement that has not inserted its order yet.
                return Error(SessionNotPayable(checkout_id, CheckoutStatus.PAID.value))
            case Ok(order):
                return Ok(order)
            case Error(e):
                return Error(e)

    # ═══════════════════════════════════════════════════════════════════════════
    # Webhook path
    # ═══════════════════════════════════════════════════════════════════════════

    def handle_webhook(
        self,
        body: bytes,
        headers: Mapping[str, str],
    ) -> LazyCoroResult[WebhookResult, WebhookError]:
        """
        Verify, parse and dispatch a gateway event.

        Every outcome except a bad signature, a malformed body or a store
        failure is acknowledged, so the gateway stops redelivering.
        """

        async def execute() -> Result[WebhookResult, WebhookError]:
            match verify(body, headers, self._settings.webhook_secret):
                case Error(e):
                    log.warning("webhook_signature_rejected", size=len(body))
                    return Error(e)
                case Ok(_):
                    pass

            match parse_event(body):
                case Error(e):
                    log.warning("webhook_malformed", error=e.message, field=e.field)
                    return Error(e)
                case Ok(event):
                    pass

            log.info(
                "webhook_received",
                event_id=event.id,
                event_type=event.event_type,
                paypal_order_id=event.paypal_order_id,
                capture_id=event.capture_id,
            )
            match event.event_type:
                case "PAYMENT.CAPTURE.COMPLETED":
                    result = await self._on_completed(event)
                case "PAYMENT.CAPTURE.DENIED":
                    result = await self._on_denied(event)
                case "PAYMENT.CAPTURE.REFUNDED":
                    result = await self._on_refunded(event)
                case other:
                    result = Ok(WebhookResult(WebhookOutcome.IGNORED, other))

            match result:
                case Ok(done):
                    log.info(
                        "webhook_handled",
                        event_id=event.id,
                        event_type=event.event_type,
                        outcome=done.outcome.value,
                        order_id=done.order_id,
                    )
                case Error(e):
                    log.warning("webhook_failed", event_id=event.id, event_type=event.event_type, error=e.message)
            return result

        return LazyCoroResult(execute)

    async def _on_completed(self, event: WebhookEvent) -> Result[WebhookResult, WebhookError]:
        match event.captured():
            case Error(e):
                return Error(e)
            case Ok((amount, currency)):
                pass

        capture_id = event.capture_id
        paypal_order_id = event.paypal_order_id

        match await self._orders.find_by_gateway(paypal_order_id, capture_id):
            case Error(e):
                return Error(e)
            case Ok(existing) if existing is not None:
                match await self._orders.mark_paid(existing.id, capture_id, self._clock()):
                    case Error(e):
                        return Error(e)
                    case Ok(True):
                        log.warning("order_payment_restored", order_id=existing.id, capture_id=capture_id)
                        return Ok(WebhookResult(WebhookOutcome.PROCESSED, CAPTURE_COMPLETED, existing.id))
                    case Ok(False):
                        return Ok(WebhookResult(WebhookOutcome.DUPLICATE, CAPTURE_COMPLETED, existing.id))
            case Ok(None):
                pass

        linked: CheckoutSession | None = None
        if paypal_order_id is not None:
            match await self._checkouts.find_by_gateway(paypal_order_id):
                case Error(e):
                    return Error(e)
                case Ok(found):
                    linked = found

        if linked is None:
            await self._alert(
                AlertKind.ORPHAN_EVENT,
                Severity.WARNING,
                f"capture {capture_id} for unknown gateway order {paypal_order_id}",
                amount=amount,
                currency=currency,
            )
            return Ok(WebhookResult(WebhookOutcome.ORPHAN, CAPTURE_COMPLETED, detail="no checkout for gateway order"))

        # Re-read through the service so an overdue session is expired first.
        match await self._checkout.get(linked.id):
            case Error(e):
                return Error(e)
            case Ok(session):
                pass

        if not session.is_pending:
            return await self._late(session, paypal_order_id, capture_id, amount, currency)

        if currency != session.currency or abs(amount - session.card_amount) > self._settings.amount_tolerance_cents:
            mismatch = ReconciliationMismatch(
                checkout_id=session.id,
                expected_amount=session.card_amount,
                received_amount=amount,
                expected_currency=session.currency,
                received_currency=currency,
            )
            await self._alert(
                AlertKind.RECONCILIATION_MISMATCH,
                Severity.ERROR,
                mismatch.message,
                checkout_id=session.id,
                capture_id=capture_id,
            )
            return Ok(WebhookResult(WebhookOutcome.MISMATCH, CAPTURE_COMPLETED, detail=mismatch.message))

        match await self._settle(session, paypal_order_id=paypal_order_id, capture_id=capture_id):
            case Ok(order):
                return Ok(WebhookResult(WebhookOutcome.PROCESSED, CAPTURE_COMPLETED, order.id))
            case Error(IdempotencyConflict(existing_id=existing_id)):
                return Ok(WebhookResult(WebhookOutcome.DUPLICATE, CAPTURE_COMPLETED, existing_id))
            case Error(SessionNotPayable()):
                match await self._checkouts.get(session.id):
                    case Error(e):
                        return Error(e)
                    case Ok(current) if current is not None:
                        return await self._late(current, paypal_order_id, capture_id, amount, currency)
                    case Ok(_):
                        return Error(TransientStoreError(f"checkout {session.id} vanished during settlement"))
            case Error(OutOfStock() | InsufficientFunds() as e):
                return await self._unfulfillable(session, e, paypal_order_id, capture_id, amount)
            case Error(e):
                return Error(e)

    async def _late(
        self,
        session: CheckoutSession,
        paypal_order_id: str | None,
        capture_id: str | None,
        amount: Cents,
        currency: str,
    ) -> Result[WebhookResult, WebhookError]:
        """
        Money arrived for a session that is no longer payable.

        A session already paid through this gateway order is a redelivery,
        even while the winning delivery has not inserted its Order yet.
        """
        if session.status is CheckoutStatus.PAID and session.paypal_order_id == paypal_order_id:
            match await self._orders.find_by_checkout(session.id):
                case Error(e):
                    return Error(e)
                case Ok(order):
                    return Ok(WebhookResult(
                        WebhookOutcome.DUPLICATE,
                        CAPTURE_COMPLETED,
                        order.id if order is not None else None,
                    ))

        await self._alert(
            AlertKind.LATE_PAYMENT,
            Severity.ERROR,
            f"capture {capture_id} ({amount} {currency}) for {session.status.value} checkout",
            checkout_id=session.id,
            capture_id=capture_id,
        )
        return Ok(WebhookResult(WebhookOutcome.LATE, CAPTURE_COMPLETED, detail=f"checkout is {session.status.value}"))

    async def _unfulfillable(
        self,
        session: CheckoutSession,
        cause: OutOfStock | InsufficientFunds,
        paypal_order_id: str | None,
        capture_id: str | None,
        captured: Cents,
    ) -> Result[WebhookResult, WebhookError]:
        """
        Captured but cannot be fulfilled: refund the capture, close the
        session, keep a cancelled Order as the record, tell buyer and sellers.

        The settlement saga has already credited back any wallet part.
        """
        now = self._clock()
        match await self._checkouts.transition(session.id, CheckoutStatus.PENDING, CheckoutStatus.CANCELLED, now):
            case Error(e):
                return Error(e)
            case Ok(False):
                # A concurrent delivery of the same capture got here first.
                return Ok(WebhookResult(WebhookOutcome.DUPLICATE, CAPTURE_COMPLETED))
            case Ok(True):
                pass

        order = replace(
            self._draft(session, now, paypal_order_id=paypal_order_id, capture_id=capture_id),
            payment_status=PaymentStatus.REFUNDED,
            order_status=OrderStatus.CANCELLED,
            items=tuple(replace(OrderItem.from_line(line), refunded_qty=line.qty) for line in session.items),
        )

        if capture_id is not None:
            refunded = await L.catching_async(
                lambda: self._gateway.refund(capture_id, captured),
                on_error=gateway_error,
            )
            if isinstance(refunded, Error):
                await self._alert(
                    AlertKind.REFUND_FAILED,
                    Severity.CRITICAL,
                    f"automatic refund of {captured} failed: {refunded.error.message}",
                    checkout_id=session.id,
                    order_id=order.id,
                    capture_id=capture_id,
                )

        match await self._orders.insert(order):
            case Error(e):
                log.error("cancelled_order_not_recorded", checkout_id=session.id, order_id=order.id, error=e.message)
            case Ok(_):
                pass

        self._notifications.fulfillment_failed(order, cause.message)

        kind = (
            AlertKind.OUT_OF_STOCK_AFTER_CAPTURE
            if isinstance(cause, OutOfStock)
            else AlertKind.INSUFFICIENT_FUNDS_AFTER_CAPTURE
        )
        await self._alert(kind, Severity.CRITICAL, cause.message, checkout_id=session.id, order_id=order.id)
        return Ok(WebhookResult(WebhookOutcome.UNFULFILLED, CAPTURE_COMPLETED, order.id, cause.message))

    async def _on_denied(self, event: WebhookEvent) -> Result[WebhookResult, WebhookError]:
        match await self._orders.find_by_gateway(event.paypal_order_id, event.capture_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                log.info("capture_denied_without_order", paypal_order_id=event.paypal_order_id)
                return Ok(WebhookResult(WebhookOutcome.IGNORED, CAPTURE_DENIED, detail="no order"))
            case Ok(order):
                pass

        match await self._orders.mark_failed(order.id):
            case Error(e):
                return Error(e)
            case Ok(False):
                # Already failed, or refunded: a refund is never reopened.
                return Ok(WebhookResult(
                    WebhookOutcome.DUPLICATE,
                    CAPTURE_DENIED,
                    order.id,
                    f"order is {order.payment_status.value}",
                ))
            case Ok(True):
                log.warning("order_payment_failed", order_id=order.id, capture_id=event.capture_id)
                return Ok(WebhookResult(WebhookOutcome.PROCESSED, CAPTURE_DENIED, order.id))

    async def _on_refunded(self, event: WebhookEvent) -> Result[WebhookResult, WebhookError]:
        match await self._orders.find_by_gateway(event.paypal_order_id, event.capture_id):
            case Error(e):
                return Error(e)
            case Ok(None):
                log.info("refund_without_order", capture_id=event.capture_id)
                return Ok(WebhookResult(WebhookOutcome.IGNORED, CAPTURE_REFUNDED, detail="no order"))
            case Ok(order):
                pass

        match await self._unwind(order, "refunded at gateway", refund_card=False):
            case Error(e):
                return Error(e)
            case Ok(False):
                return Ok(WebhookResult(WebhookOutcome.DUPLICATE, CAPTURE_REFUNDED, order.id))
            case Ok(True):
                return Ok(WebhookResult(WebhookOutcome.PROCESSED, CAPTURE_REFUNDED, order.id))

    # ═══════════════════════════════════════════════════════════════════════════
    # Refunds
    # ═══════════════════════════════════════════════════════════════════════════

    def refund_order(self, order_id: OrderId, reason: str) -> LazyCoroResult[Order, RefundError]:
        """
        Refund a paid order in full: revoke its keys, credit the wallet part,
        refund the card part at the gateway.

        Idempotent on an already refunded order.
        """

        async def execute() -> Result[Order, RefundError]:
            match await retrying(L.call(self._orders.get, order_id), self._settings.store_retry_times):
                case Error(e):
                    return Error(e)
                case Ok(None):
                    return Error(NotFound("order", order_id))
                case Ok(order):
                    pass

            if order.payment_status is PaymentStatus.REFUNDED:
                return Ok(order)
            if order.payment_status is not PaymentStatus.PAID:
                return Error(ValidationError(
                    f"order {order_id} is {order.payment_status.value}; only paid orders can be refunded",
                    field="order_id",
                ))

            match await self._unwind(order, reason, refund_card=True):
                case Error(e):
                    return Error(e)
                case Ok(_):
                    pass

            match await self._orders.get(order_id):
                case Ok(current) if current is not None:
                    return Ok(current)
                case _:
                    return Ok(replace(order, payment_status=PaymentStatus.REFUNDED, order_status=OrderStatus.CANCELLED))

        return LazyCoroResult(execute)

    async def _unwind(self, order: Order, reason: str, *, refund_card: bool) -> Result[bool, TransientStoreError]:
        """
        Mark refunded (the gate), then revoke keys and return the money.

        Returns False when another refund already went through. Steps after
        the gate never fail the call; what cannot be undone is alerted.
        """
        match await self._orders.mark_refunded(order.id):
            case Error(e):
                return Error(e)
            case Ok(False):
                return Ok(False)
            case Ok(True):
                pass

        match await self._orders.set_status(order.id, order_status=OrderStatus.CANCELLED):
            case Error(e):
                log.error("order_cancel_failed", order_id=order.id, error=e.message)
            case Ok(_):
                pass

        match await self._pool.release(order.key_ids):
            case Error(e):
                await self._alert(
                    AlertKind.REFUND_FAILED,
                    Severity.CRITICAL,
                    f"keys not revoked: {e.message}",
                    order_id=order.id,
                    key_ids=list(order.key_ids),
                )
            case Ok(_):
                pass

        user_id = order.owner.user_id
        if order.wallet_amount > 0 and user_id is not None:
            credited = await self._wallet.credit(
                user_id,
                order.wallet_amount,
                refund_ref=f"refund:{order.id}",
                note=reason,
            )
            if isinstance(credited, Error):
                await self._alert(
                    AlertKind.REFUND_FAILED,
                    Severity.CRITICAL,
                    f"wallet credit of {order.wallet_amount} failed: {credited.error.message}",
                    order_id=order.id,
                )

        capture_id = order.paypal_capture_id
        if refund_card and order.card_amount > 0 and capture_id is not None:
            refunded = await L.catching_async(
                lambda: self._gateway.refund(capture_id, order.card_amount),
                on_error=gateway_error,
            )
            if isinstance(refunded, Error):
                await self._alert(
                    AlertKind.REFUND_FAILED,
                    Severity.CRITICAL,
                    f"gateway refund of {order.card_amount} failed: {refunded.error.message}",
                    order_id=order.id,
                    capture_id=capture_id,
                )

        log.info(
            "order_refunded",
            order_id=order.id,
            reason=reason,
            wallet_amount=order.wallet_amount,
            card_amount=order.card_amount,
            keys=len(order.key_ids),
        )
        return Ok(True)

    # ═══════════════════════════════════════════════════════════════════════════
    # Settlement
    # ═══════════════════════════════════════════════════════════════════════════

    def _draft(
        self,
        session: CheckoutSession,
        now: datetime,
        *,
        paypal_order_id: str | None = None,
        capture_id: str | None = None,
    ) -> Order:
        return Order(
            id=new_id("ord"),
            checkout_id=session.id,
            owner=session.owner,
            items=tuple(OrderItem.from_line(line) for line in session.items),
            payment_method=session.payment_method,
            payment_status=PaymentStatus.PAID,
            order_status=OrderStatus.PROCESSING,
            wallet_amount=session.wallet_amount,
            card_amount=session.card_amount,
            grand_total=session.grand_total,
            currency=session.currency,
            created_at=now,
            paypal_order_id=paypal_order_id,
            paypal_capture_id=capture_id,
            coupon_id=session.breakdown.coupon_id,
            paid_at=now,
        )

    def _gate(self, session: CheckoutSession, now: datetime) -> LazyCoroResult[None, SettleError]:
        async def execute() -> Result[None, SettleError]:
            match await self._checkouts.transition(session.id, CheckoutStatus.PENDING, CheckoutStatus.PAID, now):
                case Error(e):
                    return Error(e)
                case Ok(True):
                    return Ok(None)
                case Ok(False):
                    current = await self._checkouts.get(session.id)
                    match current:
                        case Ok(s) if s is not None:
                            return Error(SessionNotPayable(session.id, s.status.value))
                        case _:
                            return Error(SessionNotPayable(session.id, "unknown"))

        return LazyCoroResult(execute)

    def _allocation(self, order_id: OrderId, line: LineItem) -> S.Saga[Any, SettleError]:
        return S.step(
            f"allocate:{line.product_id}",
            L.call(self._pool.allocate, line.product_id, line.qty, order_id),
            compensate=S.compensator(lambda keys: self._pool.unassign(order_id, keys)),
        ).then(
            lambda keys: S.step(
                f"attach:{line.product_id}",
                L.call(self._orders.attach_keys, order_id, line.product_id, keys),
            )
        )

    def _saga(self, session: CheckoutSession, order: Order, now: datetime) -> S.Saga[Any, SettleError]:
        saga: S.Saga[Any, SettleError] = S.step(
            "gate",
            self._gate(session, now),
            compensate=S.compensator(
                lambda _: self._checkouts.transition(session.id, CheckoutStatus.PAID, CheckoutStatus.PENDING, now)
            ),
        )

        user_id = session.owner.user_id
        if session.wallet_amount > 0 and user_id is not None:
            amount = session.wallet_amount
            saga = saga.then(lambda _: S.step(
                "debit",
                L.call(self._wallet.debit, user_id, amount, order_ref=order.id),
                compensate=S.compensator(lambda _tx: self._wallet.credit(
                    user_id,
                    amount,
                    refund_ref=f"reversal:{order.id}",
                    note="payment rolled back",
                )),
            ))

        saga = saga.then(lambda _: S.step(
            "order",
            L.call(self._orders.insert, order),
            compensate=S.compensator(lambda placed: self._orders.discard(placed.id)),
        ))

        for line in session.items:
            saga = saga.then(lambda _, line=line: self._allocation(order.id, line))

        return saga

    async def _settle(
        self,
        session: CheckoutSession,
        *,
        paypal_order_id: str | None = None,
        capture_id: str | None = None,
    ) -> Result[Order, SettleError]:
        now = self._clock()
        order = self._draft(session, now, paypal_order_id=paypal_order_id, capture_id=capture_id)

        match await S.run(self._saga(session, order, now), retry=self._compensation):
            case Error(failure):
                if not failure.rollback_complete:
                    await self._alert(
                        AlertKind.ROLLBACK_INCOMPLETE,
                        Severity.CRITICAL,
                        f"settlement failed at {failure.step_failed}; left applied: {', '.join(failure.failed_compensators)}",
                        checkout_id=session.id,
                        order_id=order.id,
                    )
                log.info(
                    "settlement_rolled_back",
                    checkout_id=session.id,
                    step_failed=failure.step_failed,
                    error=failure.error.code,
                    compensators_run=failure.compensators_run,
                )
                return Error(failure.error)
            case Ok(_):
                pass

        completed = await retrying(
            L.call(self._orders.set_status, order.id, order_status=OrderStatus.COMPLETED),
            self._settings.store_retry_times,
        )
        if isinstance(completed, Error):
            log.error("order_completion_not_recorded", order_id=order.id, error=completed.error.message)

        match await self._orders.get(order.id):
            case Ok(stored) if stored is not None:
                order = stored
            case _:
                order = replace(order, order_status=OrderStatus.COMPLETED)

        log.info(
            "order_settled",
            checkout_id=session.id,
            order_id=order.id,
            payment_method=order.payment_method.value,
            wallet_amount=order.wallet_amount,
            card_amount=order.card_amount,
            keys=len(order.key_ids),
        )
        await self._after_settlement(order)
        return Ok(order)

    async def _after_settlement(self, order: Order) -> None:
        """Best-effort follow-ups; none of them can undo the order."""
        if order.coupon_id is not None:
            try:
                await self._coupons.redeem(order.coupon_id, order.id, order.owner)
            except Exception:
                log.exception("coupon_redeem_failed", order_id=order.id, coupon_id=order.coupon_id)

        match await self._pool.keys_for_order(order.id):
            case Ok(keys):
                self._notifications.keys_delivered(order, keys)
            case Error(e):
                log.error("delivery_keys_unavailable", order_id=order.id, error=e.message)

    # ═══════════════════════════════════════════════════════════════════════════
    # Alerts
    # ═══════════════════════════════════════════════════════════════════════════

    async def _alert(
        self,
        kind: AlertKind,
        severity: Severity,
        detail: str,
        *,
        checkout_id: CheckoutId | None = None,
        order_id: OrderId | None = None,
        **context: object,
    ) -> None:
        await self._alerts.record(Alert(
            id=new_id("alert"),
            kind=kind,
            severity=severity,
            detail=detail,
            created_at=self._clock(),
            checkout_id=checkout_id,
            order_id=order_id,
            context=context,
        ))


# ═══════════════════════════════════════════════════════════════════════════════
# HTTP mapping
# ═══════════════════════════════════════════════════════════════════════════════


def webhook_status(result: Result[WebhookResult, WebhookError]) -> int:
    """Every handled outcome is acked; only bad input and store failures are not."""
    match result:
        case Ok(_):
            return 200
        case Error(TransientStoreError()):
            return 503
        case Error(_):
            return 400


__all__ = (
    "PaymentReconciler",
    "SettleError",
    "WalletPayError",
    "WebhookError",
    "RefundError",
    "webhook_status",
)
