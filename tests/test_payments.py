import asyncio
import json
from decimal import Decimal

import pytest
from kungfu import Error, Ok

from keymart.catalog import Coupon, DiscountKind
from keymart.checkout import CheckoutSession, CheckoutStatus, PaymentMethod
from keymart.errors import (
    NotFound,
    OutOfStock,
    SessionNotPayable,
    SignatureInvalid,
    ValidationError,
)
from keymart.gateway import FakeGateway
from keymart.notify import MemoryNotifier
from keymart.orders import Order, OrderStatus, PaymentStatus
from keymart.payments import (
    CAPTURE_COMPLETED,
    CAPTURE_DENIED,
    CAPTURE_REFUNDED,
    AlertKind,
    MemoryAlerts,
    WebhookOutcome,
    sign,
    webhook_status,
)
from keymart.wiring import Services

from tests.conftest import ALICE, BOB, GUEST, SECRET, FrozenClock, always, cart, stock

STARFALL = (("game", 1), ("dlc", 1))


def event(
    event_type: str,
    paypal_order_id: str | None,
    amount: str = "91.80",
    *,
    capture_id: str = "CAP-1",
    currency: str = "USD",
    event_id: str = "WH-1",
) -> bytes:
    resource: dict[str, object] = {
        "id": capture_id,
        "status": "COMPLETED",
        "amount": {"value": amount, "currency_code": currency},
        "supplementary_data": {"related_ids": {"order_id": paypal_order_id}},
    }
    if event_type == CAPTURE_REFUNDED:
        resource["id"] = f"REF-{capture_id}"
        resource["supplementary_data"] = {"related_ids": {"order_id": paypal_order_id, "capture_id": capture_id}}
    return json.dumps({"id": event_id, "event_type": event_type, "resource": resource}).encode()


def signed(body: bytes) -> dict[str, str]:
    return {"Content-Type": "application/json", "X-Webhook-Signature": sign(body, SECRET)}


async def deliver(services: Services, body: bytes):
    return await services.reconciler.handle_webhook(body, signed(body))


async def card_session(services: Services, owner=BOB, coupon_code: str | None = None) -> CheckoutSession:
    session = (await services.checkout.create(cart(owner, *STARFALL), coupon_code=coupon_code)).unwrap()
    return (await services.checkout.begin_card_payment(session.id)).unwrap()


async def order_of(services: Services, checkout_id: str) -> Order | None:
    return (await services.orders.find_by_checkout(checkout_id)).unwrap()


async def status_of(services: Services, checkout_id: str) -> CheckoutStatus:
    return (await services.checkouts.get(checkout_id)).unwrap().status


@pytest.fixture
async def stocked(services: Services) -> Services:
    await stock(services.pool, "game", 3)
    await stock(services.pool, "dlc", 3)
    return services


# ═══════════════════════════════════════════════════════════════════════════════
# Wallet path
# ═══════════════════════════════════════════════════════════════════════════════


async def test_wallet_payment_settles_and_delivers(
    backend: Services,
    notifier: MemoryNotifier,
    sources,
) -> None:
    services = backend
    await stock(services.pool, "game", 2)
    await stock(services.pool, "dlc", 2)
    await services.wallet.credit("alice", 10_000)
    session = (await services.checkout.create(cart(ALICE, *STARFALL), coupon_code="SAVE10")).unwrap()

    order = (await services.reconciler.pay_with_wallet(session.id, ALICE)).unwrap()

    assert order.payment_method is PaymentMethod.WALLET
    assert order.payment_status is PaymentStatus.PAID
    assert order.order_status is OrderStatus.COMPLETED
    assert order.grand_total == 7_849
    assert order.coupon_id == "cpn-1"
    assert order.is_fulfilled and len(order.key_ids) == 2
    assert await status_of(services, session.id) is CheckoutStatus.PAID
    assert (await services.wallet.balance("alice")).unwrap() == 2_151
    assert (await services.pool.availability("game")).unwrap().available == 1
    assert (await sources.coupons.get_by_code("SAVE10")).used_count == 1

    await services.notifications.drain()
    assert [(order_id, set(keys)) for order_id, keys in notifier.delivered] == [(order.id, set(order.key_ids))]


async def test_wallet_payment_is_idempotent(backend: Services) -> None:
    services = backend
    await stock(services.pool, "game", 2)
    await services.wallet.credit("alice", 10_000)
    session = (await services.checkout.create(cart(ALICE, ("game", 1)))).unwrap()

    first = (await services.reconciler.pay_with_wallet(session.id, ALICE)).unwrap()
    second = (await services.reconciler.pay_with_wallet(session.id, ALICE)).unwrap()

    assert second.id == first.id
    assert (await services.wallet.transactions("alice")).unwrap().total == 2
    assert (await services.pool.availability("game")).unwrap().available == 1


async def test_concurrent_wallet_payments_settle_once(stocked: Services) -> None:
    services = stocked
    await services.wallet.credit("alice", 10_000)
    session = (await services.checkout.create(cart(ALICE, *STARFALL), coupon_code="SAVE10")).unwrap()

    results = await asyncio.gather(*(services.reconciler.pay_with_wallet(session.id, ALICE) for _ in range(3)))

    settled = {r.unwrap().id for r in results if isinstance(r, Ok)}
    assert len(settled) == 1
    assert all(isinstance(r.error, SessionNotPayable) for r in results if isinstance(r, Error))
    assert (await services.wallet.balance("alice")).unwrap() == 10_000 - 7_849
    assert (await services.pool.availability("game")).unwrap().available == 2


async def test_wallet_payment_rolls_back_when_keys_run_out(backend: Services) -> None:
    services = backend
    await stock(services.pool, "game", 1)
    await stock(services.pool, "dlc", 1)
    await services.wallet.credit("alice", 10_000)
    session = (await services.checkout.create(cart(ALICE, *STARFALL), coupon_code="SAVE10")).unwrap()
    await services.pool.allocate("dlc", 1, "ord_elsewhere")

    result = await services.reconciler.pay_with_wallet(session.id, ALICE)

    assert result == Error(OutOfStock("dlc", requested=1, available=0))
    assert await status_of(services, session.id) is CheckoutStatus.PENDING
    assert await order_of(services, session.id) is None
    assert (await services.wallet.balance("alice")).unwrap() == 10_000
    assert (await services.wallet.audit("alice")).unwrap().consistent
    assert (await services.pool.availability("game")).unwrap().available == 1
    assert len((await services.pool.allocate("game", 1, "ord_next")).unwrap()) == 1


async def test_wallet_payment_by_someone_else_is_not_found(stocked: Services) -> None:
    await stocked.wallet.credit("alice", 10_000)
    session = (await stocked.checkout.create(cart(ALICE, ("game", 1)))).unwrap()

    assert await stocked.reconciler.pay_with_wallet(session.id, BOB) == Error(NotFound("checkout", session.id))


async def test_card_session_cannot_be_paid_from_wallet(stocked: Services) -> None:
    session = (await stocked.checkout.create(cart(BOB, ("game", 1)))).unwrap()

    result = await stocked.reconciler.pay_with_wallet(session.id, BOB)

    assert isinstance(result, Error)
    assert isinstance(result.error, ValidationError)


async def test_expired_session_cannot_be_paid(stocked: Services, clock: FrozenClock) -> None:
    await stocked.wallet.credit("alice", 10_000)
    session = (await stocked.checkout.create(cart(ALICE, ("game", 1)))).unwrap()
    clock.advance(minutes=31)

    result = await stocked.reconciler.pay_with_wallet(session.id, ALICE)

    assert result == Error(SessionNotPayable(session.id, "expired"))
    assert (await stocked.wallet.balance("alice")).unwrap() == 10_000


async def test_free_checkout_settles_without_money(stocked: Services, sources) -> None:
    sources.coupons.put(
        Coupon(id="cpn-free", code="FREE", kind=DiscountKind.PERCENTAGE, value=Decimal(100), window=always())
    )
    session = (await stocked.checkout.create(cart(GUEST, ("game", 1)), coupon_code="FREE")).unwrap()

    order = (await stocked.reconciler.pay_with_wallet(session.id, GUEST)).unwrap()

    assert session.grand_total == 0
    assert order.wallet_amount == order.card_amount == 0
    assert len(order.key_ids) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# Webhook path
# ═══════════════════════════════════════════════════════════════════════════════


async def test_capture_completed_creates_the_order(backend: Services, notifier: MemoryNotifier) -> None:
    services = backend
    await stock(services.pool, "game", 2)
    await stock(services.pool, "dlc", 2)
    session = await card_session(services)

    result = (await deliver(services, event(CAPTURE_COMPLETED, session.paypal_order_id))).unwrap()

    assert result.outcome is WebhookOutcome.PROCESSED
    order = await order_of(services, session.id)
    assert order is not None and order.id == result.order_id
    assert order.payment_method is PaymentMethod.PAYPAL
    assert order.card_amount == 9_180
    assert order.paypal_order_id == session.paypal_order_id
    assert order.paypal_capture_id == "CAP-1"
    assert order.order_status is OrderStatus.COMPLETED
    assert len(order.key_ids) == 2
    assert await status_of(services, session.id) is CheckoutStatus.PAID

    await services.notifications.drain()
    assert [order_id for order_id, _ in notifier.delivered] == [order.id]


async def test_redelivered_capture_is_a_duplicate(backend: Services) -> None:
    services = backend
    await stock(services.pool, "game", 2)
    await stock(services.pool, "dlc", 2)
    session = await card_session(services)
    body = event(CAPTURE_COMPLETED, session.paypal_order_id)

    first = (await deliver(services, body)).unwrap()
    second = (await deliver(services, body)).unwrap()

    assert second.outcome is WebhookOutcome.DUPLICATE
    assert second.order_id == first.order_id
    assert (await services.pool.availability("game")).unwrap().available == 1


async def test_concurrent_deliveries_settle_once(backend: Services, alerts: MemoryAlerts) -> None:
    services = backend
    await stock(services.pool, "game", 3)
    await stock(services.pool, "dlc", 3)
    session = await card_session(services)
    body = event(CAPTURE_COMPLETED, session.paypal_order_id)

    results = await asyncio.gather(*(deliver(services, body) for _ in range(3)))

    outcomes = [r.unwrap().outcome for r in results]
    assert outcomes.count(WebhookOutcome.PROCESSED) == 1
    assert WebhookOutcome.LATE not in outcomes
    assert set(outcomes) <= {WebhookOutcome.PROCESSED, WebhookOutcome.DUPLICATE}
    assert alerts.alerts == []
    assert (await services.pool.availability("game")).unwrap().available == 2


async def test_wallet_and_card_split_settles_both_parts(stocked: Services) -> None:
    await stocked.wallet.credit("alice", 2_000)
    session = await card_session(stocked, owner=ALICE, coupon_code="SAVE10")
    assert (session.wallet_amount, session.card_amount) == (2_000, 5_849)

    result = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id, "58.49"))).unwrap()

    assert result.outcome is WebhookOutcome.PROCESSED
    order = await order_of(stocked, session.id)
    assert order.payment_method is PaymentMethod.WALLET_CARD
    assert (order.wallet_amount, order.card_amount) == (2_000, 5_849)
    assert (await stocked.wallet.balance("alice")).unwrap() == 0


async def test_amount_within_tolerance_is_accepted(stocked: Services) -> None:
    session = await card_session(stocked)

    result = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id, "91.79"))).unwrap()

    assert result.outcome is WebhookOutcome.PROCESSED


@pytest.mark.parametrize(("amount", "currency"), [("50.00", "USD"), ("91.80", "EUR")])
async def test_mismatched_capture_is_flagged(
    stocked: Services,
    alerts: MemoryAlerts,
    amount: str,
    currency: str,
) -> None:
    session = await card_session(stocked)

    result = await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id, amount, currency=currency))

    assert result.unwrap().outcome is WebhookOutcome.MISMATCH
    assert webhook_status(result) == 200
    assert await order_of(stocked, session.id) is None
    assert await status_of(stocked, session.id) is CheckoutStatus.PENDING
    [alert] = alerts.of_kind(AlertKind.RECONCILIATION_MISMATCH)
    assert alert.checkout_id == session.id


async def test_capture_after_expiry_is_late(stocked: Services, alerts: MemoryAlerts, clock: FrozenClock) -> None:
    session = await card_session(stocked)
    clock.advance(minutes=31)

    result = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id))).unwrap()

    assert result.outcome is WebhookOutcome.LATE
    assert await order_of(stocked, session.id) is None
    assert await status_of(stocked, session.id) is CheckoutStatus.EXPIRED
    assert len(alerts.of_kind(AlertKind.LATE_PAYMENT)) == 1


async def test_capture_for_cancelled_session_is_late(stocked: Services, alerts: MemoryAlerts) -> None:
    session = await card_session(stocked)
    await stocked.checkout.cancel(session.id, BOB)

    result = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id))).unwrap()

    assert result.outcome is WebhookOutcome.LATE
    assert alerts.of_kind(AlertKind.LATE_PAYMENT)[0].checkout_id == session.id


async def test_capture_for_unknown_gateway_order_is_an_orphan(services: Services, alerts: MemoryAlerts) -> None:
    result = await deliver(services, event(CAPTURE_COMPLETED, "PAYID-UNKNOWN"))

    assert result.unwrap().outcome is WebhookOutcome.ORPHAN
    assert webhook_status(result) == 200
    assert len(alerts.of_kind(AlertKind.ORPHAN_EVENT)) == 1


async def test_bad_signature_is_rejected(stocked: Services) -> None:
    session = await card_session(stocked)
    body = event(CAPTURE_COMPLETED, session.paypal_order_id)

    forged = await stocked.reconciler.handle_webhook(body, {"X-Webhook-Signature": sign(body, "wrong-secret")})
    unsigned = await stocked.reconciler.handle_webhook(body, {})

    assert forged == Error(SignatureInvalid())
    assert unsigned == Error(SignatureInvalid())
    assert webhook_status(forged) == 400
    assert await order_of(stocked, session.id) is None


async def test_prefixed_signature_is_accepted(stocked: Services) -> None:
    session = await card_session(stocked)
    body = event(CAPTURE_COMPLETED, session.paypal_order_id)

    result = await stocked.reconciler.handle_webhook(body, {"x-webhook-signature": f"sha256={sign(body, SECRET)}"})

    assert result.unwrap().outcome is WebhookOutcome.PROCESSED


async def test_malformed_event_is_rejected(services: Services) -> None:
    body = json.dumps({"id": "WH-9", "resource": {}}).encode()

    result = await deliver(services, body)

    assert isinstance(result, Error)
    assert isinstance(result.error, ValidationError)
    assert webhook_status(result) == 400


async def test_capture_without_amount_is_rejected(services: Services) -> None:
    body = json.dumps({"id": "WH-9", "event_type": CAPTURE_COMPLETED, "resource": {"id": "CAP-1"}}).encode()

    result = await deliver(services, body)

    assert isinstance(result, Error)
    assert result.error.field == "resource.amount"


async def test_other_event_types_are_ignored(services: Services) -> None:
    body = json.dumps({"id": "WH-9", "event_type": "CHECKOUT.ORDER.APPROVED"}).encode()

    result = (await deliver(services, body)).unwrap()

    assert result.outcome is WebhookOutcome.IGNORED
    assert result.event_type == "CHECKOUT.ORDER.APPROVED"


# ═══════════════════════════════════════════════════════════════════════════════
# Captured but unfulfillable
# ═══════════════════════════════════════════════════════════════════════════════


async def test_out_of_stock_after_capture_refunds_the_buyer(
    backend: Services,
    gateway: FakeGateway,
    alerts: MemoryAlerts,
    notifier: MemoryNotifier,
) -> None:
    services = backend
    await stock(services.pool, "game", 1)
    await stock(services.pool, "dlc", 1)
    session = await card_session(services)
    await services.pool.allocate("dlc", 1, "ord_elsewhere")
    body = event(CAPTURE_COMPLETED, session.paypal_order_id)

    result = (await deliver(services, body)).unwrap()

    assert result.outcome is WebhookOutcome.UNFULFILLED
    assert gateway.refunds == [("CAP-1", 9_180)]
    assert await status_of(services, session.id) is CheckoutStatus.CANCELLED
    assert (await services.pool.availability("game")).unwrap().available == 1

    record = await order_of(services, session.id)
    assert record is not None and record.id == result.order_id
    assert record.payment_status is PaymentStatus.REFUNDED
    assert record.order_status is OrderStatus.CANCELLED
    assert all(item.refunded_qty == item.qty for item in record.items)
    assert len(alerts.of_kind(AlertKind.OUT_OF_STOCK_AFTER_CAPTURE)) == 1

    await services.notifications.drain()
    assert [order_id for order_id, _ in notifier.failed] == [record.id]

    replay = (await deliver(services, body)).unwrap()
    assert replay.outcome is WebhookOutcome.DUPLICATE
    assert gateway.refunds == [("CAP-1", 9_180)]
    assert (await services.orders.get(record.id)).unwrap().payment_status is PaymentStatus.REFUNDED


async def test_spent_wallet_after_capture_refunds_the_card_part(
    stocked: Services,
    gateway: FakeGateway,
    alerts: MemoryAlerts,
) -> None:
    await stocked.wallet.credit("alice", 2_000)
    session = await card_session(stocked, owner=ALICE, coupon_code="SAVE10")
    await stocked.wallet.debit("alice", 1_500, order_ref="ord_elsewhere")

    result = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id, "58.49"))).unwrap()

    assert result.outcome is WebhookOutcome.UNFULFILLED
    assert gateway.refunds == [("CAP-1", 5_849)]
    assert (await stocked.wallet.balance("alice")).unwrap() == 500
    assert len(alerts.of_kind(AlertKind.INSUFFICIENT_FUNDS_AFTER_CAPTURE)) == 1
    assert (await stocked.pool.availability("game")).unwrap().available == 3


async def test_failed_automatic_refund_is_alerted(
    stocked: Services,
    gateway: FakeGateway,
    alerts: MemoryAlerts,
) -> None:
    session = await card_session(stocked)
    await stocked.pool.allocate("dlc", 3, "ord_elsewhere")
    gateway.fail_with = TimeoutError("gateway timed out")

    result = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id))).unwrap()

    assert result.outcome is WebhookOutcome.UNFULFILLED
    [failed] = alerts.of_kind(AlertKind.REFUND_FAILED)
    assert "gateway timed out" in failed.detail


# ═══════════════════════════════════════════════════════════════════════════════
# Denied & refunded events
# ═══════════════════════════════════════════════════════════════════════════════


async def test_denied_capture_marks_payment_failed(stocked: Services) -> None:
    session = await card_session(stocked)
    settled = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id))).unwrap()

    denied = (await deliver(stocked, event(CAPTURE_DENIED, session.paypal_order_id, event_id="WH-2"))).unwrap()

    assert denied.outcome is WebhookOutcome.PROCESSED
    order = (await stocked.orders.get(settled.order_id)).unwrap()
    assert order.payment_status is PaymentStatus.FAILED

    restored = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id, event_id="WH-3"))).unwrap()
    assert restored.outcome is WebhookOutcome.PROCESSED
    assert (await stocked.orders.get(settled.order_id)).unwrap().payment_status is PaymentStatus.PAID


async def test_denied_capture_without_order_is_ignored(services: Services) -> None:
    result = (await deliver(services, event(CAPTURE_DENIED, "PAYID-UNKNOWN"))).unwrap()

    assert result.outcome is WebhookOutcome.IGNORED


async def test_refunded_at_gateway_unwinds_the_order(stocked: Services, gateway: FakeGateway) -> None:
    await stocked.wallet.credit("alice", 2_000)
    session = await card_session(stocked, owner=ALICE, coupon_code="SAVE10")
    settled = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id, "58.49"))).unwrap()
    body = event(CAPTURE_REFUNDED, session.paypal_order_id, "58.49", event_id="WH-2")

    result = (await deliver(stocked, body)).unwrap()
    replay = (await deliver(stocked, body)).unwrap()

    assert result.outcome is WebhookOutcome.PROCESSED
    assert replay.outcome is WebhookOutcome.DUPLICATE
    order = (await stocked.orders.get(settled.order_id)).unwrap()
    assert order.payment_status is PaymentStatus.REFUNDED
    assert order.order_status is OrderStatus.CANCELLED
    assert (await stocked.wallet.balance("alice")).unwrap() == 2_000
    assert gateway.refunds == []
    keys = (await stocked.pool.keys_for_order(order.id)).unwrap()
    assert keys and all(k.is_refunded for k in keys)


# ═══════════════════════════════════════════════════════════════════════════════
# Refunds
# ═══════════════════════════════════════════════════════════════════════════════


async def test_refund_wallet_order(backend: Services) -> None:
    services = backend
    await stock(services.pool, "game", 1)
    await services.wallet.credit("alice", 10_000)
    session = (await services.checkout.create(cart(ALICE, ("game", 1)))).unwrap()
    order = (await services.reconciler.pay_with_wallet(session.id, ALICE)).unwrap()

    refunded = (await services.reconciler.refund_order(order.id, "changed my mind")).unwrap()
    again = (await services.reconciler.refund_order(order.id, "changed my mind")).unwrap()

    assert refunded.payment_status is PaymentStatus.REFUNDED
    assert refunded.order_status is OrderStatus.CANCELLED
    assert again.id == refunded.id
    assert (await services.wallet.balance("alice")).unwrap() == 10_000
    assert (await services.wallet.transactions("alice")).unwrap().total == 3
    assert (await services.pool.availability("game")).unwrap().available == 0
    assert isinstance(await services.pool.allocate("game", 1, "ord_next"), Error)


async def test_refund_card_order_refunds_at_gateway(stocked: Services, gateway: FakeGateway) -> None:
    session = await card_session(stocked)
    settled = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id))).unwrap()

    refunded = (await stocked.reconciler.refund_order(settled.order_id, "duplicate purchase")).unwrap()

    assert refunded.payment_status is PaymentStatus.REFUNDED
    assert gateway.refunds == [("CAP-1", 9_180)]


async def test_refund_unknown_order_is_not_found(services: Services) -> None:
    assert await services.reconciler.refund_order("ord_missing", "x") == Error(NotFound("order", "ord_missing"))


async def test_refund_failed_payment_is_rejected(stocked: Services) -> None:
    session = await card_session(stocked)
    settled = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id))).unwrap()
    await deliver(stocked, event(CAPTURE_DENIED, session.paypal_order_id, event_id="WH-2"))

    result = await stocked.reconciler.refund_order(settled.order_id, "x")

    assert isinstance(result, Error)
    assert isinstance(result.error, ValidationError)


async def test_refunded_order_stays_refunded_after_denied_and_completed(
    backend: Services,
    gateway: FakeGateway,
) -> None:
    services = backend
    await stock(services.pool, "game", 2)
    await stock(services.pool, "dlc", 2)
    session = await card_session(services)
    settled = (await deliver(services, event(CAPTURE_COMPLETED, session.paypal_order_id))).unwrap()
    (await services.reconciler.refund_order(settled.order_id, "duplicate purchase")).unwrap()

    denied = (await deliver(services, event(CAPTURE_DENIED, session.paypal_order_id, event_id="WH-2"))).unwrap()
    completed = (await deliver(services, event(CAPTURE_COMPLETED, session.paypal_order_id, event_id="WH-3"))).unwrap()
    again = (await services.reconciler.refund_order(settled.order_id, "duplicate purchase")).unwrap()

    assert denied.outcome is WebhookOutcome.DUPLICATE
    assert completed.outcome is WebhookOutcome.DUPLICATE
    assert again.payment_status is PaymentStatus.REFUNDED
    order = (await services.orders.get(settled.order_id)).unwrap()
    assert order.payment_status is PaymentStatus.REFUNDED
    assert order.order_status is OrderStatus.CANCELLED
    assert gateway.refunds == [("CAP-1", 9_180)]


async def test_unfulfilled_order_stays_refunded_after_denied_and_completed(
    backend: Services,
    gateway: FakeGateway,
) -> None:
    services = backend
    await stock(services.pool, "game", 1)
    await stock(services.pool, "dlc", 1)
    session = await card_session(services)
    await services.pool.allocate("dlc", 1, "ord_elsewhere")
    unfulfilled = (await deliver(services, event(CAPTURE_COMPLETED, session.paypal_order_id))).unwrap()
    assert unfulfilled.outcome is WebhookOutcome.UNFULFILLED

    denied = (await deliver(services, event(CAPTURE_DENIED, session.paypal_order_id, event_id="WH-2"))).unwrap()
    completed = (await deliver(services, event(CAPTURE_COMPLETED, session.paypal_order_id, event_id="WH-3"))).unwrap()
    again = (await services.reconciler.refund_order(unfulfilled.order_id, "x")).unwrap()

    assert denied.outcome is WebhookOutcome.DUPLICATE
    assert completed.outcome is WebhookOutcome.DUPLICATE
    assert again.payment_status is PaymentStatus.REFUNDED
    order = (await services.orders.get(unfulfilled.order_id)).unwrap()
    assert order.payment_status is PaymentStatus.REFUNDED
    assert gateway.refunds == [("CAP-1", 9_180)]


async def test_refund_event_on_failed_order_is_a_duplicate(stocked: Services, gateway: FakeGateway) -> None:
    session = await card_session(stocked)
    settled = (await deliver(stocked, event(CAPTURE_COMPLETED, session.paypal_order_id))).unwrap()
    await deliver(stocked, event(CAPTURE_DENIED, session.paypal_order_id, event_id="WH-2"))

    result = (await deliver(stocked, event(CAPTURE_REFUNDED, session.paypal_order_id, event_id="WH-3"))).unwrap()

    assert result.outcome is WebhookOutcome.DUPLICATE
    assert (await stocked.orders.get(settled.order_id)).unwrap().payment_status is PaymentStatus.FAILED
    assert gateway.refunds == []
