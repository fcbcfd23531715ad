"""
Marketplace - quote, pay and fulfil license-key orders end to end.

Level 5: keymart.payments (reconciler saga)
Level 4: keymart.checkout, keymart.pricing
Level 2: kungfu.Result

    python -m examples.marketplace_demo
"""

import asyncio
import json
from datetime import timedelta
from decimal import Decimal

from kungfu import Error, Ok

from keymart._types import utcnow
from keymart.catalog import (
    BundleDeal,
    CartLine,
    CartSnapshot,
    Coupon,
    DiscountKind,
    MemoryCatalog,
    MemoryCoupons,
    MemoryPromotions,
    MemorySubscriptions,
    Owner,
    Product,
    Subscription,
    Window,
)
from keymart.config import HandlingFee, Settings
from keymart.inventory import NewKey
from keymart.log import configure
from keymart.money import format_amount
from keymart.payments import CAPTURE_COMPLETED, sign
from keymart.wiring import Services, Sources, build_memory

ALICE = Owner(user_id="alice")
BOB = Owner(user_id="bob")


def banner(title: str) -> None:
    print(f"\n{'─' * 50}\n{title}\n{'─' * 50}")


def sources() -> Sources:
    now = utcnow()
    window = Window(starts_at=now - timedelta(days=1), ends_at=now + timedelta(days=7))
    return Sources(
        catalog=MemoryCatalog([
            Product(id="game", seller_id="seller-a", name="Starfall", price=6_000),
            Product(id="dlc", seller_id="seller-b", name="Starfall: Abyss", price=4_000),
        ]),
        promotions=MemoryPromotions(bundles=[
            BundleDeal(
                id="bundle-starfall",
                product_ids=frozenset({"game", "dlc"}),
                kind=DiscountKind.PERCENTAGE,
                value=Decimal(10),
                window=window,
            ),
        ]),
        subscriptions=MemorySubscriptions([Subscription(user_id="alice", status="active")]),
        coupons=MemoryCoupons([
            Coupon(id="cpn-1", code="SAVE10", kind=DiscountKind.PERCENTAGE, value=Decimal(10), window=window),
        ]),
    )


def starfall(owner: Owner) -> CartSnapshot:
    return CartSnapshot(
        owner=owner,
        lines=(CartLine("game", "seller-a", 1, 6_000), CartLine("dlc", "seller-b", 1, 4_000)),
    )


async def wallet_checkout(services: Services) -> None:
    banner("Wallet: alice pays from her balance")

    await services.wallet.credit("alice", 10_000, note="top-up")
    session = (await services.checkout.create(starfall(ALICE), coupon_code="SAVE10")).unwrap()

    b = session.breakdown
    print(f"  subtotal      {format_amount(session.subtotal):>8}")
    print(f"  bundle        {format_amount(-b.bundle):>8}")
    print(f"  subscription  {format_amount(-b.subscription):>8}")
    print(f"  coupon        {format_amount(-b.coupon):>8}")
    print(f"  handling fee  {format_amount(session.handling_fee):>8}")
    print(f"  grand total   {format_amount(session.grand_total):>8}  ({session.payment_method.value})")

    match await services.reconciler.pay_with_wallet(session.id, ALICE):
        case Ok(order):
            print(f"\n✓ Order {order.id}: {len(order.key_ids)} keys delivered")
        case Error(e):
            print(f"\n✗ Failed: {e.message}")

    balance = (await services.wallet.balance("alice")).unwrap()
    print(f"  wallet balance: {format_amount(balance)}")


async def card_checkout(services: Services) -> None:
    banner("PayPal: bob pays, the gateway calls back")

    session = (await services.checkout.create(starfall(BOB))).unwrap()
    session = (await services.checkout.begin_card_payment(session.id)).unwrap()
    print(f"  gateway order {session.paypal_order_id} for {format_amount(session.card_amount)}")

    body = json.dumps({
        "id": "WH-DEMO-1",
        "event_type": CAPTURE_COMPLETED,
        "resource": {
            "id": "CAP-DEMO-1",
            "amount": {"value": format_amount(session.card_amount), "currency_code": session.currency},
            "supplementary_data": {"related_ids": {"order_id": session.paypal_order_id}},
        },
    }).encode()
    headers = {"X-Webhook-Signature": sign(body, services.settings.webhook_secret)}

    for attempt in (1, 2):
        result = (await services.reconciler.handle_webhook(body, headers)).unwrap()
        print(f"  delivery #{attempt}: {result.outcome.value} (order {result.order_id})")

    banner("Refund: bob changes his mind")

    order = (await services.orders.find_by_checkout(session.id)).unwrap()
    refunded = (await services.reconciler.refund_order(order.id, "changed mind")).unwrap()
    stock = (await services.pool.availability("game")).unwrap()
    print(f"  order {refunded.id}: {refunded.payment_status.value}")
    print(f"  game keys left: {stock.available}/{stock.total} (refunded keys are never reissued)")


async def main() -> None:
    settings = (
        Settings()
        .with_subscription_discount(5)
        .with_handling_fee(HandlingFee.percentage_of(2))
        .with_logging(level="WARNING", json=False)
    )
    configure(settings)

    services = build_memory(settings, sources=sources())
    for product_id in ("game", "dlc"):
        await services.pool.add_keys(
            product_id,
            [NewKey.from_plaintext(f"{product_id.upper()}-{i:04d}") for i in range(3)],
        )

    await wallet_checkout(services)
    await card_checkout(services)
    await services.close()


if __name__ == "__main__":
    asyncio.run(main())
