from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from keymart.catalog import (
    BundleDeal,
    CartLine,
    CartSnapshot,
    Coupon,
    DiscountKind,
    MemoryCarts,
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
from keymart.gateway import FakeGateway
from keymart.inventory import KeyPool, NewKey
from keymart.notify import MemoryNotifier
from keymart.payments import MemoryAlerts
from keymart.wiring import Services, Sources, build_memory, build_sql

NOW = datetime(2026, 3, 2, 12, 0, 0)
SECRET = "test-webhook-secret"

ALICE = Owner(user_id="alice")
BOB = Owner(user_id="bob")
GUEST = Owner(guest_email="guest@example.com")


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, at: datetime = NOW) -> None:
        self.now = at

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


def always() -> Window:
    return Window(starts_at=NOW - timedelta(days=30), ends_at=NOW + timedelta(days=30))


def cart(owner: Owner, *lines: tuple[str, int]) -> CartSnapshot:
    sellers = {"game": "seller-a", "dlc": "seller-b", "tool": "seller-a"}
    return CartSnapshot(
        owner=owner,
        lines=tuple(CartLine(pid, sellers.get(pid, "seller-x"), qty, 0) for pid, qty in lines),
    )


async def stock(pool: KeyPool, product_id: str, count: int) -> None:
    result = await pool.add_keys(
        product_id,
        [NewKey.from_plaintext(f"{product_id}-KEY-{i:04d}") for i in range(count)],
    )
    assert result.unwrap().added == count


# ═══════════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return (
        Settings()
        .with_webhook_secret(SECRET)
        .with_subscription_discount(5)
        .with_handling_fee(HandlingFee.percentage_of(2))
    )


@pytest.fixture
def sources() -> Sources:
    """$60 game + $40 dlc form a 10% bundle; alice subscribes; SAVE10 takes 10%."""
    return Sources(
        catalog=MemoryCatalog([
            Product(id="game", seller_id="seller-a", name="Starfall", price=6_000),
            Product(id="dlc", seller_id="seller-b", name="Starfall: Abyss", price=4_000),
            Product(id="tool", seller_id="seller-a", name="Mod Kit", price=2_000, discount_percent=Decimal(25)),
        ]),
        carts=MemoryCarts(),
        promotions=MemoryPromotions(
            bundles=[
                BundleDeal(
                    id="bundle-starfall",
                    product_ids=frozenset({"game", "dlc"}),
                    kind=DiscountKind.PERCENTAGE,
                    value=Decimal(10),
                    window=always(),
                ),
            ],
        ),
        subscriptions=MemorySubscriptions([Subscription(user_id="alice", status="active")]),
        coupons=MemoryCoupons([
            Coupon(id="cpn-1", code="SAVE10", kind=DiscountKind.PERCENTAGE, value=Decimal(10), window=always()),
        ]),
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> MemoryNotifier:
    return MemoryNotifier()


@pytest.fixture
def alerts() -> MemoryAlerts:
    return MemoryAlerts()


@pytest.fixture
async def services(
    settings: Settings,
    sources: Sources,
    gateway: FakeGateway,
    notifier: MemoryNotifier,
    alerts: MemoryAlerts,
    clock: FrozenClock,
) -> AsyncIterator[Services]:
    built = build_memory(settings, sources=sources, gateway=gateway, notifier=notifier, alerts=alerts, clock=clock)
    yield built
    await built.close()


@pytest.fixture
async def sql_services(
    tmp_path,
    settings: Settings,
    sources: Sources,
    gateway: FakeGateway,
    notifier: MemoryNotifier,
    alerts: MemoryAlerts,
    clock: FrozenClock,
) -> AsyncIterator[Services]:
    built = await build_sql(
        settings.with_database_url(f"sqlite+aiosqlite:///{tmp_path / 'keymart.db'}"),
        sources=sources,
        gateway=gateway,
        notifier=notifier,
        alerts=alerts,
        clock=clock,
    )
    yield built
    await built.close()


@pytest.fixture(params=["memory", "sql"])
def backend(request: pytest.FixtureRequest, services: Services, sql_services: Services) -> Services:
    """Runs a test once per storage backend."""
    return services if request.param == "memory" else sql_services
