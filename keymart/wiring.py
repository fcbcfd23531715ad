"""
Wiring - builds the service graph over memory or SQL backends.

    services = build_memory(settings)            # tests, demo
    services = await build_sql(settings)         # sqlite / any async SQLAlchemy URL

    session = await services.checkout.create(cart)
    order = await services.reconciler.pay_with_wallet(session.value.id, cart.owner)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncEngine

from keymart._types import Clock, utcnow
from keymart.catalog import (
    Carts,
    Catalog,
    Coupons,
    MemoryCarts,
    MemoryCatalog,
    MemoryCoupons,
    MemoryPromotions,
    MemorySubscriptions,
    ProductCache,
    Promotions,
    Subscriptions,
    product_cache,
)
from keymart.checkout import CheckoutService, CheckoutStore, MemoryCheckoutStore, SQLAlchemyCheckoutStore
from keymart.config import Settings
from keymart.db import create_database
from keymart.gateway import FakeGateway, PaymentGateway
from keymart.inventory import KeyPool, MemoryKeyPool, SQLAlchemyKeyPool
from keymart.log import get_logger
from keymart.notify import LogNotifier, Notifications, Notifier
from keymart.orders import MemoryOrderStore, OrderStore, SQLAlchemyOrderStore
from keymart.payments import Alerts, LogAlerts, MemoryAlerts, PaymentReconciler
from keymart.pricing import PricingResolver
from keymart.wallet import MemoryWallet, SQLAlchemyWallet, WalletLedger

log = get_logger("wiring")


@dataclass(slots=True)
class Sources:
    """External collaborators the core only reads (coupons: redeem too)."""

    catalog: Catalog = field(default_factory=MemoryCatalog)
    carts: Carts = field(default_factory=MemoryCarts)
    promotions: Promotions = field(default_factory=MemoryPromotions)
    subscriptions: Subscriptions = field(default_factory=MemorySubscriptions)
    coupons: Coupons = field(default_factory=MemoryCoupons)


@dataclass(slots=True)
class Services:
    settings: Settings
    sources: Sources
    products: ProductCache
    pricing: PricingResolver
    pool: KeyPool
    wallet: WalletLedger
    checkouts: CheckoutStore
    orders: OrderStore
    checkout: CheckoutService
    reconciler: PaymentReconciler
    gateway: PaymentGateway
    alerts: Alerts
    notifications: Notifications
    engine: AsyncEngine | None = None

    async def close(self) -> None:
        await self.notifications.drain()
        if self.engine is not None:
            await self.engine.dispose()


def _assemble(
    settings: Settings,
    *,
    sources: Sources,
    pool: KeyPool,
    wallet: WalletLedger,
    checkouts: CheckoutStore,
    orders: OrderStore,
    gateway: PaymentGateway,
    notifier: Notifier,
    alerts: Alerts,
    clock: Clock,
    engine: AsyncEngine | None = None,
) -> Services:
    products = product_cache(
        sources.catalog,
        ttl=settings.catalog_cache_ttl,
        max_size=settings.catalog_cache_size,
    )
    pricing = PricingResolver(
        products=products,
        promotions=sources.promotions,
        subscriptions=sources.subscriptions,
        coupons=sources.coupons,
        settings=settings,
        clock=clock,
    )
    checkout = CheckoutService(
        store=checkouts,
        pricing=pricing,
        pool=pool,
        wallet=wallet,
        gateway=gateway,
        carts=sources.carts,
        settings=settings,
        clock=clock,
    )
    notifications = Notifications(notifier)
    reconciler = PaymentReconciler(
        checkout=checkout,
        checkouts=checkouts,
        orders=orders,
        pool=pool,
        wallet=wallet,
        gateway=gateway,
        coupons=sources.coupons,
        alerts=alerts,
        notifications=notifications,
        settings=settings,
        clock=clock,
    )
    return Services(
        settings=settings,
        sources=sources,
        products=products,
        pricing=pricing,
        pool=pool,
        wallet=wallet,
        checkouts=checkouts,
        orders=orders,
        checkout=checkout,
        reconciler=reconciler,
        gateway=gateway,
        alerts=alerts,
        notifications=notifications,
        engine=engine,
    )


def build_memory(
    settings: Settings | None = None,
    *,
    sources: Sources | None = None,
    gateway: PaymentGateway | None = None,
    notifier: Notifier | None = None,
    alerts: Alerts | None = None,
    clock: Clock = utcnow,
) -> Services:
    settings = settings or Settings()
    services = _assemble(
        settings,
        sources=sources or Sources(),
        pool=MemoryKeyPool(clock),
        wallet=MemoryWallet(clock),
        checkouts=MemoryCheckoutStore(),
        orders=MemoryOrderStore(),
        gateway=gateway or FakeGateway(),
        notifier=notifier or LogNotifier(),
        alerts=alerts or MemoryAlerts(),
        clock=clock,
    )
    log.info("services_built", backend="memory")
    return services


async def build_sql(
    settings: Settings | None = None,
    *,
    sources: Sources | None = None,
    gateway: PaymentGateway | None = None,
    notifier: Notifier | None = None,
    alerts: Alerts | None = None,
    clock: Clock = utcnow,
) -> Services:
    """
    Create the schema at ``settings.database_url`` and wire SQL stores over it.

    Alerts default to the log; pass an ``Alerts`` sink to route them elsewhere.
    """
    settings = settings or Settings()
    session_factory, engine = await create_database(settings.database_url)
    services = _assemble(
        settings,
        sources=sources or Sources(),
        pool=SQLAlchemyKeyPool(session_factory, clock),
        wallet=SQLAlchemyWallet(session_factory, clock),
        checkouts=SQLAlchemyCheckoutStore(session_factory),
        orders=SQLAlchemyOrderStore(session_factory),
        gateway=gateway or FakeGateway(),
        notifier=notifier or LogNotifier(),
        alerts=alerts or LogAlerts(),
        clock=clock,
        engine=engine,
    )
    log.info("services_built", backend="sql", url=engine.url.render_as_string(hide_password=True))
    return services


__all__ = ("Sources", "Services", "build_memory", "build_sql")
