"""
Database layer - SQLAlchemy tables for the SQL-backed stores.

Note: one table per aggregate. JSON columns hold the frozen line items of
checkouts; order items get their own table so keys can be attached per line.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ═══════════════════════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════════════════════

class Base(DeclarativeBase):
    pass


# ═══════════════════════════════════════════════════════════════════════════════
# Inventory
# ═══════════════════════════════════════════════════════════════════════════════

class StockTable(Base):
    """Advisory counters, updated in the same transaction as the pool."""
    __tablename__ = "product_stock"

    product_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_keys: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_keys: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class LicenseKeyTable(Base):
    __tablename__ = "license_keys"
    __table_args__ = (UniqueConstraint("product_id", "fingerprint", name="uq_key_fingerprint"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    ciphertext: Mapped[str] = mapped_column(Text, nullable=False)

    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_refunded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_to_order: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Wallet
# ═══════════════════════════════════════════════════════════════════════════════

class WalletTable(Base):
    __tablename__ = "wallets"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class WalletTransactionTable(Base):
    __tablename__ = "wallet_transactions"
    __table_args__ = (UniqueConstraint("user_id", "refund_ref", name="uq_wallet_refund_ref"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("wallets.user_id"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    order_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    refund_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ═══════════════════════════════════════════════════════════════════════════════
# Checkout
# ═══════════════════════════════════════════════════════════════════════════════

class CheckoutTable(Base):
    __tablename__ = "checkout_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    # Frozen line items (list of dicts)
    items: Mapped[list[dict[str, object]]] = mapped_column(JSON, nullable=False)

    # Frozen price snapshot
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    bundle_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    subscription_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    coupon_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    handling_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    grand_total: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    bundle_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    coupon_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    coupon_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Payment split
    payment_method: Mapped[str] = mapped_column(String(16), nullable=False)
    wallet_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    card_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paypal_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════

class OrderTable(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    checkout_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    payment_method: Mapped[str] = mapped_column(String(16), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(16), nullable=False)
    order_status: Mapped[str] = mapped_column(String(16), nullable=False)
    paypal_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    paypal_capture_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)

    wallet_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    card_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    grand_total: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    coupon_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class OrderItemTable(Base):
    __tablename__ = "order_items"
    __table_args__ = (UniqueConstraint("order_id", "product_id", name="uq_order_item"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    original_price: Mapped[int] = mapped_column(Integer, nullable=False)
    discounted_price: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    discount_source_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    key_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    refunded_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ═══════════════════════════════════════════════════════════════════════════════
# Database Setup
# ═══════════════════════════════════════════════════════════════════════════════

async def create_database(
    url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create database and return (session_factory, engine)."""
    engine = create_async_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False), engine


__all__ = (
    "Base",
    "StockTable",
    "LicenseKeyTable",
    "WalletTable",
    "WalletTransactionTable",
    "CheckoutTable",
    "OrderTable",
    "OrderItemTable",
    "create_database",
)
