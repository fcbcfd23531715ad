"""
SQLAlchemy checkout store. Status changes are single conditional UPDATEs.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

from kungfu import Error, Ok, Result
from sqlalchemy import Update, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keymart._types import CheckoutId
from keymart.catalog import Owner
from keymart.checkout._types import CheckoutSession, CheckoutStatus, LineItem, PaymentMethod
from keymart.db import CheckoutTable
from keymart.errors import TransientStoreError, store_error
from keymart.pricing import Breakdown, DiscountSource


def _item_to_json(item: LineItem) -> dict[str, object]:
    return {
        "product_id": item.product_id,
        "seller_id": item.seller_id,
        "name": item.name,
        "qty": item.qty,
        "original_price": item.original_price,
        "discounted_price": item.discounted_price,
        "discount_amount": item.discount_amount,
        "discount_type": item.discount_type.value,
        "discount_source_id": item.discount_source_id,
    }


def _item_from_json(data: dict[str, object]) -> LineItem:
    return LineItem(
        product_id=str(data["product_id"]),
        seller_id=str(data["seller_id"]),
        name=str(data["name"]),
        qty=int(str(data["qty"])),
        original_price=int(str(data["original_price"])),
        discounted_price=int(str(data["discounted_price"])),
        discount_amount=int(str(data["discount_amount"])),
        discount_type=DiscountSource(str(data["discount_type"])),
        discount_source_id=str(data["discount_source_id"]) if data.get("discount_source_id") else None,
    )


def _to_row(s: CheckoutSession) -> CheckoutTable:
    return CheckoutTable(
        id=s.id,
        user_id=s.owner.user_id,
        guest_email=s.owner.guest_email,
        status=s.status.value,
        items=[_item_to_json(item) for item in s.items],
        subtotal=s.subtotal,
        bundle_discount=s.breakdown.bundle,
        subscription_discount=s.breakdown.subscription,
        coupon_discount=s.breakdown.coupon,
        total_amount=s.total_amount,
        handling_fee=s.handling_fee,
        grand_total=s.grand_total,
        currency=s.currency,
        bundle_id=s.breakdown.bundle_id,
        coupon_id=s.breakdown.coupon_id,
        coupon_code=s.breakdown.coupon_code,
        payment_method=s.payment_method.value,
        wallet_amount=s.wallet_amount,
        card_amount=s.card_amount,
        paypal_order_id=s.paypal_order_id,
        created_at=s.created_at,
        expires_at=s.expires_at,
        paid_at=s.paid_at,
    )


def _from_row(row: CheckoutTable) -> CheckoutSession:
    return CheckoutSession(
        id=row.id,
        owner=Owner(user_id=row.user_id, guest_email=row.guest_email),
        items=tuple(_item_from_json(item) for item in row.items),
        subtotal=row.subtotal,
        breakdown=Breakdown(
            bundle=row.bundle_discount,
            subscription=row.subscription_discount,
            coupon=row.coupon_discount,
            bundle_id=row.bundle_id,
            coupon_id=row.coupon_id,
            coupon_code=row.coupon_code,
        ),
        total_amount=row.total_amount,
        handling_fee=row.handling_fee,
        grand_total=row.grand_total,
        currency=row.currency,
        payment_method=PaymentMethod(row.payment_method),
        wallet_amount=row.wallet_amount,
        card_amount=row.card_amount,
        status=CheckoutStatus(row.status),
        created_at=row.created_at,
        expires_at=row.expires_at,
        paypal_order_id=row.paypal_order_id,
        paid_at=row.paid_at,
    )


class SQLAlchemyCheckoutStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(self, session: CheckoutSession) -> Result[CheckoutSession, TransientStoreError]:
        try:
            async with self._session_factory() as db:
                db.add(_to_row(session))
                await db.commit()
        except Exception as e:
            return Error(store_error(e))
        return Ok(session)

    async def get(self, checkout_id: CheckoutId) -> Result[CheckoutSession | None, TransientStoreError]:
        try:
            async with self._session_factory() as db:
                row = await db.get(CheckoutTable, checkout_id)
                return Ok(_from_row(row) if row is not None else None)
        except Exception as e:
            return Error(store_error(e))

    async def find_by_gateway(self, paypal_order_id: str) -> Result[CheckoutSession | None, TransientStoreError]:
        try:
            async with self._session_factory() as db:
                row = await db.scalar(select(CheckoutTable).where(CheckoutTable.paypal_order_id == paypal_order_id))
                return Ok(_from_row(row) if row is not None else None)
        except Exception as e:
            return Error(store_error(e))

    async def _execute(self, stmt: Update) -> Result[int, TransientStoreError]:
        """Run one conditional UPDATE; returns the affected row count."""
        try:
            async with self._session_factory() as db:
                cursor = cast(
                    CursorResult[Any],
                    await db.execute(stmt.execution_options(synchronize_session=False)),
                )
                await db.commit()
                return Ok(cursor.rowcount)
        except Exception as e:
            return Error(store_error(e))

    async def transition(
        self,
        checkout_id: CheckoutId,
        source: CheckoutStatus,
        target: CheckoutStatus,
        at: datetime,
    ) -> Result[bool, TransientStoreError]:
        changed = await self._execute(
            update(CheckoutTable)
            .where(CheckoutTable.id == checkout_id, CheckoutTable.status == source.value)
            .values(status=target.value, paid_at=at if target is CheckoutStatus.PAID else None)
        )
        return changed.map(lambda n: n > 0)

    async def link_gateway(self, checkout_id: CheckoutId, paypal_order_id: str) -> Result[bool, TransientStoreError]:
        changed = await self._execute(
            update(CheckoutTable)
            .where(CheckoutTable.id == checkout_id, CheckoutTable.paypal_order_id.is_(None))
            .values(paypal_order_id=paypal_order_id)
        )
        return changed.map(lambda n: n > 0)

    async def expire_overdue(self, at: datetime) -> Result[int, TransientStoreError]:
        return await self._execute(
            update(CheckoutTable)
            .where(
                CheckoutTable.status == CheckoutStatus.PENDING.value,
                CheckoutTable.expires_at <= at,
            )
            .values(status=CheckoutStatus.EXPIRED.value)
        )


__all__ = ("SQLAlchemyCheckoutStore",)
