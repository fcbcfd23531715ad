"""
SQLAlchemy order store.

Uniqueness of ``checkout_id`` and ``paypal_order_id`` is enforced by the
table; a collision surfaces as ``IdempotencyConflict``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, cast

from kungfu import Error, Ok, Result
from sqlalchemy import Update, delete, or_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keymart._types import CheckoutId, KeyId, OrderId, ProductId
from keymart.catalog import Owner
from keymart.checkout import PaymentMethod
from keymart.db import OrderItemTable, OrderTable
from keymart.errors import IdempotencyConflict, TransientStoreError, store_error
from keymart.orders._types import Order, OrderItem, OrderStatus, PaymentStatus
from keymart.pricing import DiscountSource

_REPAYABLE = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)
_FAILABLE = (PaymentStatus.PENDING.value, PaymentStatus.PAID.value)


def _to_rows(order: Order) -> tuple[OrderTable, list[OrderItemTable]]:
    row = OrderTable(
        id=order.id,
        checkout_id=order.checkout_id,
        user_id=order.owner.user_id,
        guest_email=order.owner.guest_email,
        payment_method=order.payment_method.value,
        payment_status=order.payment_status.value,
        order_status=order.order_status.value,
        paypal_order_id=order.paypal_order_id,
        paypal_capture_id=order.paypal_capture_id,
        wallet_amount=order.wallet_amount,
        card_amount=order.card_amount,
        grand_total=order.grand_total,
        currency=order.currency,
        coupon_id=order.coupon_id,
        created_at=order.created_at,
        paid_at=order.paid_at,
    )
    items = [
        OrderItemTable(
            order_id=order.id,
            product_id=item.product_id,
            seller_id=item.seller_id,
            name=item.name,
            qty=item.qty,
            original_price=item.original_price,
            discounted_price=item.discounted_price,
            discount_amount=item.discount_amount,
            discount_type=item.discount_type.value,
            discount_source_id=item.discount_source_id,
            key_ids=list(item.key_ids),
            refunded_qty=item.refunded_qty,
        )
        for item in order.items
    ]
    return row, items


def _from_rows(row: OrderTable, items: Sequence[OrderItemTable]) -> Order:
    return Order(
        id=row.id,
        checkout_id=row.checkout_id,
        owner=Owner(user_id=row.user_id, guest_email=row.guest_email),
        items=tuple(
            OrderItem(
                product_id=item.product_id,
                seller_id=item.seller_id,
                name=item.name,
                qty=item.qty,
                original_price=item.original_price,
                discounted_price=item.discounted_price,
                discount_amount=item.discount_amount,
                discount_type=DiscountSource(item.discount_type),
                discount_source_id=item.discount_source_id,
                key_ids=tuple(item.key_ids),
                refunded_qty=item.refunded_qty,
            )
            for item in items
        ),
        payment_method=PaymentMethod(row.payment_method),
        payment_status=PaymentStatus(row.payment_status),
        order_status=OrderStatus(row.order_status),
        wallet_amount=row.wallet_amount,
        card_amount=row.card_amount,
        grand_total=row.grand_total,
        currency=row.currency,
        created_at=row.created_at,
        paypal_order_id=row.paypal_order_id,
        paypal_capture_id=row.paypal_capture_id,
        coupon_id=row.coupon_id,
        paid_at=row.paid_at,
    )


class SQLAlchemyOrderStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _load(self, db: AsyncSession, row: OrderTable | None) -> Order | None:
        if row is None:
            return None
        items = (
            await db.execute(
                select(OrderItemTable).where(OrderItemTable.order_id == row.id).order_by(OrderItemTable.id)
            )
        ).scalars().all()
        return _from_rows(row, items)

    async def _one(self, *criteria: Any) -> Result[Order | None, TransientStoreError]:
        try:
            async with self._session_factory() as db:
                row = await db.scalar(select(OrderTable).where(*criteria))
                return Ok(await self._load(db, row))
        except Exception as e:
            return Error(store_error(e))

    async def _execute(self, stmt: Update) -> Result[int, TransientStoreError]:
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

    async def insert(self, order: Order) -> Result[Order, IdempotencyConflict | TransientStoreError]:
        row, items = _to_rows(order)
        try:
            async with self._session_factory() as db:
                db.add(row)
                await db.flush()
                db.add_all(items)
                await db.commit()
        except IntegrityError:
            match await self.find_by_checkout(order.checkout_id):
                case Ok(existing) if existing is not None:
                    return Error(IdempotencyConflict(f"checkout {order.checkout_id} already has an order", existing.id))
                case _:
                    return Error(IdempotencyConflict(f"gateway order {order.paypal_order_id} already has an order"))
        except Exception as e:
            return Error(store_error(e))
        return Ok(order)

    async def get(self, order_id: OrderId) -> Result[Order | None, TransientStoreError]:
        return await self._one(OrderTable.id == order_id)

    async def find_by_checkout(self, checkout_id: CheckoutId) -> Result[Order | None, TransientStoreError]:
        return await self._one(OrderTable.checkout_id == checkout_id)

    async def find_by_gateway(
        self,
        paypal_order_id: str | None = None,
        paypal_capture_id: str | None = None,
    ) -> Result[Order | None, TransientStoreError]:
        keys = []
        if paypal_order_id is not None:
            keys.append(OrderTable.paypal_order_id == paypal_order_id)
        if paypal_capture_id is not None:
            keys.append(OrderTable.paypal_capture_id == paypal_capture_id)
        if not keys:
            return Ok(None)
        return await self._one(or_(*keys))

    async def mark_paid(self, order_id: OrderId, capture_id: str | None, at: datetime) -> Result[bool, TransientStoreError]:
        values: dict[str, object] = {"payment_status": PaymentStatus.PAID.value, "paid_at": at}
        if capture_id is not None:
            values["paypal_capture_id"] = capture_id
        changed = await self._execute(
            update(OrderTable)
            .where(OrderTable.id == order_id, OrderTable.payment_status.in_(_REPAYABLE))
            .values(**values)
        )
        return changed.map(lambda n: n > 0)

    async def set_status(self, order_id: OrderId, order_status: OrderStatus) -> Result[bool, TransientStoreError]:
        changed = await self._execute(
            update(OrderTable).where(OrderTable.id == order_id).values(order_status=order_status.value)
        )
        return changed.map(lambda n: n > 0)

    async def mark_failed(self, order_id: OrderId) -> Result[bool, TransientStoreError]:
        changed = await self._execute(
            update(OrderTable)
            .where(OrderTable.id == order_id, OrderTable.payment_status.in_(_FAILABLE))
            .values(payment_status=PaymentStatus.FAILED.value)
        )
        return changed.map(lambda n: n > 0)

    async def mark_refunded(self, order_id: OrderId) -> Result[bool, TransientStoreError]:
        try:
            async with self._session_factory() as db:
                cursor = cast(
                    CursorResult[Any],
                    await db.execute(
                        update(OrderTable)
                        .where(OrderTable.id == order_id, OrderTable.payment_status == PaymentStatus.PAID.value)
                        .values(payment_status=PaymentStatus.REFUNDED.value)
                        .execution_options(synchronize_session=False)
                    ),
                )
                if cursor.rowcount == 0:
                    await db.rollback()
                    return Ok(False)
                await db.execute(
                    update(OrderItemTable)
                    .where(OrderItemTable.order_id == order_id)
                    .values(refunded_qty=OrderItemTable.qty)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
                return Ok(True)
        except Exception as e:
            return Error(store_error(e))

    async def attach_keys(
        self,
        order_id: OrderId,
        product_id: ProductId,
        key_ids: Sequence[KeyId],
    ) -> Result[None, TransientStoreError]:
        try:
            async with self._session_factory() as db:
                item = await db.scalar(
                    select(OrderItemTable).where(
                        OrderItemTable.order_id == order_id,
                        OrderItemTable.product_id == product_id,
                    )
                )
                if item is not None:
                    item.key_ids = [*item.key_ids, *key_ids]
                    await db.commit()
                return Ok(None)
        except Exception as e:
            return Error(store_error(e))

    async def discard(self, order_id: OrderId) -> Result[None, TransientStoreError]:
        try:
            async with self._session_factory() as db:
                await db.execute(delete(OrderItemTable).where(OrderItemTable.order_id == order_id))
                await db.execute(delete(OrderTable).where(OrderTable.id == order_id))
                await db.commit()
                return Ok(None)
        except Exception as e:
            return Error(store_error(e))


__all__ = ("SQLAlchemyOrderStore",)
