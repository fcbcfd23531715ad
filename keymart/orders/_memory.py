"""
In-memory order store with the same uniqueness rules as the SQL tables.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime

from kungfu import Error, Ok, Result

from keymart._types import CheckoutId, KeyId, OrderId, ProductId
from keymart.errors import IdempotencyConflict, TransientStoreError
from keymart.orders._types import Order, OrderStatus, PaymentStatus

_REPAYABLE = (PaymentStatus.PENDING, PaymentStatus.FAILED)
_FAILABLE = (PaymentStatus.PENDING, PaymentStatus.PAID)


class MemoryOrderStore:
    def __init__(self) -> None:
        self._orders: dict[OrderId, Order] = {}
        self._lock = asyncio.Lock()

    def _find(self, predicate: Callable[[Order], bool]) -> Order | None:
        return next((o for o in self._orders.values() if predicate(o)), None)

    async def insert(self, order: Order) -> Result[Order, IdempotencyConflict | TransientStoreError]:
        async with self._lock:
            existing = self._find(lambda o: o.checkout_id == order.checkout_id)
            if existing is None and order.paypal_order_id is not None:
                existing = self._find(lambda o: o.paypal_order_id == order.paypal_order_id)
            if existing is not None:
                return Error(IdempotencyConflict(f"checkout {order.checkout_id} already has an order", existing.id))
            self._orders[order.id] = order
        return Ok(order)

    async def get(self, order_id: OrderId) -> Result[Order | None, TransientStoreError]:
        return Ok(self._orders.get(order_id))

    async def find_by_checkout(self, checkout_id: CheckoutId) -> Result[Order | None, TransientStoreError]:
        return Ok(self._find(lambda o: o.checkout_id == checkout_id))

    async def find_by_gateway(
        self,
        paypal_order_id: str | None = None,
        paypal_capture_id: str | None = None,
    ) -> Result[Order | None, TransientStoreError]:
        found = None
        if paypal_order_id is not None:
            found = self._find(lambda o: o.paypal_order_id == paypal_order_id)
        if found is None and paypal_capture_id is not None:
            found = self._find(lambda o: o.paypal_capture_id == paypal_capture_id)
        return Ok(found)

    async def mark_paid(self, order_id: OrderId, capture_id: str | None, at: datetime) -> Result[bool, TransientStoreError]:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.payment_status not in _REPAYABLE:
                return Ok(False)
            self._orders[order_id] = replace(
                order,
                payment_status=PaymentStatus.PAID,
                paypal_capture_id=capture_id or order.paypal_capture_id,
                paid_at=at,
            )
        return Ok(True)

    async def set_status(self, order_id: OrderId, order_status: OrderStatus) -> Result[bool, TransientStoreError]:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return Ok(False)
            self._orders[order_id] = replace(order, order_status=order_status)
        return Ok(True)

    async def mark_failed(self, order_id: OrderId) -> Result[bool, TransientStoreError]:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.payment_status not in _FAILABLE:
                return Ok(False)
            self._orders[order_id] = replace(order, payment_status=PaymentStatus.FAILED)
        return Ok(True)

    async def mark_refunded(self, order_id: OrderId) -> Result[bool, TransientStoreError]:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.payment_status is not PaymentStatus.PAID:
                return Ok(False)
            self._orders[order_id] = replace(
                order,
                payment_status=PaymentStatus.REFUNDED,
                items=tuple(replace(item, refunded_qty=item.qty) for item in order.items),
            )
        return Ok(True)

    async def attach_keys(
        self,
        order_id: OrderId,
        product_id: ProductId,
        key_ids: Sequence[KeyId],
    ) -> Result[None, TransientStoreError]:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is not None:
                self._orders[order_id] = replace(
                    order,
                    items=tuple(
                        replace(item, key_ids=item.key_ids + tuple(key_ids)) if item.product_id == product_id else item
                        for item in order.items
                    ),
                )
        return Ok(None)

    async def discard(self, order_id: OrderId) -> Result[None, TransientStoreError]:
        async with self._lock:
            self._orders.pop(order_id, None)
        return Ok(None)


__all__ = ("MemoryOrderStore",)
