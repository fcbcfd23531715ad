"""
Order types.

An Order exists only once a payment has been confirmed for its checkout.
The store enforces one Order per checkout and per gateway order id.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Protocol

from kungfu import Result

from keymart._types import Cents, CheckoutId, KeyId, OrderId, ProductId, SellerId
from keymart.catalog import Owner
from keymart.checkout import LineItem, PaymentMethod
from keymart.errors import IdempotencyConflict, TransientStoreError
from keymart.pricing import DiscountSource


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class OrderItem:
    product_id: ProductId
    seller_id: SellerId
    name: str
    qty: int
    original_price: Cents
    discounted_price: Cents
    discount_amount: Cents
    discount_type: DiscountSource
    discount_source_id: str | None = None
    key_ids: tuple[KeyId, ...] = ()
    refunded_qty: int = 0

    @staticmethod
    def from_line(line: LineItem) -> OrderItem:
        return OrderItem(
            product_id=line.product_id,
            seller_id=line.seller_id,
            name=line.name,
            qty=line.qty,
            original_price=line.original_price,
            discounted_price=line.discounted_price,
            discount_amount=line.discount_amount,
            discount_type=line.discount_type,
            discount_source_id=line.discount_source_id,
        )


@dataclass(frozen=True, slots=True)
class Order:
    id: OrderId
    checkout_id: CheckoutId
    owner: Owner
    items: tuple[OrderItem, ...]
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    order_status: OrderStatus
    wallet_amount: Cents
    card_amount: Cents
    grand_total: Cents
    currency: str
    created_at: datetime
    paypal_order_id: str | None = None
    paypal_capture_id: str | None = None
    coupon_id: str | None = None
    paid_at: datetime | None = None

    @property
    def key_ids(self) -> tuple[KeyId, ...]:
        return tuple(key for item in self.items for key in item.key_ids)

    @property
    def seller_ids(self) -> frozenset[SellerId]:
        return frozenset(item.seller_id for item in self.items)

    @property
    def is_fulfilled(self) -> bool:
        return all(len(item.key_ids) == item.qty for item in self.items)


class OrderStore(Protocol):
    async def insert(self, order: Order) -> Result[Order, IdempotencyConflict | TransientStoreError]:
        """Fails ``IdempotencyConflict`` if the checkout or gateway order already has one."""
        ...

    async def get(self, order_id: OrderId) -> Result[Order | None, TransientStoreError]: ...

    async def find_by_checkout(self, checkout_id: CheckoutId) -> Result[Order | None, TransientStoreError]: ...

    async def find_by_gateway(
        self,
        paypal_order_id: str | None = None,
        paypal_capture_id: str | None = None,
    ) -> Result[Order | None, TransientStoreError]: ...

    async def mark_paid(
        self,
        order_id: OrderId,
        capture_id: str | None,
        at: datetime,
    ) -> Result[bool, TransientStoreError]:
        """``payment_status = paid`` only from pending or failed; paid and refunded stay put."""
        ...

    async def set_status(self, order_id: OrderId, order_status: OrderStatus) -> Result[bool, TransientStoreError]:
        """Fulfilment status only; payment status moves through the ``mark_*`` transitions."""
        ...

    async def mark_failed(self, order_id: OrderId) -> Result[bool, TransientStoreError]:
        """``payment_status = failed`` only from pending or paid."""
        ...

    async def mark_refunded(self, order_id: OrderId) -> Result[bool, TransientStoreError]:
        """``payment_status = refunded`` only from paid; every item counted as refunded."""
        ...

    async def attach_keys(
        self,
        order_id: OrderId,
        product_id: ProductId,
        key_ids: Sequence[KeyId],
    ) -> Result[None, TransientStoreError]: ...

    async def discard(self, order_id: OrderId) -> Result[None, TransientStoreError]:
        """Compensation only: remove an order that never completed."""
        ...


__all__ = ("PaymentStatus", "OrderStatus", "OrderItem", "Order", "OrderStore")
