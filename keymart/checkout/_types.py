"""
Checkout Session types - the frozen price snapshot and its state machine.

    pending ──(payment confirmed)──▶ paid
       │
       ├──(ttl elapsed, on read)───▶ expired
       └──(owner cancels)──────────▶ cancelled

Every state but ``pending`` is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Protocol

from kungfu import Result

from keymart._types import Cents, CheckoutId, ProductId, SellerId
from keymart.catalog import Owner
from keymart.errors import TransientStoreError
from keymart.pricing import Breakdown, DiscountSource, QuoteLine


class CheckoutStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentMethod(StrEnum):
    WALLET = "Wallet"
    CARD = "Card"
    PAYPAL = "PayPal"
    WALLET_CARD = "Wallet+Card"

    @property
    def uses_wallet(self) -> bool:
        return self in (PaymentMethod.WALLET, PaymentMethod.WALLET_CARD)

    @property
    def uses_gateway(self) -> bool:
        return self is not PaymentMethod.WALLET


@dataclass(frozen=True, slots=True)
class LineItem:
    """One priced line, frozen at checkout creation."""

    product_id: ProductId
    seller_id: SellerId
    name: str
    qty: int
    original_price: Cents
    discounted_price: Cents
    discount_amount: Cents
    discount_type: DiscountSource
    discount_source_id: str | None = None

    @property
    def line_total(self) -> Cents:
        return self.discounted_price * self.qty

    @staticmethod
    def from_quote(line: QuoteLine) -> LineItem:
        return LineItem(
            product_id=line.product_id,
            seller_id=line.seller_id,
            name=line.name,
            qty=line.price.quantity,
            original_price=line.price.original_price,
            discounted_price=line.price.discounted_price,
            discount_amount=line.price.discount_amount,
            discount_type=line.price.discount_type,
            discount_source_id=line.price.discount_source_id,
        )


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    """
    Invariants: ``wallet_amount + card_amount == grand_total`` and
    ``grand_total >= 0``. Only ``status``, ``paid_at`` and
    ``paypal_order_id`` ever change after creation.
    """

    id: CheckoutId
    owner: Owner
    items: tuple[LineItem, ...]
    subtotal: Cents
    breakdown: Breakdown
    total_amount: Cents
    handling_fee: Cents
    grand_total: Cents
    currency: str
    payment_method: PaymentMethod
    wallet_amount: Cents
    card_amount: Cents
    status: CheckoutStatus
    created_at: datetime
    expires_at: datetime
    paypal_order_id: str | None = None
    paid_at: datetime | None = None

    def is_overdue(self, at: datetime) -> bool:
        return self.status is CheckoutStatus.PENDING and at >= self.expires_at

    @property
    def is_pending(self) -> bool:
        return self.status is CheckoutStatus.PENDING


def split_payment(
    grand_total: Cents,
    balance: Cents,
    rail: PaymentMethod,
    *,
    guest: bool = False,
) -> tuple[PaymentMethod, Cents, Cents]:
    """
    Decide ``(method, wallet_amount, card_amount)``.

    Example:
        split_payment(7849, 10_000, PaymentMethod.PAYPAL)  # (Wallet, 7849, 0)
        split_payment(7849, 2_000, PaymentMethod.PAYPAL)   # (Wallet+Card, 2000, 5849)
        split_payment(7849, 0, PaymentMethod.CARD)         # (Card, 0, 7849)

    Note: a zero grand total is settled through the wallet path with nothing
    debited, guests included.
    """
    if grand_total == 0:
        return PaymentMethod.WALLET, 0, 0
    if guest or balance <= 0:
        return rail, 0, grand_total
    if balance >= grand_total:
        return PaymentMethod.WALLET, grand_total, 0
    return PaymentMethod.WALLET_CARD, balance, grand_total - balance


class CheckoutStore(Protocol):
    async def insert(self, session: CheckoutSession) -> Result[CheckoutSession, TransientStoreError]: ...

    async def get(self, checkout_id: CheckoutId) -> Result[CheckoutSession | None, TransientStoreError]: ...

    async def find_by_gateway(self, paypal_order_id: str) -> Result[CheckoutSession | None, TransientStoreError]: ...

    async def transition(
        self,
        checkout_id: CheckoutId,
        source: CheckoutStatus,
        target: CheckoutStatus,
        at: datetime,
    ) -> Result[bool, TransientStoreError]:
        """Conditional ``status: source -> target``. False if status was not ``source``."""
        ...

    async def link_gateway(
        self,
        checkout_id: CheckoutId,
        paypal_order_id: str,
    ) -> Result[bool, TransientStoreError]:
        """Set ``paypal_order_id`` only if unset."""
        ...

    async def expire_overdue(self, at: datetime) -> Result[int, TransientStoreError]: ...


__all__ = (
    "CheckoutStatus",
    "PaymentMethod",
    "LineItem",
    "CheckoutSession",
    "split_payment",
    "CheckoutStore",
)
