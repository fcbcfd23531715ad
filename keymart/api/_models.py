"""
Request/response codecs.

Request models convert with ``to_domain()``; response models are built with
``from_domain(value)``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Self

from kungfu import Error, Ok, Result
from pydantic import BaseModel, Field

from keymart.catalog import CartLine, CartSnapshot, Owner
from keymart.checkout import CheckoutSession, LineItem, PaymentMethod
from keymart.errors import FulfillmentError, ValidationError
from keymart.inventory import NewKey, StockLevel, UploadReport
from keymart.orders import Order, OrderItem
from keymart.payments import WebhookResult
from keymart.wallet import TransactionPage, WalletTransaction

# ═══════════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════════


class OwnerIn(BaseModel):
    user_id: str | None = None
    guest_email: str | None = None

    def to_domain(self) -> Result[Owner, ValidationError]:
        return Owner.parse(self.user_id, self.guest_email)


class CartLineIn(BaseModel):
    product_id: str
    seller_id: str
    qty: int = 1
    unit_price: int = 0


class CheckoutIn(OwnerIn):
    """Without ``items`` the owner's stored cart is used."""

    items: list[CartLineIn] | None = None
    coupon_code: str | None = None
    rail: Literal["Card", "PayPal"] = "PayPal"

    def to_domain(self) -> Result[tuple[Owner, CartSnapshot | None], ValidationError]:
        match Owner.parse(self.user_id, self.guest_email):
            case Error(e):
                return Error(e)
            case Ok(owner):
                pass
        if self.items is None:
            return Ok((owner, None))
        lines = tuple(
            CartLine(
                product_id=item.product_id,
                seller_id=item.seller_id,
                qty=item.qty,
                unit_price_at_add=item.unit_price,
            )
            for item in self.items
        )
        return Ok((owner, CartSnapshot(owner=owner, lines=lines)))

    @property
    def payment_rail(self) -> PaymentMethod:
        return PaymentMethod(self.rail)


class RefundIn(BaseModel):
    reason: str = "requested by buyer"


class KeysIn(BaseModel):
    keys: list[str] = Field(min_length=1)

    def to_domain(self) -> list[NewKey]:
        return [NewKey.from_plaintext(key) for key in self.keys if key.strip()]


# ═══════════════════════════════════════════════════════════════════════════════
# Responses
# ═══════════════════════════════════════════════════════════════════════════════


class ErrorOut(BaseModel):
    code: str
    message: str
    field: str | None = None

    @classmethod
    def from_domain(cls, error: FulfillmentError) -> Self:
        return cls(code=error.code, message=error.message, field=getattr(error, "field", None))


class LineItemOut(BaseModel):
    product_id: str
    seller_id: str
    name: str
    qty: int
    original_price: int
    discounted_price: int
    discount_amount: int
    discount_type: str
    discount_source_id: str | None
    key_ids: list[str] = []
    refunded_qty: int = 0

    @classmethod
    def from_domain(cls, item: LineItem | OrderItem) -> Self:
        return cls(
            product_id=item.product_id,
            seller_id=item.seller_id,
            name=item.name,
            qty=item.qty,
            original_price=item.original_price,
            discounted_price=item.discounted_price,
            discount_amount=item.discount_amount,
            discount_type=item.discount_type.value,
            discount_source_id=item.discount_source_id,
            key_ids=list(item.key_ids) if isinstance(item, OrderItem) else [],
            refunded_qty=item.refunded_qty if isinstance(item, OrderItem) else 0,
        )


class CheckoutOut(BaseModel):
    id: str
    status: str
    items: list[LineItemOut]
    subtotal: int
    bundle_discount: int
    subscription_discount: int
    coupon_discount: int
    coupon_code: str | None
    total_amount: int
    handling_fee: int
    grand_total: int
    currency: str
    payment_method: str
    wallet_amount: int
    card_amount: int
    paypal_order_id: str | None
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_domain(cls, session: CheckoutSession) -> Self:
        return cls(
            id=session.id,
            status=session.status.value,
            items=[LineItemOut.from_domain(line) for line in session.items],
            subtotal=session.subtotal,
            bundle_discount=session.breakdown.bundle,
            subscription_discount=session.breakdown.subscription,
            coupon_discount=session.breakdown.coupon,
            coupon_code=session.breakdown.coupon_code,
            total_amount=session.total_amount,
            handling_fee=session.handling_fee,
            grand_total=session.grand_total,
            currency=session.currency,
            payment_method=session.payment_method.value,
            wallet_amount=session.wallet_amount,
            card_amount=session.card_amount,
            paypal_order_id=session.paypal_order_id,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )


class OrderOut(BaseModel):
    id: str
    checkout_id: str
    payment_status: str
    order_status: str
    payment_method: str
    items: list[LineItemOut]
    wallet_amount: int
    card_amount: int
    grand_total: int
    currency: str
    paypal_order_id: str | None
    paypal_capture_id: str | None
    created_at: datetime
    paid_at: datetime | None

    @classmethod
    def from_domain(cls, order: Order) -> Self:
        return cls(
            id=order.id,
            checkout_id=order.checkout_id,
            payment_status=order.payment_status.value,
            order_status=order.order_status.value,
            payment_method=order.payment_method.value,
            items=[LineItemOut.from_domain(item) for item in order.items],
            wallet_amount=order.wallet_amount,
            card_amount=order.card_amount,
            grand_total=order.grand_total,
            currency=order.currency,
            paypal_order_id=order.paypal_order_id,
            paypal_capture_id=order.paypal_capture_id,
            created_at=order.created_at,
            paid_at=order.paid_at,
        )


class TransactionOut(BaseModel):
    id: str
    kind: str
    amount: int
    balance_after: int
    order_ref: str | None
    refund_ref: str | None
    note: str | None
    created_at: datetime

    @classmethod
    def from_domain(cls, tx: WalletTransaction) -> Self:
        return cls(
            id=tx.id,
            kind=tx.kind.value,
            amount=tx.amount,
            balance_after=tx.balance_after,
            order_ref=tx.order_ref,
            refund_ref=tx.refund_ref,
            note=tx.note,
            created_at=tx.created_at,
        )


class WalletOut(BaseModel):
    user_id: str
    balance: int
    transactions: list[TransactionOut]
    page: int
    page_size: int
    total: int

    @classmethod
    def from_domain(cls, value: tuple[str, int, TransactionPage]) -> Self:
        user_id, balance, page = value
        return cls(
            user_id=user_id,
            balance=balance,
            transactions=[TransactionOut.from_domain(tx) for tx in page.items],
            page=page.page,
            page_size=page.page_size,
            total=page.total,
        )


class StockOut(BaseModel):
    product_id: str
    total: int
    available: int

    @classmethod
    def from_domain(cls, level: StockLevel) -> Self:
        return cls(product_id=level.product_id, total=level.total, available=level.available)


class UploadOut(BaseModel):
    product_id: str
    added: int
    duplicates: int

    @classmethod
    def from_domain(cls, report: UploadReport) -> Self:
        return cls(product_id=report.product_id, added=report.added, duplicates=report.duplicates)


class WebhookOut(BaseModel):
    outcome: str
    event_type: str
    order_id: str | None = None
    detail: str | None = None

    @classmethod
    def from_domain(cls, result: WebhookResult) -> Self:
        return cls(
            outcome=result.outcome.value,
            event_type=result.event_type,
            order_id=result.order_id,
            detail=result.detail,
        )


__all__ = (
    "OwnerIn",
    "CartLineIn",
    "CheckoutIn",
    "RefundIn",
    "KeysIn",
    "ErrorOut",
    "LineItemOut",
    "CheckoutOut",
    "OrderOut",
    "TransactionOut",
    "WalletOut",
    "StockOut",
    "UploadOut",
    "WebhookOut",
)
