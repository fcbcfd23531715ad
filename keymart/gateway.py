"""
Payment gateway contract (PayPal-style orders and captures).

Gateway calls raise on failure; callers lift them with
``L.catching_async(..., on_error=gateway_error)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from keymart._types import Cents, new_id
from keymart.errors import GatewayError


@dataclass(frozen=True, slots=True)
class GatewayOrder:
    id: str
    amount: Cents
    currency: str
    reference: str


@dataclass(frozen=True, slots=True)
class GatewayCapture:
    id: str
    order_id: str
    amount: Cents
    currency: str


class PaymentGateway(Protocol):
    async def create_order(self, amount: Cents, currency: str, reference: str) -> GatewayOrder: ...

    async def capture(self, order_id: str) -> GatewayCapture: ...

    async def refund(self, capture_id: str, amount: Cents) -> str:
        """Returns the gateway's refund id."""
        ...


def gateway_error(e: Exception) -> GatewayError:
    return GatewayError(message=f"{type(e).__name__}: {e}", cause=e)


# ═══════════════════════════════════════════════════════════════════════════════
# Fake (tests, demo)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class FakeGateway:
    """
    Records every call. Set ``fail_with`` to make the next calls raise.

    Example:
        gateway = FakeGateway()
        order = await gateway.create_order(7849, "USD", "chk_1")
        capture = await gateway.capture(order.id)
    """

    orders: dict[str, GatewayOrder] = field(default_factory=dict)
    captures: dict[str, GatewayCapture] = field(default_factory=dict)
    refunds: list[tuple[str, Cents]] = field(default_factory=list)
    fail_with: Exception | None = None

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def create_order(self, amount: Cents, currency: str, reference: str) -> GatewayOrder:
        self._maybe_fail()
        order = GatewayOrder(id=new_id("PAYID").upper(), amount=amount, currency=currency, reference=reference)
        self.orders[order.id] = order
        return order

    async def capture(self, order_id: str) -> GatewayCapture:
        self._maybe_fail()
        order = self.orders[order_id]
        capture = GatewayCapture(id=new_id("CAP").upper(), order_id=order_id, amount=order.amount, currency=order.currency)
        self.captures[capture.id] = capture
        return capture

    async def refund(self, capture_id: str, amount: Cents) -> str:
        self._maybe_fail()
        self.refunds.append((capture_id, amount))
        return new_id("REF").upper()


__all__ = (
    "GatewayOrder",
    "GatewayCapture",
    "PaymentGateway",
    "gateway_error",
    "FakeGateway",
)
