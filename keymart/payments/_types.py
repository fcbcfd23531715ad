"""
Payment types - alerts and webhook outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Protocol

from keymart._types import CheckoutId, OrderId


class AlertKind(StrEnum):
    RECONCILIATION_MISMATCH = "reconciliation_mismatch"
    LATE_PAYMENT = "late_payment"
    OUT_OF_STOCK_AFTER_CAPTURE = "out_of_stock_after_capture"
    REFUND_FAILED = "refund_failed"
    ORPHAN_EVENT = "orphan_event"
    INSUFFICIENT_FUNDS_AFTER_CAPTURE = "insufficient_funds_after_capture"
    ROLLBACK_INCOMPLETE = "rollback_incomplete"


class Severity(StrEnum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class Alert:
    """Operational record that needs manual reconciliation."""

    id: str
    kind: AlertKind
    severity: Severity
    detail: str
    created_at: datetime
    checkout_id: CheckoutId | None = None
    order_id: OrderId | None = None
    context: dict[str, object] = field(default_factory=dict)


class Alerts(Protocol):
    async def record(self, alert: Alert) -> None: ...


class WebhookOutcome(StrEnum):
    """How an acknowledged event was handled. Every outcome is acked with 200."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    MISMATCH = "mismatch"
    LATE = "late"
    ORPHAN = "orphan"
    UNFULFILLED = "unfulfilled"


@dataclass(frozen=True, slots=True)
class WebhookResult:
    outcome: WebhookOutcome
    event_type: str
    order_id: OrderId | None = None
    detail: str | None = None


__all__ = (
    "AlertKind",
    "Severity",
    "Alert",
    "Alerts",
    "WebhookOutcome",
    "WebhookResult",
)
