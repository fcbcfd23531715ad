"""
Payments - the reconciler that turns a confirmed payment into exactly one
fulfilled Order, plus webhook parsing and operational alerts.

    reconciler = PaymentReconciler(checkout=..., orders=..., pool=..., ...)

    result = await reconciler.handle_webhook(body, headers)
    status = webhook_status(result)   # 200 / 400 / 503
"""

from keymart.payments._types import (
    AlertKind,
    Severity,
    Alert,
    Alerts,
    WebhookOutcome,
    WebhookResult,
)
from keymart.payments._alerts import LogAlerts, MemoryAlerts, log_alert
from keymart.payments._events import (
    SIGNATURE_HEADER,
    CAPTURE_COMPLETED,
    CAPTURE_DENIED,
    CAPTURE_REFUNDED,
    WebhookEvent,
    parse_event,
    sign,
    verify,
)
from keymart.payments._reconciler import (
    PaymentReconciler,
    RefundError,
    SettleError,
    WalletPayError,
    WebhookError,
    webhook_status,
)

__all__ = (
    "AlertKind",
    "Severity",
    "Alert",
    "Alerts",
    "WebhookOutcome",
    "WebhookResult",
    "LogAlerts",
    "MemoryAlerts",
    "log_alert",
    "SIGNATURE_HEADER",
    "CAPTURE_COMPLETED",
    "CAPTURE_DENIED",
    "CAPTURE_REFUNDED",
    "WebhookEvent",
    "parse_event",
    "sign",
    "verify",
    "PaymentReconciler",
    "RefundError",
    "SettleError",
    "WalletPayError",
    "WebhookError",
    "webhook_status",
)
