"""
Alert sinks. Every alert is logged; ``MemoryAlerts`` also keeps it.
"""

from __future__ import annotations

from keymart.log import get_logger
from keymart.payments._types import Alert, AlertKind, Severity

log = get_logger("alerts")


def log_alert(alert: Alert) -> None:
    emit = log.critical if alert.severity is Severity.CRITICAL else (
        log.error if alert.severity is Severity.ERROR else log.warning
    )
    emit(
        alert.kind.value,
        alert_id=alert.id,
        checkout_id=alert.checkout_id,
        order_id=alert.order_id,
        detail=alert.detail,
        **alert.context,
    )


class MemoryAlerts:
    def __init__(self) -> None:
        self.alerts: list[Alert] = []

    async def record(self, alert: Alert) -> None:
        log_alert(alert)
        self.alerts.append(alert)

    def of_kind(self, kind: AlertKind) -> list[Alert]:
        return [a for a in self.alerts if a.kind is kind]


class LogAlerts:
    async def record(self, alert: Alert) -> None:
        log_alert(alert)


__all__ = ("log_alert", "MemoryAlerts", "LogAlerts")
