"""
Buyer and seller notifications.

Dispatch is fire-and-forget: a failed notification is logged and never
affects the order that triggered it.

    notifier = Notifications(MemoryNotifier())
    notifier.keys_delivered(order, keys)
    await notifier.drain()   # tests only
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from keymart.log import get_logger

if TYPE_CHECKING:
    from keymart.inventory import LicenseKey
    from keymart.orders import Order

log = get_logger("notify")


class Notifier(Protocol):
    async def keys_delivered(self, order: Order, keys: Sequence[LicenseKey]) -> None: ...

    async def fulfillment_failed(self, order: Order, reason: str) -> None:
        """Sent to the buyer and every seller on the order."""
        ...


@dataclass
class MemoryNotifier:
    delivered: list[tuple[str, tuple[str, ...]]] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    async def keys_delivered(self, order: Order, keys: Sequence[LicenseKey]) -> None:
        self.delivered.append((order.id, tuple(k.id for k in keys)))

    async def fulfillment_failed(self, order: Order, reason: str) -> None:
        self.failed.append((order.id, reason))


class LogNotifier:
    async def keys_delivered(self, order: Order, keys: Sequence[LicenseKey]) -> None:
        log.info("notify_keys_delivered", order_id=order.id, owner=order.owner.key, keys=len(keys))

    async def fulfillment_failed(self, order: Order, reason: str) -> None:
        log.warning(
            "notify_fulfillment_failed",
            order_id=order.id,
            owner=order.owner.key,
            sellers=sorted(order.seller_ids),
            reason=reason,
        )


class Notifications:
    """Schedules notifier calls as background tasks."""

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._tasks: set[asyncio.Task[None]] = set()

    def _spawn(self, name: str, order_id: str, call: Callable[[], Awaitable[None]]) -> None:
        async def guarded() -> None:
            try:
                await call()
            except Exception:
                log.exception("notification_failed", notification=name, order_id=order_id)

        task = asyncio.get_running_loop().create_task(guarded())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def keys_delivered(self, order: Order, keys: Sequence[LicenseKey]) -> None:
        self._spawn("keys_delivered", order.id, lambda: self._notifier.keys_delivered(order, keys))

    def fulfillment_failed(self, order: Order, reason: str) -> None:
        self._spawn("fulfillment_failed", order.id, lambda: self._notifier.fulfillment_failed(order, reason))

    async def drain(self) -> None:
        """Wait for pending notifications."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


__all__ = ("Notifier", "MemoryNotifier", "LogNotifier", "Notifications")
