"""
In-memory checkout store.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime

from kungfu import Ok, Result

from keymart._types import CheckoutId
from keymart.checkout._types import CheckoutSession, CheckoutStatus
from keymart.errors import TransientStoreError


class MemoryCheckoutStore:
    def __init__(self) -> None:
        self._sessions: dict[CheckoutId, CheckoutSession] = {}
        self._lock = asyncio.Lock()

    async def insert(self, session: CheckoutSession) -> Result[CheckoutSession, TransientStoreError]:
        async with self._lock:
            self._sessions[session.id] = session
        return Ok(session)

    async def get(self, checkout_id: CheckoutId) -> Result[CheckoutSession | None, TransientStoreError]:
        return Ok(self._sessions.get(checkout_id))

    async def find_by_gateway(self, paypal_order_id: str) -> Result[CheckoutSession | None, TransientStoreError]:
        return Ok(next((s for s in self._sessions.values() if s.paypal_order_id == paypal_order_id), None))

    async def transition(
        self,
        checkout_id: CheckoutId,
        source: CheckoutStatus,
        target: CheckoutStatus,
        at: datetime,
    ) -> Result[bool, TransientStoreError]:
        async with self._lock:
            current = self._sessions.get(checkout_id)
            if current is None or current.status is not source:
                return Ok(False)
            self._sessions[checkout_id] = replace(
                current,
                status=target,
                paid_at=at if target is CheckoutStatus.PAID else None,
            )
        return Ok(True)

    async def link_gateway(self, checkout_id: CheckoutId, paypal_order_id: str) -> Result[bool, TransientStoreError]:
        async with self._lock:
            current = self._sessions.get(checkout_id)
            if current is None or current.paypal_order_id is not None:
                return Ok(False)
            self._sessions[checkout_id] = replace(current, paypal_order_id=paypal_order_id)
        return Ok(True)

    async def expire_overdue(self, at: datetime) -> Result[int, TransientStoreError]:
        expired = 0
        async with self._lock:
            for session in list(self._sessions.values()):
                if session.is_overdue(at):
                    self._sessions[session.id] = replace(session, status=CheckoutStatus.EXPIRED)
                    expired += 1
        return Ok(expired)


__all__ = ("MemoryCheckoutStore",)
