"""
In-memory key pool. One lock stands in for the datastore's atomicity.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import replace

from kungfu import Error, Ok, Result

from keymart._types import Clock, KeyId, OrderId, ProductId, new_id, utcnow
from keymart.errors import OutOfStock, TransientStoreError, ValidationError
from keymart.inventory._types import (
    AllocateError,
    LicenseKey,
    NewKey,
    StockLevel,
    UploadReport,
    _dedupe,
)
from keymart.log import get_logger

log = get_logger("inventory")


class MemoryKeyPool:
    def __init__(self, clock: Clock = utcnow) -> None:
        self._keys: dict[KeyId, LicenseKey] = {}
        self._counters: dict[ProductId, StockLevel] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def allocate(
        self,
        product_id: ProductId,
        quantity: int,
        order_id: OrderId,
    ) -> Result[list[KeyId], AllocateError]:
        if quantity < 1:
            return Error(ValidationError(f"quantity must be positive, got {quantity}", field="qty"))

        async with self._lock:
            free = [k for k in self._keys.values() if k.product_id == product_id and k.is_available]
            if len(free) < quantity:
                log.info("keys_out_of_stock", product_id=product_id, requested=quantity, available=len(free))
                return Error(OutOfStock(product_id, requested=quantity, available=len(free)))

            now = self._clock()
            claimed = free[:quantity]
            for key in claimed:
                self._keys[key.id] = replace(key, is_used=True, assigned_to_order=order_id, assigned_at=now)

            level = self._counters.get(product_id, StockLevel(product_id))
            self._counters[product_id] = replace(level, available=max(0, level.available - quantity))

        ids = [k.id for k in claimed]
        log.info("keys_allocated", product_id=product_id, order_id=order_id, count=len(ids))
        return Ok(ids)

    async def release(self, key_ids: Sequence[KeyId]) -> Result[int, TransientStoreError]:
        released = 0
        async with self._lock:
            now = self._clock()
            for key_id in key_ids:
                key = self._keys.get(key_id)
                if key is None or key.is_refunded:
                    continue
                if not key.is_used:
                    level = self._counters.get(key.product_id, StockLevel(key.product_id))
                    self._counters[key.product_id] = replace(level, available=max(0, level.available - 1))
                self._keys[key_id] = replace(key, is_refunded=True, refunded_at=now)
                released += 1
        log.info("keys_released", count=released)
        return Ok(released)

    async def unassign(self, order_id: OrderId, key_ids: Sequence[KeyId]) -> Result[int, TransientStoreError]:
        returned = 0
        async with self._lock:
            for key_id in key_ids:
                key = self._keys.get(key_id)
                if key is None or key.assigned_to_order != order_id or key.is_refunded:
                    continue
                self._keys[key_id] = replace(key, is_used=False, assigned_to_order=None, assigned_at=None)
                level = self._counters.get(key.product_id, StockLevel(key.product_id))
                self._counters[key.product_id] = replace(level, available=level.available + 1)
                returned += 1
        log.info("keys_unassigned", order_id=order_id, count=returned)
        return Ok(returned)

    async def add_keys(
        self,
        product_id: ProductId,
        keys: Sequence[NewKey],
    ) -> Result[UploadReport, TransientStoreError]:
        async with self._lock:
            existing = {k.fingerprint for k in self._keys.values() if k.product_id == product_id}
            fresh, duplicates = _dedupe(existing, keys)
            for key in fresh:
                key_id = new_id("key")
                self._keys[key_id] = LicenseKey(
                    id=key_id,
                    product_id=product_id,
                    fingerprint=key.fingerprint,
                    ciphertext=key.ciphertext,
                )
            level = self._counters.get(product_id, StockLevel(product_id))
            self._counters[product_id] = replace(
                level,
                total=level.total + len(fresh),
                available=level.available + len(fresh),
            )

        log.info("keys_uploaded", product_id=product_id, added=len(fresh), duplicates=duplicates)
        return Ok(UploadReport(product_id, added=len(fresh), duplicates=duplicates))

    async def availability(self, product_id: ProductId) -> Result[StockLevel, TransientStoreError]:
        return Ok(self._counters.get(product_id, StockLevel(product_id)))

    async def check(self, product_id: ProductId, quantity: int) -> Result[bool, TransientStoreError]:
        return Ok(self._counters.get(product_id, StockLevel(product_id)).available >= quantity)

    async def sync_counters(self, product_id: ProductId) -> Result[StockLevel, TransientStoreError]:
        async with self._lock:
            keys = [k for k in self._keys.values() if k.product_id == product_id]
            level = StockLevel(
                product_id,
                total=len(keys),
                available=sum(1 for k in keys if k.is_available),
            )
            self._counters[product_id] = level
        return Ok(level)

    async def keys_for_order(self, order_id: OrderId) -> Result[list[LicenseKey], TransientStoreError]:
        return Ok([k for k in self._keys.values() if k.assigned_to_order == order_id])


__all__ = ("MemoryKeyPool",)
