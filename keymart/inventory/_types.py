"""
Inventory types - license keys, stock levels and the pool contract.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from kungfu import Result

from keymart._types import KeyId, OrderId, ProductId
from keymart.errors import OutOfStock, TransientStoreError, ValidationError

type AllocateError = OutOfStock | ValidationError | TransientStoreError


def fingerprint(plaintext: str) -> str:
    """sha256 of the stripped plaintext; dedupe key within a product."""
    return hashlib.sha256(plaintext.strip().encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class NewKey:
    """
    A key as uploaded by a seller.

    Note: the payload is stored as given; encryption belongs to the caller.
    """

    fingerprint: str
    ciphertext: str

    @staticmethod
    def from_plaintext(plaintext: str, ciphertext: str | None = None) -> NewKey:
        return NewKey(fingerprint=fingerprint(plaintext), ciphertext=ciphertext or plaintext)


@dataclass(frozen=True, slots=True)
class LicenseKey:
    id: KeyId
    product_id: ProductId
    fingerprint: str
    ciphertext: str
    is_used: bool = False
    is_refunded: bool = False
    assigned_to_order: OrderId | None = None
    assigned_at: datetime | None = None
    refunded_at: datetime | None = None

    @property
    def is_available(self) -> bool:
        return not self.is_used and not self.is_refunded


@dataclass(frozen=True, slots=True)
class StockLevel:
    """Advisory counters. The pool itself is the truth."""

    product_id: ProductId
    total: int = 0
    available: int = 0


@dataclass(frozen=True, slots=True)
class UploadReport:
    product_id: ProductId
    added: int
    duplicates: int


class KeyPool(Protocol):
    """
    Per-product pool of single-use keys.

    Note: ``allocate`` is all or nothing; ``release`` is permanent.
    """

    async def allocate(
        self,
        product_id: ProductId,
        quantity: int,
        order_id: OrderId,
    ) -> Result[list[KeyId], AllocateError]: ...

    async def release(self, key_ids: Sequence[KeyId]) -> Result[int, TransientStoreError]:
        """Mark keys refunded. Returns how many were newly refunded."""
        ...

    async def add_keys(
        self,
        product_id: ProductId,
        keys: Sequence[NewKey],
    ) -> Result[UploadReport, TransientStoreError]: ...

    async def availability(self, product_id: ProductId) -> Result[StockLevel, TransientStoreError]: ...

    async def unassign(self, order_id: OrderId, key_ids: Sequence[KeyId]) -> Result[int, TransientStoreError]:
        """
        Return undelivered keys of ``order_id`` to the pool.

        Note: compensation for an allocation whose order never completed.
        Refunded keys are never returned.
        """
        ...

    async def check(self, product_id: ProductId, quantity: int) -> Result[bool, TransientStoreError]: ...

    async def sync_counters(self, product_id: ProductId) -> Result[StockLevel, TransientStoreError]: ...

    async def keys_for_order(self, order_id: OrderId) -> Result[list[LicenseKey], TransientStoreError]: ...


def _dedupe(existing: set[str], keys: Sequence[NewKey]) -> tuple[list[NewKey], int]:
    """Drop keys whose fingerprint is known or repeated within the batch."""
    seen = set(existing)
    fresh: list[NewKey] = []
    for key in keys:
        if key.fingerprint in seen:
            continue
        seen.add(key.fingerprint)
        fresh.append(key)
    return fresh, len(keys) - len(fresh)


__all__ = (
    "AllocateError",
    "fingerprint",
    "NewKey",
    "LicenseKey",
    "StockLevel",
    "UploadReport",
    "KeyPool",
)
