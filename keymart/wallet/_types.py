"""
Wallet types - balances and the append-only transaction log.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Protocol

from kungfu import Error, Ok, Result

from keymart._types import Cents, OrderId, UserId
from keymart.errors import InsufficientFunds, TransientStoreError, ValidationError

type DebitError = InsufficientFunds | ValidationError | TransientStoreError
type CreditError = ValidationError | TransientStoreError


class TxKind(StrEnum):
    CREDIT = "credit"
    DEBIT = "debit"


@dataclass(frozen=True, slots=True)
class WalletTransaction:
    id: str
    user_id: UserId
    kind: TxKind
    amount: Cents
    balance_after: Cents
    created_at: datetime
    order_ref: OrderId | None = None
    refund_ref: str | None = None
    note: str | None = None


@dataclass(frozen=True, slots=True)
class TransactionPage:
    items: tuple[WalletTransaction, ...]
    page: int
    page_size: int
    total: int


@dataclass(frozen=True, slots=True)
class AuditReport:
    user_id: UserId
    stored_balance: Cents
    computed_balance: Cents

    @property
    def consistent(self) -> bool:
        return self.stored_balance == self.computed_balance


class WalletLedger(Protocol):
    """
    Stored-value balances.

    Invariant: balance == sum(credits) - sum(debits) and never negative.
    A credit carrying a ``refund_ref`` is applied at most once.
    """

    async def debit(
        self,
        user_id: UserId,
        amount: Cents,
        *,
        order_ref: OrderId,
        note: str | None = None,
    ) -> Result[WalletTransaction, DebitError]: ...

    async def credit(
        self,
        user_id: UserId,
        amount: Cents,
        *,
        refund_ref: str | None = None,
        note: str | None = None,
    ) -> Result[WalletTransaction, CreditError]: ...

    async def balance(self, user_id: UserId) -> Result[Cents, TransientStoreError]: ...

    async def transactions(
        self,
        user_id: UserId,
        page: int = 1,
        page_size: int = 20,
    ) -> Result[TransactionPage, TransientStoreError]: ...

    async def audit(self, user_id: UserId) -> Result[AuditReport, TransientStoreError]: ...


def _check_amount(amount: Cents) -> Result[Cents, ValidationError]:
    if amount <= 0:
        return Error(ValidationError(f"amount must be positive, got {amount}", field="amount"))
    return Ok(amount)


def _paging(page: int, page_size: int) -> tuple[int, int]:
    page = max(1, page)
    page_size = min(max(1, page_size), 100)
    return page, page_size


__all__ = (
    "DebitError",
    "CreditError",
    "TxKind",
    "WalletTransaction",
    "TransactionPage",
    "AuditReport",
    "WalletLedger",
)
