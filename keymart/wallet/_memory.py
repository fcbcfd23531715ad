"""
In-memory wallet ledger.
"""

from __future__ import annotations

import asyncio

from kungfu import Error, Ok, Result

from keymart._types import Cents, Clock, OrderId, UserId, new_id, utcnow
from keymart.errors import InsufficientFunds, TransientStoreError
from keymart.log import get_logger
from keymart.wallet._types import (
    AuditReport,
    CreditError,
    DebitError,
    TransactionPage,
    TxKind,
    WalletTransaction,
    _check_amount,
    _paging,
)

log = get_logger("wallet")


class MemoryWallet:
    def __init__(self, clock: Clock = utcnow) -> None:
        self._balances: dict[UserId, Cents] = {}
        self._log: dict[UserId, list[WalletTransaction]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _append(self, tx: WalletTransaction) -> WalletTransaction:
        self._balances[tx.user_id] = tx.balance_after
        self._log.setdefault(tx.user_id, []).append(tx)
        return tx

    async def debit(
        self,
        user_id: UserId,
        amount: Cents,
        *,
        order_ref: OrderId,
        note: str | None = None,
    ) -> Result[WalletTransaction, DebitError]:
        match _check_amount(amount):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass

        async with self._lock:
            balance = self._balances.get(user_id, 0)
            if balance < amount:
                return Error(InsufficientFunds(user_id, balance=balance, requested=amount))
            tx = self._append(
                WalletTransaction(
                    id=new_id("wtx"),
                    user_id=user_id,
                    kind=TxKind.DEBIT,
                    amount=amount,
                    balance_after=balance - amount,
                    created_at=self._clock(),
                    order_ref=order_ref,
                    note=note,
                )
            )

        log.info("wallet_debited", user_id=user_id, amount=amount, order_ref=order_ref, balance=tx.balance_after)
        return Ok(tx)

    async def credit(
        self,
        user_id: UserId,
        amount: Cents,
        *,
        refund_ref: str | None = None,
        note: str | None = None,
    ) -> Result[WalletTransaction, CreditError]:
        match _check_amount(amount):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass

        async with self._lock:
            if refund_ref is not None:
                for existing in self._log.get(user_id, ()):
                    if existing.refund_ref == refund_ref:
                        return Ok(existing)

            balance = self._balances.get(user_id, 0)
            tx = self._append(
                WalletTransaction(
                    id=new_id("wtx"),
                    user_id=user_id,
                    kind=TxKind.CREDIT,
                    amount=amount,
                    balance_after=balance + amount,
                    created_at=self._clock(),
                    refund_ref=refund_ref,
                    note=note,
                )
            )

        log.info("wallet_credited", user_id=user_id, amount=amount, refund_ref=refund_ref, balance=tx.balance_after)
        return Ok(tx)

    async def balance(self, user_id: UserId) -> Result[Cents, TransientStoreError]:
        return Ok(self._balances.get(user_id, 0))

    async def transactions(
        self,
        user_id: UserId,
        page: int = 1,
        page_size: int = 20,
    ) -> Result[TransactionPage, TransientStoreError]:
        page, page_size = _paging(page, page_size)
        newest_first = list(reversed(self._log.get(user_id, [])))
        start = (page - 1) * page_size
        return Ok(
            TransactionPage(
                items=tuple(newest_first[start : start + page_size]),
                page=page,
                page_size=page_size,
                total=len(newest_first),
            )
        )

    async def audit(self, user_id: UserId) -> Result[AuditReport, TransientStoreError]:
        entries = self._log.get(user_id, [])
        computed = sum(tx.amount if tx.kind is TxKind.CREDIT else -tx.amount for tx in entries)
        return Ok(AuditReport(user_id, stored_balance=self._balances.get(user_id, 0), computed_balance=computed))


__all__ = ("MemoryWallet",)
