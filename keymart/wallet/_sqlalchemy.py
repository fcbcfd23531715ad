"""
SQLAlchemy wallet ledger.

Debit is a guarded ``UPDATE wallets SET balance = balance - :a
WHERE user_id = :u AND balance >= :a``; the transaction row is written in the
same session commit.
"""

from __future__ import annotations

from kungfu import Error, Ok, Result
from sqlalchemy import case, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keymart._types import Cents, Clock, OrderId, UserId, new_id, utcnow
from keymart.db import WalletTable, WalletTransactionTable
from keymart.errors import InsufficientFunds, TransientStoreError, store_error
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


def _to_tx(row: WalletTransactionTable) -> WalletTransaction:
    return WalletTransaction(
        id=row.id,
        user_id=row.user_id,
        kind=TxKind(row.kind),
        amount=row.amount,
        balance_after=row.balance_after,
        created_at=row.created_at,
        order_ref=row.order_ref,
        refund_ref=row.refund_ref,
        note=row.note,
    )


class SQLAlchemyWallet:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def _record(
        self,
        session: AsyncSession,
        user_id: UserId,
        kind: TxKind,
        amount: Cents,
        balance_after: Cents,
        **refs: str | None,
    ) -> WalletTransactionTable:
        seq = await session.scalar(
            select(func.coalesce(func.max(WalletTransactionTable.seq), 0)).where(
                WalletTransactionTable.user_id == user_id
            )
        )
        row = WalletTransactionTable(
            id=new_id("wtx"),
            user_id=user_id,
            kind=kind.value,
            amount=amount,
            balance_after=balance_after,
            created_at=self._clock(),
            seq=(seq or 0) + 1,
            **refs,
        )
        session.add(row)
        return row

    @staticmethod
    async def _by_refund_ref(
        session: AsyncSession,
        user_id: UserId,
        refund_ref: str,
    ) -> WalletTransactionTable | None:
        return await session.scalar(
            select(WalletTransactionTable).where(
                WalletTransactionTable.user_id == user_id,
                WalletTransactionTable.refund_ref == refund_ref,
            )
        )

    async def _replayed(
        self,
        user_id: UserId,
        refund_ref: str,
        cause: Exception,
    ) -> Result[WalletTransaction, CreditError]:
        try:
            async with self._session_factory() as session:
                existing = await self._by_refund_ref(session, user_id, refund_ref)
        except Exception as e:
            return Error(store_error(e))
        if existing is None:
            return Error(store_error(cause))
        return Ok(_to_tx(existing))

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

        try:
            async with self._session_factory() as session:
                guarded = (
                    update(WalletTable)
                    .where(WalletTable.user_id == user_id, WalletTable.balance >= amount)
                    .values(balance=WalletTable.balance - amount, updated_at=self._clock())
                    .returning(WalletTable.balance)
                    .execution_options(synchronize_session=False)
                )
                balance_after = (await session.execute(guarded)).scalar_one_or_none()

                if balance_after is None:
                    balance = await session.scalar(select(WalletTable.balance).where(WalletTable.user_id == user_id))
                    await session.rollback()
                    return Error(InsufficientFunds(user_id, balance=balance or 0, requested=amount))

                row = await self._record(
                    session, user_id, TxKind.DEBIT, amount, balance_after, order_ref=order_ref, note=note
                )
                await session.commit()

        except Exception as e:
            return Error(store_error(e))

        log.info("wallet_debited", user_id=user_id, amount=amount, order_ref=order_ref, balance=balance_after)
        return Ok(_to_tx(row))

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

        try:
            async with self._session_factory() as session:
                if refund_ref is not None:
                    existing = await self._by_refund_ref(session, user_id, refund_ref)
                    if existing is not None:
                        return Ok(_to_tx(existing))

                now = self._clock()
                await session.execute(
                    sqlite_insert(WalletTable)
                    .values(user_id=user_id, balance=0, updated_at=now)
                    .on_conflict_do_nothing(index_elements=[WalletTable.user_id])
                )
                balance_after = (
                    await session.execute(
                        update(WalletTable)
                        .where(WalletTable.user_id == user_id)
                        .values(balance=WalletTable.balance + amount, updated_at=now)
                        .returning(WalletTable.balance)
                        .execution_options(synchronize_session=False)
                    )
                ).scalar_one()

                row = await self._record(
                    session, user_id, TxKind.CREDIT, amount, balance_after, refund_ref=refund_ref, note=note
                )
                await session.commit()

        except IntegrityError as e:
            # A concurrent credit with the same refund_ref committed first.
            if refund_ref is None:
                return Error(store_error(e))
            return await self._replayed(user_id, refund_ref, e)
        except Exception as e:
            return Error(store_error(e))

        log.info("wallet_credited", user_id=user_id, amount=amount, refund_ref=refund_ref, balance=balance_after)
        return Ok(_to_tx(row))

    async def balance(self, user_id: UserId) -> Result[Cents, TransientStoreError]:
        try:
            async with self._session_factory() as session:
                balance = await session.scalar(select(WalletTable.balance).where(WalletTable.user_id == user_id))
                return Ok(balance or 0)
        except Exception as e:
            return Error(store_error(e))

    async def transactions(
        self,
        user_id: UserId,
        page: int = 1,
        page_size: int = 20,
    ) -> Result[TransactionPage, TransientStoreError]:
        page, page_size = _paging(page, page_size)
        try:
            async with self._session_factory() as session:
                total = await session.scalar(
                    select(func.count())
                    .select_from(WalletTransactionTable)
                    .where(WalletTransactionTable.user_id == user_id)
                )
                rows = (
                    await session.execute(
                        select(WalletTransactionTable)
                        .where(WalletTransactionTable.user_id == user_id)
                        .order_by(WalletTransactionTable.seq.desc())
                        .offset((page - 1) * page_size)
                        .limit(page_size)
                    )
                ).scalars()
                items = tuple(_to_tx(row) for row in rows)
        except Exception as e:
            return Error(store_error(e))

        return Ok(TransactionPage(items=items, page=page, page_size=page_size, total=total or 0))

    async def audit(self, user_id: UserId) -> Result[AuditReport, TransientStoreError]:
        """Recompute the balance from the log and compare."""
        signed = func.sum(
            case(
                (WalletTransactionTable.kind == TxKind.CREDIT.value, WalletTransactionTable.amount),
                else_=-WalletTransactionTable.amount,
            )
        )
        try:
            async with self._session_factory() as session:
                computed = await session.scalar(
                    select(func.coalesce(signed, 0)).where(WalletTransactionTable.user_id == user_id)
                )
                stored = await session.scalar(select(WalletTable.balance).where(WalletTable.user_id == user_id))
        except Exception as e:
            return Error(store_error(e))

        report = AuditReport(user_id, stored_balance=stored or 0, computed_balance=computed or 0)
        if not report.consistent:
            log.error(
                "wallet_audit_mismatch",
                user_id=user_id,
                stored=report.stored_balance,
                computed=report.computed_balance,
            )
        return Ok(report)


__all__ = ("SQLAlchemyWallet",)
