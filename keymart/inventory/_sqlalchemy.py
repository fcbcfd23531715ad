"""
SQLAlchemy key pool.

Allocation is one ``UPDATE ... WHERE id IN (SELECT ... LIMIT n FOR UPDATE SKIP LOCKED) RETURNING id``
plus the counter decrement, in one transaction. A short claim is rolled back.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from datetime import datetime

from kungfu import Error, Ok, Result
from sqlalchemy import ColumnElement, Update, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keymart._types import Clock, KeyId, OrderId, ProductId, new_id, utcnow
from keymart.db import LicenseKeyTable, StockTable
from keymart.errors import OutOfStock, TransientStoreError, ValidationError, store_error
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


def _free(product_id: ProductId) -> tuple[ColumnElement[bool], ...]:
    return (
        LicenseKeyTable.product_id == product_id,
        LicenseKeyTable.is_used.is_(False),
        LicenseKeyTable.is_refunded.is_(False),
    )


def _decremented(n: int) -> ColumnElement[int]:
    return case((StockTable.available_keys < n, 0), else_=StockTable.available_keys - n)


def _claim(product_id: ProductId, quantity: int, order_id: OrderId, at: datetime) -> Update:
    """
    Claim up to ``quantity`` free keys in one statement.

    Note: rows another transaction has locked are skipped rather than waited
    on, so concurrent claims pick disjoint keys. SQLite has no row locks and
    compiles the lock clause away.
    """
    candidates = (
        select(LicenseKeyTable.id)
        .where(*_free(product_id))
        .order_by(LicenseKeyTable.created_at, LicenseKeyTable.id)
        .limit(quantity)
        .with_for_update(skip_locked=True)
    )
    return (
        update(LicenseKeyTable)
        .where(LicenseKeyTable.id.in_(candidates), LicenseKeyTable.is_used.is_(False))
        .values(is_used=True, assigned_to_order=order_id, assigned_at=at)
        .returning(LicenseKeyTable.id)
        .execution_options(synchronize_session=False)
    )


def _to_key(row: LicenseKeyTable) -> LicenseKey:
    return LicenseKey(
        id=row.id,
        product_id=row.product_id,
        fingerprint=row.fingerprint,
        ciphertext=row.ciphertext,
        is_used=row.is_used,
        is_refunded=row.is_refunded,
        assigned_to_order=row.assigned_to_order,
        assigned_at=row.assigned_at,
        refunded_at=row.refunded_at,
    )


def _to_level(product_id: ProductId, row: StockTable | None) -> StockLevel:
    if row is None:
        return StockLevel(product_id)
    return StockLevel(product_id, total=row.total_keys, available=row.available_keys)


class SQLAlchemyKeyPool:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def allocate(
        self,
        product_id: ProductId,
        quantity: int,
        order_id: OrderId,
    ) -> Result[list[KeyId], AllocateError]:
        if quantity < 1:
            return Error(ValidationError(f"quantity must be positive, got {quantity}", field="qty"))

        try:
            async with self._session_factory() as session:
                claim = _claim(product_id, quantity, order_id, self._clock())
                ids = list((await session.execute(claim)).scalars())

                if len(ids) < quantity:
                    await session.rollback()
                    log.info("keys_out_of_stock", product_id=product_id, requested=quantity, available=len(ids))
                    return Error(OutOfStock(product_id, requested=quantity, available=len(ids)))

                await session.execute(
                    update(StockTable)
                    .where(StockTable.product_id == product_id)
                    .values(available_keys=_decremented(quantity))
                    .execution_options(synchronize_session=False)
                )
                await session.commit()

        except Exception as e:
            return Error(store_error(e))

        log.info("keys_allocated", product_id=product_id, order_id=order_id, count=len(ids))
        return Ok(ids)

    async def release(self, key_ids: Sequence[KeyId]) -> Result[int, TransientStoreError]:
        if not key_ids:
            return Ok(0)
        try:
            async with self._session_factory() as session:
                rows = (
                    await session.execute(
                        select(LicenseKeyTable).where(
                            LicenseKeyTable.id.in_(list(key_ids)),
                            LicenseKeyTable.is_refunded.is_(False),
                        )
                    )
                ).scalars().all()

                now = self._clock()
                for row in rows:
                    if not row.is_used:
                        await session.execute(
                            update(StockTable)
                            .where(StockTable.product_id == row.product_id)
                            .values(available_keys=_decremented(1))
                            .execution_options(synchronize_session=False)
                        )
                    row.is_refunded = True
                    row.refunded_at = now

                await session.commit()

        except Exception as e:
            return Error(store_error(e))

        log.info("keys_released", count=len(rows))
        return Ok(len(rows))

    async def unassign(self, order_id: OrderId, key_ids: Sequence[KeyId]) -> Result[int, TransientStoreError]:
        if not key_ids:
            return Ok(0)
        try:
            async with self._session_factory() as session:
                rows = (
                    await session.execute(
                        update(LicenseKeyTable)
                        .where(
                            LicenseKeyTable.id.in_(list(key_ids)),
                            LicenseKeyTable.assigned_to_order == order_id,
                            LicenseKeyTable.is_refunded.is_(False),
                        )
                        .values(is_used=False, assigned_to_order=None, assigned_at=None)
                        .returning(LicenseKeyTable.product_id)
                        .execution_options(synchronize_session=False)
                    )
                ).scalars().all()

                for product_id, returned in Counter(rows).items():
                    await session.execute(
                        update(StockTable)
                        .where(StockTable.product_id == product_id)
                        .values(available_keys=StockTable.available_keys + returned)
                        .execution_options(synchronize_session=False)
                    )
                await session.commit()

        except Exception as e:
            return Error(store_error(e))

        log.info("keys_unassigned", order_id=order_id, count=len(rows))
        return Ok(len(rows))

    async def add_keys(
        self,
        product_id: ProductId,
        keys: Sequence[NewKey],
    ) -> Result[UploadReport, TransientStoreError]:
        try:
            async with self._session_factory() as session:
                existing = set(
                    (
                        await session.execute(
                            select(LicenseKeyTable.fingerprint).where(
                                LicenseKeyTable.product_id == product_id,
                                LicenseKeyTable.fingerprint.in_([k.fingerprint for k in keys]),
                            )
                        )
                    ).scalars()
                )
                fresh, duplicates = _dedupe(existing, keys)

                now = self._clock()
                session.add_all(
                    LicenseKeyTable(
                        id=new_id("key"),
                        product_id=product_id,
                        fingerprint=key.fingerprint,
                        ciphertext=key.ciphertext,
                        is_used=False,
                        is_refunded=False,
                        created_at=now,
                    )
                    for key in fresh
                )

                stock = await session.get(StockTable, product_id)
                if stock is None:
                    session.add(StockTable(product_id=product_id, total_keys=len(fresh), available_keys=len(fresh)))
                else:
                    stock.total_keys += len(fresh)
                    stock.available_keys += len(fresh)

                await session.commit()

        except Exception as e:
            return Error(store_error(e))

        log.info("keys_uploaded", product_id=product_id, added=len(fresh), duplicates=duplicates)
        return Ok(UploadReport(product_id, added=len(fresh), duplicates=duplicates))

    async def availability(self, product_id: ProductId) -> Result[StockLevel, TransientStoreError]:
        try:
            async with self._session_factory() as session:
                return Ok(_to_level(product_id, await session.get(StockTable, product_id)))
        except Exception as e:
            return Error(store_error(e))

    async def check(self, product_id: ProductId, quantity: int) -> Result[bool, TransientStoreError]:
        return (await self.availability(product_id)).map(lambda level: level.available >= quantity)

    async def sync_counters(self, product_id: ProductId) -> Result[StockLevel, TransientStoreError]:
        """Recompute counters from the pool."""
        try:
            async with self._session_factory() as session:
                total = await session.scalar(
                    select(func.count()).select_from(LicenseKeyTable).where(LicenseKeyTable.product_id == product_id)
                )
                available = await session.scalar(
                    select(func.count()).select_from(LicenseKeyTable).where(*_free(product_id))
                )
                stock = await session.get(StockTable, product_id)
                if stock is None:
                    stock = StockTable(product_id=product_id)
                    session.add(stock)
                stock.total_keys = total or 0
                stock.available_keys = available or 0
                await session.commit()
                level = _to_level(product_id, stock)

        except Exception as e:
            return Error(store_error(e))

        log.info("stock_counters_synced", product_id=product_id, total=level.total, available=level.available)
        return Ok(level)

    async def keys_for_order(self, order_id: OrderId) -> Result[list[LicenseKey], TransientStoreError]:
        try:
            async with self._session_factory() as session:
                rows = (
                    await session.execute(
                        select(LicenseKeyTable)
                        .where(LicenseKeyTable.assigned_to_order == order_id)
                        .order_by(LicenseKeyTable.assigned_at, LicenseKeyTable.id)
                    )
                ).scalars()
                return Ok([_to_key(row) for row in rows])
        except Exception as e:
            return Error(store_error(e))


__all__ = ("SQLAlchemyKeyPool",)
