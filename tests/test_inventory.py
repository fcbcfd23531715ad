import asyncio

import pytest
from kungfu import Error, Ok
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Dialect

from keymart.errors import OutOfStock, ValidationError
from keymart.inventory import NewKey, StockLevel, fingerprint
from keymart.inventory._sqlalchemy import _claim
from keymart.wiring import Services

from tests.conftest import NOW, stock


async def test_upload_dedupes_by_fingerprint(backend: Services) -> None:
    pool = backend.pool
    first = await pool.add_keys("game", [NewKey.from_plaintext("AAAA-1111"), NewKey.from_plaintext("BBBB-2222")])
    again = await pool.add_keys(
        "game",
        [
            NewKey.from_plaintext(" AAAA-1111 "),
            NewKey.from_plaintext("CCCC-3333"),
            NewKey.from_plaintext("CCCC-3333"),
        ],
    )

    assert (first.unwrap().added, first.unwrap().duplicates) == (2, 0)
    assert (again.unwrap().added, again.unwrap().duplicates) == (1, 2)
    assert (await pool.availability("game")).unwrap() == StockLevel("game", total=3, available=3)


async def test_same_key_may_exist_for_two_products(backend: Services) -> None:
    pool = backend.pool
    await pool.add_keys("game", [NewKey.from_plaintext("SHARED")])
    report = (await pool.add_keys("dlc", [NewKey.from_plaintext("SHARED")])).unwrap()

    assert report.added == 1


async def test_allocate_is_all_or_nothing(backend: Services) -> None:
    pool = backend.pool
    await stock(pool, "game", 2)

    result = await pool.allocate("game", 3, "ord_1")

    match result:
        case Error(OutOfStock(requested=3, available=2)):
            pass
        case _:
            pytest.fail(f"expected OutOfStock, got {result!r}")
    assert (await pool.availability("game")).unwrap().available == 2
    assert (await pool.keys_for_order("ord_1")).unwrap() == []


async def test_allocate_rejects_non_positive_quantity(backend: Services) -> None:
    result = await backend.pool.allocate("game", 0, "ord_1")

    assert isinstance(result, Error)
    assert isinstance(result.error, ValidationError)


async def test_concurrent_allocations_never_share_a_key(backend: Services) -> None:
    pool = backend.pool
    await stock(pool, "game", 5)

    results = await asyncio.gather(*(pool.allocate("game", 1, f"ord_{i}") for i in range(6)))

    won = [r.unwrap()[0] for r in results if isinstance(r, Ok)]
    lost = [r.error for r in results if isinstance(r, Error)]
    assert len(won) == 5
    assert len(set(won)) == 5
    assert len(lost) == 1 and isinstance(lost[0], OutOfStock)
    assert (await pool.availability("game")).unwrap().available == 0


@pytest.mark.parametrize(("dialect", "locks"), [(postgresql.dialect(), True), (sqlite.dialect(), False)])
def test_claim_skips_locked_rows_where_the_database_has_them(dialect: Dialect, locks: bool) -> None:
    sql = str(_claim("game", 2, "ord_1", NOW).compile(dialect=dialect))

    assert ("FOR UPDATE SKIP LOCKED" in sql) is locks
    assert ("FOR UPDATE" in sql) is locks


async def test_allocated_keys_belong_to_the_order(backend: Services) -> None:
    pool = backend.pool
    await stock(pool, "game", 3)

    ids = (await pool.allocate("game", 2, "ord_1")).unwrap()
    keys = (await pool.keys_for_order("ord_1")).unwrap()

    assert sorted(k.id for k in keys) == sorted(ids)
    assert all(k.is_used and k.assigned_to_order == "ord_1" for k in keys)
    assert {k.fingerprint for k in keys} <= {fingerprint(f"game-KEY-{i:04d}") for i in range(3)}


async def test_released_keys_are_never_issued_again(backend: Services) -> None:
    pool = backend.pool
    await stock(pool, "game", 2)
    ids = (await pool.allocate("game", 1, "ord_1")).unwrap()

    assert (await pool.release(ids)).unwrap() == 1
    assert (await pool.release(ids)).unwrap() == 0

    second = (await pool.allocate("game", 1, "ord_2")).unwrap()
    assert second != ids
    assert isinstance(await pool.allocate("game", 1, "ord_3"), Error)

    refunded = (await pool.keys_for_order("ord_1")).unwrap()
    assert refunded[0].is_refunded and refunded[0].refunded_at is not None


async def test_unassign_returns_keys_to_the_pool(backend: Services) -> None:
    pool = backend.pool
    await stock(pool, "game", 2)
    ids = (await pool.allocate("game", 2, "ord_1")).unwrap()

    assert (await pool.unassign("ord_other", ids)).unwrap() == 0
    assert (await pool.unassign("ord_1", ids)).unwrap() == 2

    assert (await pool.availability("game")).unwrap().available == 2
    assert (await pool.keys_for_order("ord_1")).unwrap() == []
    assert len((await pool.allocate("game", 2, "ord_2")).unwrap()) == 2


async def test_check_reads_the_counters(backend: Services) -> None:
    pool = backend.pool
    await stock(pool, "dlc", 2)

    assert (await pool.check("dlc", 2)).unwrap() is True
    assert (await pool.check("dlc", 3)).unwrap() is False
    assert (await pool.check("nothing", 1)).unwrap() is False


async def test_sync_counters_recomputes_from_the_pool(backend: Services) -> None:
    pool = backend.pool
    await stock(pool, "game", 4)
    ids = (await pool.allocate("game", 1, "ord_1")).unwrap()
    await pool.release(ids)

    level = (await pool.sync_counters("game")).unwrap()

    assert level == StockLevel("game", total=4, available=3)
    assert (await pool.availability("game")).unwrap() == level
