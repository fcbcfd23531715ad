import asyncio

import pytest
from kungfu import Error, Ok

from keymart.errors import InsufficientFunds, ValidationError
from keymart.wallet import TxKind
from keymart.wiring import Services


async def test_credit_then_debit(backend: Services) -> None:
    wallet = backend.wallet
    credited = (await wallet.credit("alice", 5_000, note="top up")).unwrap()
    debited = (await wallet.debit("alice", 1_200, order_ref="ord_1")).unwrap()

    assert credited.kind is TxKind.CREDIT and credited.balance_after == 5_000
    assert debited.kind is TxKind.DEBIT and debited.balance_after == 3_800
    assert debited.order_ref == "ord_1"
    assert (await wallet.balance("alice")).unwrap() == 3_800


async def test_debit_beyond_balance_is_refused(backend: Services) -> None:
    wallet = backend.wallet
    await wallet.credit("alice", 1_000)

    result = await wallet.debit("alice", 1_001, order_ref="ord_1")

    assert result == Error(InsufficientFunds("alice", balance=1_000, requested=1_001))
    assert (await wallet.balance("alice")).unwrap() == 1_000
    assert (await wallet.transactions("alice")).unwrap().total == 1


async def test_unknown_user_has_nothing(backend: Services) -> None:
    wallet = backend.wallet

    assert (await wallet.balance("nobody")).unwrap() == 0
    match await wallet.debit("nobody", 1, order_ref="ord_1"):
        case Error(InsufficientFunds(balance=0)):
            pass
        case other:
            pytest.fail(f"expected InsufficientFunds, got {other!r}")


@pytest.mark.parametrize("amount", [0, -100])
async def test_amount_must_be_positive(backend: Services, amount: int) -> None:
    wallet = backend.wallet

    assert isinstance((await wallet.credit("alice", amount)).error, ValidationError)
    assert isinstance((await wallet.debit("alice", amount, order_ref="ord_1")).error, ValidationError)


async def test_concurrent_debits_never_overdraw(backend: Services) -> None:
    wallet = backend.wallet
    await wallet.credit("alice", 1_000)

    results = await asyncio.gather(*(wallet.debit("alice", 300, order_ref=f"ord_{i}") for i in range(5)))

    assert sum(isinstance(r, Ok) for r in results) == 3
    assert (await wallet.balance("alice")).unwrap() == 100
    assert (await wallet.audit("alice")).unwrap().consistent


async def test_interleaved_debits_and_credits_keep_the_ledger_exact(backend: Services) -> None:
    wallet = backend.wallet
    await wallet.credit("alice", 1_000)

    debits = [wallet.debit("alice", 300, order_ref=f"ord_{i}") for i in range(6)]
    credits = [
        wallet.credit("alice", 200, note="top up"),
        wallet.credit("alice", 250, refund_ref="refund:ord_a"),
        wallet.credit("alice", 200, note="top up"),
        wallet.credit("alice", 250, refund_ref="refund:ord_a"),
        wallet.credit("alice", 150, refund_ref="refund:ord_b"),
        wallet.credit("alice", 200, note="top up"),
    ]
    interleaved = [op for pair in zip(debits, credits, strict=True) for op in pair]

    results = await asyncio.gather(*interleaved)
    debited = results[0::2]
    credited = results[1::2]

    assert all(isinstance(r, Ok) for r in credited)
    for r in debited:
        if isinstance(r, Error):
            assert isinstance(r.error, InsufficientFunds)

    refunds_a = [r.unwrap() for r in credited if r.unwrap().refund_ref == "refund:ord_a"]
    assert refunds_a[0].id == refunds_a[1].id

    settled = sum(isinstance(r, Ok) for r in debited)
    assert settled >= 3
    balance = (await wallet.balance("alice")).unwrap()
    assert balance == 1_000 + 3 * 200 + 250 + 150 - 300 * settled
    assert balance >= 0
    assert all(r.unwrap().balance_after >= 0 for r in debited if isinstance(r, Ok))
    assert (await wallet.audit("alice")).unwrap().consistent
    assert (await wallet.transactions("alice")).unwrap().total == 1 + 3 + 2 + settled


async def test_refund_ref_is_applied_once(backend: Services) -> None:
    wallet = backend.wallet
    first = (await wallet.credit("alice", 700, refund_ref="refund:ord_1")).unwrap()
    again = (await wallet.credit("alice", 700, refund_ref="refund:ord_1")).unwrap()

    assert again.id == first.id
    assert (await wallet.balance("alice")).unwrap() == 700
    assert (await wallet.transactions("alice")).unwrap().total == 1


async def test_audit_matches_the_log(backend: Services) -> None:
    wallet = backend.wallet
    await wallet.credit("alice", 2_000)
    await wallet.debit("alice", 500, order_ref="ord_1")
    await wallet.credit("alice", 500, refund_ref="refund:ord_1")

    report = (await wallet.audit("alice")).unwrap()

    assert report.stored_balance == report.computed_balance == 2_000
    assert report.consistent


async def test_transactions_are_paged_newest_first(backend: Services) -> None:
    wallet = backend.wallet
    for amount in (100, 200, 300, 400, 500):
        await wallet.credit("alice", amount)

    first = (await wallet.transactions("alice", page=1, page_size=2)).unwrap()
    last = (await wallet.transactions("alice", page=3, page_size=2)).unwrap()

    assert [tx.amount for tx in first.items] == [500, 400]
    assert [tx.amount for tx in last.items] == [100]
    assert first.total == last.total == 5


async def test_page_size_is_clamped(backend: Services) -> None:
    wallet = backend.wallet
    await wallet.credit("alice", 100)

    huge = (await wallet.transactions("alice", page=0, page_size=1_000)).unwrap()
    tiny = (await wallet.transactions("alice", page=1, page_size=0)).unwrap()

    assert (huge.page, huge.page_size) == (1, 100)
    assert tiny.page_size == 1
