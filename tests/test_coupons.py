from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest
from kungfu import Error, Ok

from keymart.catalog import Coupon, CouponScope, DiscountKind, Owner, Window
from keymart.pricing import CouponContext, normalize_code, validate_coupon

from tests.conftest import ALICE, GUEST, NOW, always

COUPON = Coupon(id="cpn-1", code="SAVE10", kind=DiscountKind.PERCENTAGE, value=Decimal(10), window=always())


def context(owner: Owner = ALICE, **overrides: object) -> CouponContext:
    base = CouponContext(
        owner=owner,
        at=NOW,
        subscribed=False,
        owner_usage=0,
        amount=5_000,
        product_ids=frozenset({"game"}),
        seller_ids=frozenset({"seller-a"}),
    )
    return replace(base, **overrides)


def rejected(coupon: Coupon | None, ctx: CouponContext) -> str:
    match validate_coupon("SAVE10", coupon, ctx):
        case Error(e):
            assert e.field == "coupon_code"
            return e.message
        case Ok(_):
            pytest.fail("coupon unexpectedly accepted")


def test_normalize_code() -> None:
    assert normalize_code("  save10\n") == "SAVE10"


def test_valid_coupon_passes() -> None:
    assert validate_coupon("SAVE10", COUPON, context()) == Ok(COUPON)


def test_missing_coupon() -> None:
    assert "does not exist" in rejected(None, context())


def test_inactive_coupon() -> None:
    paused = replace(COUPON, window=replace(COUPON.window, is_active=False))
    assert "not active" in rejected(paused, context())


def test_coupon_not_started() -> None:
    later = replace(COUPON, window=Window(starts_at=NOW + timedelta(hours=1), ends_at=None))
    assert "not valid yet" in rejected(later, context())


def test_coupon_expired() -> None:
    ended = replace(COUPON, window=Window(starts_at=NOW - timedelta(days=2), ends_at=NOW - timedelta(seconds=1)))
    assert "expired" in rejected(ended, context())


def test_exclusive_coupon_needs_subscription() -> None:
    exclusive = replace(COUPON, is_exclusive=True)
    assert "subscribers only" in rejected(exclusive, context())
    assert validate_coupon("SAVE10", exclusive, context(subscribed=True)) == Ok(exclusive)


def test_global_usage_limit() -> None:
    used_up = replace(COUPON, usage_limit=5, used_count=5)
    assert "usage limit" in rejected(used_up, context())
    assert "usage limit" in rejected(used_up, context(GUEST))


def test_per_user_limit_does_not_bind_guests() -> None:
    once = replace(COUPON, per_user_limit=1)
    assert "maximum number of times" in rejected(once, context(owner_usage=1))
    assert validate_coupon("SAVE10", once, context(GUEST, owner_usage=1)) == Ok(once)


def test_minimum_order_amount() -> None:
    minimum = replace(COUPON, min_order_amount=6_000)
    assert "at least 60.00" in rejected(minimum, context())
    assert validate_coupon("SAVE10", minimum, context(amount=6_000)) == Ok(minimum)


def test_product_scope() -> None:
    scoped = replace(COUPON, scope=CouponScope.PRODUCT, product_ids=frozenset({"dlc"}))
    assert "these products" in rejected(scoped, context())
    assert validate_coupon("SAVE10", scoped, context(product_ids=frozenset({"game", "dlc"}))) == Ok(scoped)


def test_seller_scope() -> None:
    scoped = replace(COUPON, scope=CouponScope.SELLER, seller_ids=frozenset({"seller-b"}))
    assert "these sellers" in rejected(scoped, context())


def test_first_failing_rule_wins() -> None:
    broken = replace(
        COUPON,
        window=Window(starts_at=NOW - timedelta(days=2), ends_at=NOW - timedelta(days=1)),
        usage_limit=1,
        used_count=1,
    )
    assert "expired" in rejected(broken, context())
