from decimal import Decimal

import pytest

from keymart.money import as_percent, clamp, format_amount, parse_amount, percent_of


@pytest.mark.parametrize(
    ("amount", "percent", "expected"),
    [
        (10_000, 10, 1_000),
        (9_000, 5, 450),
        (8_550, 10, 855),
        (7_695, 2, 154),
        (1, 50, 1),  # 0.5 rounds half-up
        (3, 50, 2),  # 1.5 rounds half-up
        (999, Decimal("12.5"), 125),
        (10_000, 0, 0),
    ],
)
def test_percent_of_rounds_half_up(amount: int, percent: Decimal | int, expected: int) -> None:
    assert percent_of(amount, percent) == expected


def test_percent_is_clamped() -> None:
    assert as_percent(-5) == 0
    assert as_percent(250) == 100
    assert as_percent("7.5") == Decimal("7.5")
    assert percent_of(4_000, 150) == 4_000


def test_clamp_keeps_discount_within_amount() -> None:
    assert clamp(500, 300) == 300
    assert clamp(-20, 300) == 0
    assert clamp(120, 300) == 120


def test_parse_amount() -> None:
    assert parse_amount("78.49") == 7_849
    assert parse_amount(" 10 ") == 1_000
    assert parse_amount("0.005") == 1
    assert parse_amount(Decimal("1.2")) == 120


@pytest.mark.parametrize("raw", ["", "abc", "NaN", "Infinity"])
def test_parse_amount_rejects_garbage(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_format_amount() -> None:
    assert format_amount(7_849) == "78.49"
    assert format_amount(5) == "0.05"
    assert format_amount(0) == "0.00"
