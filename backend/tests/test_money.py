from decimal import Decimal

import pytest

from restopos.errors import InvalidAmount
from restopos.money import (
    amounts_match,
    format_money,
    from_cents,
    multiply,
    percent_of,
    to_cents,
    to_decimal,
)


def test_to_decimal_rounds_half_up_to_cents():
    assert to_decimal("10.125") == Decimal("10.13")
    assert to_decimal("10.124") == Decimal("10.12")
    assert to_decimal(150) == Decimal("150.00")


def test_floats_go_through_str():
    assert to_decimal(0.1) == Decimal("0.10")
    assert to_cents(19.99) == 1999


@pytest.mark.parametrize("bad", [None, True, "abc", "NaN", "Infinity", ""])
def test_invalid_amounts_rejected(bad):
    with pytest.raises(InvalidAmount):
        to_decimal(bad, field="amount")


def test_invalid_amount_carries_field():
    with pytest.raises(InvalidAmount) as exc:
        to_cents("ten", field="opening_cash")
    assert exc.value.field == "opening_cash"
    assert exc.value.code == "INVALID_AMOUNT"


def test_cents_roundtrip_values():
    assert to_cents("999.98") == 99998
    assert from_cents(99998) == Decimal("999.98")
    assert from_cents(None) == Decimal("0.00")


def test_percent_of_rounds_half_up():
    assert percent_of(100000, "10") == 10000
    assert percent_of(333, "50") == 167
    assert percent_of(1000, Decimal("12.5")) == 125


def test_multiply_for_per_km_pricing():
    assert multiply(2000, Decimal("5")) == 10000
    assert multiply(2000, "2.5") == 5000
    assert multiply(2000, "0.125") == 250


def test_amounts_match_is_strict_at_one_cent():
    assert amounts_match(100000, 100000)
    assert not amounts_match(100000, 99999)
    assert not amounts_match(100000, 99998)


def test_format_money():
    assert format_money(123456) == "1,234.56"
    assert format_money(-10000) == "-100.00"
