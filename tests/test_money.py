import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from fractions import Fraction

import pytest

from engine.money import FeeSchedule, div_ceil, div_floor, format_coins


def test_division_rounding():
    assert div_ceil(10, 3) == 4
    assert div_ceil(9, 3) == 3
    assert div_ceil(-10, 3) == -3
    assert div_floor(10, 3) == 3
    with pytest.raises(ValueError):
        div_ceil(1, 0)


def test_fee_schedule_exact_rate():
    fees = FeeSchedule(0.15)
    assert fees.rate == Fraction(3, 20)
    assert fees.net_revenue(1200) == 1020
    # 0.85 copper rounds down to nothing
    assert fees.net_revenue(1) == 0
    assert fees.scaled_net(20) == 340
    assert fees.scaled(20) == 400


def test_listing_price_covers_cost():
    fees = FeeSchedule(0.15)
    price = fees.listing_price(24)
    assert fees.net_revenue(price) >= 24
    assert fees.net_revenue(price - 1) < 24


def test_rate_must_be_below_one():
    with pytest.raises(ValueError):
        FeeSchedule(1)
    with pytest.raises(ValueError):
        FeeSchedule(-0.1)
    assert FeeSchedule(0).net_revenue(99) == 99


def test_format_coins():
    assert format_coins(12345) == "1.23.45g"
    assert format_coins(7) == "0.00.07g"
    assert format_coins(-250) == "-0.02.50g"
