"""
Integer currency helpers.

All monetary amounts are plain ``int`` values in copper, the smallest
denomination. Divisions round costs up and revenues down so that profit is
never overstated.
"""

from __future__ import annotations

from fractions import Fraction
from typing import Union

from utils.constants import DEFAULT_LISTING_FEE_RATE

Rate = Union[Fraction, float, int, str]


def div_ceil(x: int, y: int) -> int:
    """Integer division rounding toward positive infinity."""
    if y <= 0:
        raise ValueError("divisor must be positive")
    return -((-x) // y)


def div_floor(x: int, y: int) -> int:
    """Integer division rounding toward negative infinity."""
    if y <= 0:
        raise ValueError("divisor must be positive")
    return x // y


def to_fraction(rate: Rate) -> Fraction:
    if isinstance(rate, float):
        # 0.15 -> 3/20, not the nearest binary double
        return Fraction(str(rate))
    return Fraction(rate)


class FeeSchedule:
    """Seller-side trading post fee applied to gross sale revenue.

    The rate is kept as an exact fraction. ``scaled_net`` returns the net
    revenue multiplied by ``denominator`` so callers can compare profits
    without rounding; ``net_revenue`` applies the single floor.
    """

    def __init__(self, listing_fee_rate: Rate = DEFAULT_LISTING_FEE_RATE):
        rate = to_fraction(listing_fee_rate)
        if not (0 <= rate < 1):
            raise ValueError(f"listing fee rate must be in [0, 1), got {rate}")
        self.rate = rate
        self.keep = 1 - rate

    @property
    def denominator(self) -> int:
        return self.keep.denominator

    def scaled_net(self, gross: int) -> int:
        return gross * self.keep.numerator

    def scaled(self, amount: int) -> int:
        """Express a fee-free amount (a cost) on the ``scaled_net`` scale."""
        return amount * self.keep.denominator

    def net_revenue(self, gross: int) -> int:
        return div_floor(self.scaled_net(gross), self.denominator)

    def listing_price(self, net: int) -> int:
        """Smallest sell price whose revenue after fees covers ``net``."""
        return div_ceil(net * self.keep.denominator, self.keep.numerator)

    def __repr__(self) -> str:
        return f"FeeSchedule(rate={self.rate})"


def format_coins(copper: int) -> str:
    """Format copper as ``gold.silver.copper`` e.g. ``12.03.40g``."""
    sign = "-" if copper < 0 else ""
    copper = abs(copper)
    gold, rest = divmod(copper, 10000)
    silver, copper = divmod(rest, 100)
    return f"{sign}{gold}.{silver:02d}.{copper:02d}g"


__all__ = ["div_ceil", "div_floor", "to_fraction", "FeeSchedule", "format_coins"]
