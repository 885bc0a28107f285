"""Order book snapshot types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple


@dataclass(frozen=True)
class ListingTier:
    """``quantity`` units offered at ``price`` copper each."""
    price: int
    quantity: int

    def __post_init__(self):
        if self.price < 0 or self.quantity < 0:
            raise ValueError(f"Listing tier must be non-negative, got ({self.price}, {self.quantity})")


def _to_tier(raw: Any) -> ListingTier:
    if isinstance(raw, ListingTier):
        return raw
    if isinstance(raw, dict):
        # API listings: {"listings": n, "unit_price": p, "quantity": q}
        price = raw.get('unit_price', raw.get('price'))
        return ListingTier(int(price), int(raw['quantity']))
    price, quantity = raw
    return ListingTier(int(price), int(quantity))


@dataclass(frozen=True)
class OrderBook:
    """Static order book for one item.

    ``sells`` are offers a buyer can take, cheapest first. ``buys`` are bids a
    seller can fill, highest first. Tiers are sorted here regardless of input
    order and empty tiers are dropped.
    """
    item_id: Any
    sells: Tuple[ListingTier, ...] = ()
    buys: Tuple[ListingTier, ...] = ()

    def __post_init__(self):
        sells = sorted((t for t in map(_to_tier, self.sells) if t.quantity > 0), key=lambda t: t.price)
        buys = sorted((t for t in map(_to_tier, self.buys) if t.quantity > 0), key=lambda t: -t.price)
        object.__setattr__(self, 'sells', tuple(sells))
        object.__setattr__(self, 'buys', tuple(buys))

    @classmethod
    def from_listings(cls, item_id, sells: Iterable[Any] = (), buys: Iterable[Any] = ()) -> "OrderBook":
        return cls(item_id, tuple(sells), tuple(buys))

    @property
    def best_sell(self) -> Optional[int]:
        """Lowest price a buyer can pay right now."""
        return self.sells[0].price if self.sells else None

    @property
    def best_buy(self) -> Optional[int]:
        """Highest price a seller can receive right now."""
        return self.buys[0].price if self.buys else None

    @property
    def sell_depth(self) -> int:
        return sum(t.quantity for t in self.sells)

    @property
    def buy_depth(self) -> int:
        return sum(t.quantity for t in self.buys)

    def to_dict(self) -> dict:
        return {
            'id': self.item_id,
            'sells': [{'unit_price': t.price, 'quantity': t.quantity} for t in self.sells],
            'buys': [{'unit_price': t.price, 'quantity': t.quantity} for t in self.buys],
        }
