"""
Liquidity simulator for Craft Arbitrage.

Turns static order book snapshots into cost and revenue as a function of
quantity by walking price tiers, and composes those walks through recipes
into quantity-aware craft cost curves.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .cost_resolver import PREFERENCE, CostResolver, CostSource
from .money import div_ceil
from .order_book import ListingTier
from .recipe_graph import Recipe, RecipeGraph

# item id -> units already taken from its sell listings in this evaluation
Ledger = Dict[int, int]


@dataclass(frozen=True)
class CurveResult:
    """Outcome of walking a book for ``requested`` units.

    ``quantity`` is what the book could actually satisfy; when it falls short
    ``total`` covers only those units.
    """
    requested: int
    quantity: int
    total: int
    min_price: Optional[int] = None
    max_price: Optional[int] = None

    @property
    def complete(self) -> bool:
        return self.quantity >= self.requested

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.quantity)


def walk_tiers(tiers: Iterable[ListingTier], qty: int, skip: int = 0) -> CurveResult:
    """Consume ``qty`` units from ``tiers`` in order, after skipping ``skip`` units."""
    if qty < 0 or skip < 0:
        raise ValueError("quantity and offset must be non-negative")

    remaining = qty
    total = 0
    min_price = max_price = None
    for tier in tiers:
        if remaining == 0:
            break
        available = tier.quantity
        if skip:
            taken = min(skip, available)
            skip -= taken
            available -= taken
        if available == 0:
            continue
        take = min(available, remaining)
        total += take * tier.price
        remaining -= take
        min_price = tier.price if min_price is None else min(min_price, tier.price)
        max_price = tier.price if max_price is None else max(max_price, tier.price)

    return CurveResult(qty, qty - remaining, total, min_price, max_price)


@dataclass(frozen=True)
class Quote:
    """Cheapest way found to obtain ``quantity`` units of one item.

    Craft quotes carry the recipe, the number of uses and one child quote per
    ingredient. Market quotes record the lowest and highest tier price paid.
    """
    item_id: int
    quantity: int
    source: CostSource
    total: int
    recipe: Optional[Recipe] = None
    uses: int = 0
    children: Tuple["Quote", ...] = ()
    min_price: Optional[int] = None
    max_price: Optional[int] = None

    @property
    def produced(self) -> int:
        if self.source is CostSource.CRAFT:
            return self.uses * self.recipe.output_quantity
        return self.quantity

    @property
    def surplus(self) -> int:
        return self.produced - self.quantity


_Option = Tuple[int, int, Tuple[bool, int], Quote, Ledger]


class LiquiditySimulator:
    """Quantity-aware cost and revenue curves over one market snapshot."""

    def __init__(self, graph: RecipeGraph, market, resolver: Optional[CostResolver] = None):
        self.graph = graph
        self.market = market
        self.resolver = resolver or CostResolver(graph, market)
        self.logger = logging.getLogger(__name__)

    # Raw market curves ---------------------------------------------------

    def buy_cost_curve(self, item_id, qty: int) -> CurveResult:
        """Cost of buying ``qty`` units from the cheapest sell listings up."""
        self.graph.require_item(item_id)
        book = self.market.get_order_book(item_id)
        return walk_tiers(book.sells if book else (), qty)

    def sell_revenue_curve(self, item_id, qty: int) -> CurveResult:
        """Gross revenue of selling ``qty`` units into the highest buy orders down."""
        self.graph.require_item(item_id)
        book = self.market.get_order_book(item_id)
        return walk_tiers(book.buys if book else (), qty)

    def marginal_cost(self, item_id, qty: int) -> Optional[int]:
        """Price paid for the ``qty``-th unit bought, ``None`` past listed depth."""
        if qty < 1:
            raise ValueError("quantity must be >= 1")
        curve = self.buy_cost_curve(item_id, qty)
        if not curve.complete:
            return None
        return curve.total - self.buy_cost_curve(item_id, qty - 1).total

    def marginal_revenue(self, item_id, qty: int) -> Optional[int]:
        """Price received for the ``qty``-th unit sold, ``None`` past listed depth."""
        if qty < 1:
            raise ValueError("quantity must be >= 1")
        curve = self.sell_revenue_curve(item_id, qty)
        if not curve.complete:
            return None
        return curve.total - self.sell_revenue_curve(item_id, qty - 1).total

    def sell_depth(self, item_id) -> int:
        """Units the buy orders of ``item_id`` can absorb."""
        book = self.market.get_order_book(item_id)
        return book.buy_depth if book else 0

    # Composite curves ----------------------------------------------------

    def obtain_quote(self, item_id, qty: int) -> Optional[Quote]:
        """Cheapest quote for ``qty`` units from any source; ``None`` if unobtainable."""
        self.graph.require_item(item_id)
        if qty < 1:
            raise ValueError("quantity must be >= 1")
        result = self._quote(item_id, qty, {}, frozenset())
        return result[0] if result else None

    def craft_quote(self, item_id, qty: int) -> Optional[Quote]:
        """Cheapest quote for ``qty`` units that crafts the item itself."""
        self.graph.require_item(item_id)
        if qty < 1:
            raise ValueError("quantity must be >= 1")
        result = self._quote(item_id, qty, {}, frozenset(), craft_only=True)
        return result[0] if result else None

    def obtain_cost_curve(self, item_id, qty: int) -> Optional[int]:
        if qty == 0:
            return 0
        quote = self.obtain_quote(item_id, qty)
        return quote.total if quote else None

    def craft_cost_curve(self, item_id, qty: int) -> Optional[int]:
        """Total cost of crafting ``qty`` units, re-deciding every ingredient at
        its own derived quantity. ``None`` when the quantity cannot be sourced."""
        if qty == 0:
            return 0
        quote = self.craft_quote(item_id, qty)
        return quote.total if quote else None

    # Internal ------------------------------------------------------------

    def _usable(self, recipe: Recipe) -> bool:
        return all(self.resolver.cost_or_unavailable(ing_id).available
                   for ing_id in recipe.ingredient_ids)

    def _quote(self, item_id, qty: int, ledger: Ledger, path: FrozenSet[int],
               craft_only: bool = False) -> Optional[Tuple[Quote, Ledger]]:
        item = self.graph.get_item(item_id)
        if item is None:
            return None

        options: List[_Option] = []
        if not craft_only:
            if item.sellable:
                book = self.market.get_order_book(item_id)
                if book is not None:
                    taken = ledger.get(item_id, 0)
                    walk = walk_tiers(book.sells, qty, skip=taken)
                    if walk.complete:
                        after = dict(ledger)
                        after[item_id] = taken + qty
                        quote = Quote(item_id, qty, CostSource.BUY, walk.total,
                                      min_price=walk.min_price, max_price=walk.max_price)
                        options.append((walk.total, PREFERENCE[CostSource.BUY], (False, 0), quote, after))
            if item.vendor_price is not None:
                total = item.vendor_price * qty
                quote = Quote(item_id, qty, CostSource.VENDOR, total,
                              min_price=item.vendor_price, max_price=item.vendor_price)
                options.append((total, PREFERENCE[CostSource.VENDOR], (False, 0), quote, ledger))

        if item_id not in path:
            inner = path | {item_id}
            for recipe in self.graph.get_recipes_for_output(item_id):
                if not self._usable(recipe):
                    continue
                crafted = self._craft(recipe, qty, ledger, inner)
                if crafted is not None:
                    quote, after = crafted
                    options.append((quote.total, PREFERENCE[CostSource.CRAFT], recipe.order_key, quote, after))

        if not options:
            return None
        best = min(options, key=lambda o: o[:3])
        return best[3], best[4]

    def _craft(self, recipe: Recipe, qty: int, ledger: Ledger,
               path: FrozenSet[int]) -> Optional[Tuple[Quote, Ledger]]:
        uses = div_ceil(qty, recipe.output_quantity)
        children: List[Quote] = []
        total = 0
        current = ledger
        for ingredient in recipe.ingredients:
            result = self._quote(ingredient.item_id, ingredient.quantity * uses, current, path)
            if result is None:
                return None
            child, current = result
            children.append(child)
            total += child.total
        quote = Quote(recipe.output_item_id, qty, CostSource.CRAFT, total,
                      recipe=recipe, uses=uses, children=tuple(children))
        return quote, current


__all__ = ["CurveResult", "Quote", "LiquiditySimulator", "walk_tiers"]
