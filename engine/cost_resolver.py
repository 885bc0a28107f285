"""
Unit cost resolver for Craft Arbitrage.

Computes the cheapest way to obtain one unit of an item using top-of-book
trading post prices, vendor prices and recursive crafting.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .memo import SingleFlightCache
from .money import div_ceil
from .recipe_graph import Item, Recipe, RecipeGraph


class CostSource(Enum):
    """Where a unit of an item comes from."""
    BUY = "buy"
    CRAFT = "craft"
    VENDOR = "vendor"
    UNAVAILABLE = "unavailable"


# Equal costs prefer the least effort: trading post, then crafting, then vendor.
PREFERENCE = {CostSource.BUY: 0, CostSource.CRAFT: 1, CostSource.VENDOR: 2}

_NO_RECIPE = (False, 0)


@dataclass(frozen=True)
class Cost:
    """A unit cost in copper tagged with its source, or Unavailable."""
    value: Optional[int]
    source: CostSource
    recipe_id: Optional[int] = None

    @property
    def available(self) -> bool:
        return self.source is not CostSource.UNAVAILABLE

    @classmethod
    def buy(cls, value: int) -> "Cost":
        return cls(value, CostSource.BUY)

    @classmethod
    def craft(cls, value: int, recipe_id: Optional[int] = None) -> "Cost":
        return cls(value, CostSource.CRAFT, recipe_id)

    @classmethod
    def vendor(cls, value: int) -> "Cost":
        return cls(value, CostSource.VENDOR)

    def __str__(self):
        if not self.available:
            return "unavailable"
        if self.source is CostSource.CRAFT and self.recipe_id is not None:
            return f"{self.value} (craft #{self.recipe_id})"
        return f"{self.value} ({self.source.value})"


UNAVAILABLE = Cost(None, CostSource.UNAVAILABLE)


@dataclass(frozen=True)
class CraftOption:
    """Unit craft cost of one recipe."""
    recipe: Recipe
    cost: Cost


_Candidate = Tuple[int, int, Tuple[bool, int], Cost]


def _candidate(cost: Cost, recipe: Optional[Recipe] = None) -> _Candidate:
    return (cost.value, PREFERENCE[cost.source], recipe.order_key if recipe else _NO_RECIPE, cost)


def select_cheapest(candidates: List[_Candidate]) -> Cost:
    if not candidates:
        return UNAVAILABLE
    return min(candidates, key=lambda c: c[:3])[3]


class CostResolver:
    """Memoized, cycle-safe minimum unit cost per item.

    Two memo tables are kept. ``_roots`` holds the answer to every public
    ``unit_cost`` call and coalesces concurrent requests for the same item.
    ``_clean`` holds results whose computation never met a cycle; only those
    are reused inside other resolutions, which keeps every answer independent
    of the order in which items were requested.
    """

    def __init__(self, graph: RecipeGraph, market):
        self.graph = graph
        self.market = market
        self.logger = logging.getLogger(__name__)

        self._roots: SingleFlightCache[Cost] = SingleFlightCache()
        self._clean: SingleFlightCache[Cost] = SingleFlightCache()

    @property
    def computations(self) -> int:
        """Number of root resolutions actually computed this run."""
        return self._roots.computations

    def unit_cost(self, item_id) -> Cost:
        """Cheapest cost of one unit of ``item_id``.

        Raises ``UnknownItemError`` when the item is not in the snapshot.
        """
        self.graph.require_item(item_id)
        return self._roots.get_or_compute(item_id, lambda: self._resolve(item_id, set())[0])

    def cost_or_unavailable(self, item_id) -> Cost:
        if self.graph.get_item(item_id) is None:
            return UNAVAILABLE
        return self.unit_cost(item_id)

    def market_price(self, item: Item) -> Optional[int]:
        """Top-of-book trading post price, if the item can be bought there."""
        if not item.sellable:
            return None
        book = self.market.get_order_book(item.id)
        return book.best_sell if book is not None else None

    def craft_options(self, item_id) -> List[CraftOption]:
        """Unit craft cost of every usable recipe for ``item_id``, cheapest first."""
        self.graph.require_item(item_id)
        options, _ = self._craft_options(item_id, {item_id})
        return sorted(options, key=lambda o: (o.cost.value, o.recipe.order_key))

    def best_craft(self, item_id) -> Optional[CraftOption]:
        options = self.craft_options(item_id)
        return options[0] if options else None

    def clear(self) -> None:
        """Drop memoized results; a new snapshot needs a new run."""
        self._roots.clear()
        self._clean.clear()

    # Internal ------------------------------------------------------------

    def _market_candidates(self, item: Item) -> List[_Candidate]:
        candidates = []
        price = self.market_price(item)
        if price is not None:
            candidates.append(_candidate(Cost.buy(price)))
        if item.vendor_price is not None:
            candidates.append(_candidate(Cost.vendor(item.vendor_price)))
        return candidates

    def _resolve(self, item_id, visiting: set) -> Tuple[Cost, bool]:
        """Return ``(cost, met_cycle)`` for one unit of ``item_id``."""
        item = self.graph.get_item(item_id)
        if item is None:
            self.logger.warning("Ingredient %s missing from snapshot, treating as unavailable", item_id)
            return self._clean.offer(item_id, UNAVAILABLE), False

        if item_id in visiting:
            # Cycle: the item is already being crafted higher up this path
            self.logger.debug("Cycle through item %s, craft candidate suppressed", item_id)
            return select_cheapest(self._market_candidates(item)), True

        cached = self._clean.get(item_id)
        if cached is not None:
            return cached, False

        visiting.add(item_id)
        try:
            candidates = self._market_candidates(item)
            options, met_cycle = self._craft_options(item_id, visiting)
            candidates.extend(_candidate(o.cost, o.recipe) for o in options)
        finally:
            visiting.discard(item_id)

        result = select_cheapest(candidates)
        if not met_cycle:
            result = self._clean.offer(item_id, result)
        return result, met_cycle

    def _craft_options(self, item_id, visiting: set) -> Tuple[List[CraftOption], bool]:
        options: List[CraftOption] = []
        met_cycle = False
        for recipe in self.graph.get_recipes_for_output(item_id):
            total = 0
            for ingredient in recipe.ingredients:
                cost, cyclic = self._resolve(ingredient.item_id, visiting)
                met_cycle = met_cycle or cyclic
                if not cost.available:
                    break
                total += cost.value * ingredient.quantity
            else:
                unit = div_ceil(total, recipe.output_quantity)
                options.append(CraftOption(recipe, Cost.craft(unit, recipe.id)))
        return options, met_cycle


__all__ = [
    "CostSource",
    "Cost",
    "CraftOption",
    "CostResolver",
    "UNAVAILABLE",
    "PREFERENCE",
    "select_cheapest",
]
