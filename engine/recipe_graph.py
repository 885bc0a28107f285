"""
Recipe graph for Craft Arbitrage.

Indexes items and the recipes that produce them. The graph is a general
directed graph (output -> recipes -> ingredients) and may contain cycles;
cycle handling is left to the resolvers walking it.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple


class UnknownItemError(KeyError):
    """A query referenced an item id that is not part of the snapshot."""

    def __init__(self, item_id):
        super().__init__(item_id)
        self.item_id = item_id

    def __str__(self):
        return f"Unknown item id {self.item_id!r} (stale or incomplete market data?)"


@dataclass(frozen=True)
class Item:
    """A tradable or craftable item."""
    id: int
    name: str
    vendor_price: Optional[int] = None  # flat price from a fixed-price vendor
    sellable: bool = True  # may be bought/sold on the trading post
    vendor_value: int = 0
    flags: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.vendor_price is not None and self.vendor_price < 0:
            raise ValueError(f"Item {self.id}: vendor price must be non-negative")


@dataclass(frozen=True)
class Ingredient:
    item_id: int
    quantity: int

    def __post_init__(self):
        if self.quantity < 1:
            raise ValueError(f"Ingredient {self.item_id}: quantity must be >= 1")


@dataclass(frozen=True)
class Recipe:
    """A fixed-ratio recipe producing ``output_quantity`` of ``output_item_id``."""
    output_item_id: int
    output_quantity: int
    ingredients: Tuple[Ingredient, ...]
    id: Optional[int] = None
    disciplines: Tuple[str, ...] = field(default=())

    def __post_init__(self):
        if self.output_quantity < 1:
            raise ValueError(f"Recipe {self.id}: output quantity must be >= 1")
        if not self.ingredients:
            raise ValueError(f"Recipe {self.id}: at least one ingredient is required")

    @property
    def order_key(self) -> Tuple[bool, int]:
        """Deterministic tie-break between equal-cost recipes: lowest id first,
        recipes without an id last."""
        return (self.id is None, self.id or 0)

    @property
    def ingredient_ids(self) -> List[int]:
        return [ing.item_id for ing in self.ingredients]


class RecipeGraph:
    """Read-only index of items and recipes for one run."""

    def __init__(self, items: Iterable[Item], recipes: Iterable[Recipe],
                 item_blacklist: Iterable[int] = (), recipe_blacklist: Iterable[int] = (),
                 excluded_outputs: Iterable[int] = ()):
        self.logger = logging.getLogger(__name__)

        item_blacklist = set(item_blacklist)
        recipe_blacklist = set(recipe_blacklist)
        excluded_outputs = set(excluded_outputs)

        self._items: Dict[int, Item] = {}
        for item in items:
            if item.id in item_blacklist:
                item = replace(item, sellable=False)
            self._items[item.id] = item

        by_output: Dict[int, List[Recipe]] = defaultdict(list)
        skipped = 0
        for recipe in recipes:
            if (recipe.id is not None and recipe.id in recipe_blacklist) \
                    or recipe.output_item_id in item_blacklist \
                    or recipe.output_item_id in excluded_outputs:
                skipped += 1
                continue
            by_output[recipe.output_item_id].append(recipe)

        self._by_output: Dict[int, Tuple[Recipe, ...]] = {
            item_id: tuple(sorted(recs, key=lambda r: r.order_key))
            for item_id, recs in by_output.items()
        }
        self.logger.debug(
            "Recipe graph: %d items, %d producible outputs, %d recipes skipped",
            len(self._items), len(self._by_output), skipped,
        )

    @classmethod
    def from_source(cls, source, config: Optional[Dict[str, Any]] = None) -> "RecipeGraph":
        """Build a graph from a market-data source, applying config filters."""
        config = config or {}
        blacklist = config.get('blacklist', {}) or {}
        crafting = config.get('crafting', {}) or {}
        excluded = () if crafting.get('include_timegated', False) else crafting.get('timegated_outputs', ())

        items = list(source.items())
        recipes: List[Recipe] = []
        for item in items:
            recipes.extend(source.get_recipes_for_output(item.id))
        return cls(
            items,
            recipes,
            item_blacklist=blacklist.get('items') or (),
            recipe_blacklist=blacklist.get('recipes') or (),
            excluded_outputs=excluded or (),
        )

    def __contains__(self, item_id) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def get_item(self, item_id) -> Optional[Item]:
        """Return the item, or ``None`` when it is not in the snapshot."""
        return self._items.get(item_id)

    def require_item(self, item_id) -> Item:
        item = self._items.get(item_id)
        if item is None:
            raise UnknownItemError(item_id)
        return item

    def items(self) -> Iterator[Item]:
        return iter(self._items.values())

    def get_recipes_for_output(self, item_id) -> Tuple[Recipe, ...]:
        """Recipes producing ``item_id``, lowest recipe id first; empty if none."""
        return self._by_output.get(item_id, ())

    def craftable_item_ids(self) -> List[int]:
        """Known items with at least one recipe, in id order."""
        return sorted(i for i in self._by_output if i in self._items)

    def collect_ingredient_ids(self, item_id) -> List[int]:
        """All transitive ingredient ids of ``item_id``'s recipes, in discovery order."""
        seen: Set[int] = set()
        ordered: List[int] = []
        stack = [item_id]
        while stack:
            current = stack.pop()
            for recipe in self.get_recipes_for_output(current):
                for ing_id in recipe.ingredient_ids:
                    if ing_id in seen:
                        continue
                    seen.add(ing_id)
                    ordered.append(ing_id)
                    stack.append(ing_id)
        return ordered

    def recursive_items(self) -> Set[int]:
        """Items whose recipe closure contains the item itself."""
        return {item_id for item_id in self._by_output
                if item_id in self.collect_ingredient_ids(item_id)}
