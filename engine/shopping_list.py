"""
Shopping list builder for Craft Arbitrage.

Decomposes a target quantity into a concrete tree of purchases and recipe
uses, re-deciding buy versus craft at every node's own quantity.
"""

import logging
from collections import Counter, OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from .cost_resolver import CostSource
from .liquidity import LiquiditySimulator, Quote, walk_tiers
from .money import format_coins
from .recipe_graph import Recipe


class PlanError(ValueError):
    """A shopping list cannot be carried out against the current books."""


@dataclass(frozen=True)
class ShoppingListNode:
    """One step of a plan: ``quantity`` units of ``item_id`` from ``source``.

    Craft nodes have one child per recipe ingredient. ``total_cost`` is
    ``None`` only for an unavailable node.
    """
    item_id: int
    name: str
    quantity: int
    source: CostSource
    total_cost: Optional[int]
    recipe: Optional[Recipe] = None
    uses: int = 0
    surplus: int = 0
    children: Tuple["ShoppingListNode", ...] = ()
    min_price: Optional[int] = None
    max_price: Optional[int] = None

    @property
    def recipe_id(self) -> Optional[int]:
        return self.recipe.id if self.recipe else None

    @property
    def available(self) -> bool:
        return self.source is not CostSource.UNAVAILABLE

    def walk(self) -> Iterator["ShoppingListNode"]:
        """Pre-order traversal."""
        yield self
        for child in self.children:
            yield from child.walk()

    def walk_post_order(self) -> Iterator["ShoppingListNode"]:
        for child in self.children:
            yield from child.walk_post_order()
        yield self

    def to_dict(self) -> dict:
        return {
            'item_id': self.item_id,
            'name': self.name,
            'quantity': self.quantity,
            'source': self.source.value,
            'total_cost': self.total_cost,
            'recipe_id': self.recipe_id,
            'uses': self.uses,
            'surplus': self.surplus,
            'min_price': self.min_price,
            'max_price': self.max_price,
            'children': [c.to_dict() for c in self.children],
        }


@dataclass(frozen=True)
class Purchase:
    item_id: int
    name: str
    source: CostSource
    quantity: int
    total_cost: int


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of replaying a plan: money spent and what is left in hand."""
    total_cost: int
    inventory: Dict[int, int]


class ShoppingListBuilder:
    """Builds and checks shopping lists over one market snapshot."""

    def __init__(self, simulator: LiquiditySimulator, optimizer=None):
        self.simulator = simulator
        self.graph = simulator.graph
        self.optimizer = optimizer
        self.logger = logging.getLogger(__name__)

    def build_shopping_list(self, item_id, quantity: Optional[int] = None,
                            craft_root: bool = False) -> Optional[ShoppingListNode]:
        """Plan how to obtain ``quantity`` units of ``item_id``.

        Without a quantity the item's optimal production quantity is used and
        the root is crafted; ``None`` is returned when that quantity is zero.
        When nothing can supply the quantity the root is an unavailable node.
        """
        item = self.graph.require_item(item_id)

        if quantity is None:
            if self.optimizer is None:
                from .profit import ProfitOptimizer
                self.optimizer = ProfitOptimizer(self.simulator)
            quantity = self.optimizer.optimal_quantity(item_id).quantity
            if quantity == 0:
                self.logger.info("Item %s is not profitable to craft right now", item_id)
                return None
            craft_root = True
        elif quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")

        if craft_root:
            quote = self.simulator.craft_quote(item_id, quantity)
        else:
            quote = self.simulator.obtain_quote(item_id, quantity)

        if quote is None:
            self.logger.warning("No source can supply %d x %s", quantity, item.name)
            return ShoppingListNode(item.id, item.name, quantity, CostSource.UNAVAILABLE, None)

        node = self._to_node(quote)
        self.logger.debug("Shopping list for %d x %s costs %s", quantity, item.name,
                          format_coins(node.total_cost))
        return node

    def _to_node(self, quote: Quote) -> ShoppingListNode:
        item = self.graph.get_item(quote.item_id)
        return ShoppingListNode(
            item_id=quote.item_id,
            name=item.name if item else str(quote.item_id),
            quantity=quote.quantity,
            source=quote.source,
            total_cost=quote.total,
            recipe=quote.recipe,
            uses=quote.uses,
            surplus=quote.surplus,
            children=tuple(self._to_node(child) for child in quote.children),
            min_price=quote.min_price,
            max_price=quote.max_price,
        )

    def simulate(self, node: ShoppingListNode) -> SimulationResult:
        """Replay ``node`` forward against fresh order books.

        Every purchase is bought in one walk per item, then recipe uses are
        applied bottom-up. Raises ``PlanError`` if the books cannot fill a
        purchase or a craft is short of an ingredient.
        """
        if not node.available:
            raise PlanError(f"Item {node.item_id} is unavailable")

        inventory: Counter = Counter()
        total = 0
        for purchase in purchases(node):
            item = self.graph.require_item(purchase.item_id)
            if purchase.source is CostSource.BUY:
                book = self.simulator.market.get_order_book(purchase.item_id)
                walk = walk_tiers(book.sells if book else (), purchase.quantity)
                if not walk.complete:
                    raise PlanError(f"Only {walk.quantity} of {purchase.quantity} x {item.name} listed")
                total += walk.total
            else:
                total += item.vendor_price * purchase.quantity
            inventory[purchase.item_id] += purchase.quantity

        for step in node.walk_post_order():
            if step.source is not CostSource.CRAFT:
                continue
            for ingredient in step.recipe.ingredients:
                needed = ingredient.quantity * step.uses
                if inventory[ingredient.item_id] < needed:
                    raise PlanError(f"Craft of {step.name} short of ingredient {ingredient.item_id}")
                inventory[ingredient.item_id] -= needed
            inventory[step.item_id] += step.uses * step.recipe.output_quantity

        if inventory[node.item_id] < node.quantity:
            raise PlanError(f"Plan yields {inventory[node.item_id]} of {node.quantity} x {node.name}")
        return SimulationResult(total, {k: v for k, v in inventory.items() if v})


def purchases(node: ShoppingListNode) -> List[Purchase]:
    """Raw purchases aggregated per item and source, in first-seen order."""
    totals: "OrderedDict[Tuple[int, CostSource], List]" = OrderedDict()
    for step in node.walk():
        if step.source not in (CostSource.BUY, CostSource.VENDOR):
            continue
        key = (step.item_id, step.source)
        entry = totals.setdefault(key, [step.name, 0, 0])
        entry[1] += step.quantity
        entry[2] += step.total_cost
    return [Purchase(item_id, name, source, qty, cost)
            for (item_id, source), (name, qty, cost) in totals.items()]


def crafts(node: ShoppingListNode) -> Dict[int, int]:
    """Recipe uses per crafted item, deepest first."""
    uses: Dict[int, int] = {}
    for step in node.walk_post_order():
        if step.source is CostSource.CRAFT:
            uses[step.item_id] = uses.get(step.item_id, 0) + step.uses
    return uses


def format_tree(node: ShoppingListNode, indent: str = "  ") -> str:
    lines = []

    def visit(step: ShoppingListNode, depth: int):
        if not step.available:
            detail = "unavailable"
        elif step.source is CostSource.CRAFT:
            recipe = f"#{step.recipe_id}" if step.recipe_id is not None else "custom"
            detail = f"craft {recipe} x{step.uses}, {format_coins(step.total_cost)}"
            if step.surplus:
                detail += f", {step.surplus} spare"
        else:
            detail = f"{step.source.value}, {format_coins(step.total_cost)}"
        lines.append(f"{indent * depth}{step.quantity} x {step.name} ({detail})")
        for child in step.children:
            visit(child, depth + 1)

    visit(node, 0)
    return "\n".join(lines)


__all__ = [
    "PlanError",
    "ShoppingListNode",
    "Purchase",
    "SimulationResult",
    "ShoppingListBuilder",
    "purchases",
    "crafts",
    "format_tree",
]
