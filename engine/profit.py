"""
Profit optimizer for Craft Arbitrage.

Finds the production quantity that maximizes crafting profit against the
current order books and ranks every craftable item by it.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from fractions import Fraction
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from utils.constants import SORT_KEYS
from .liquidity import LiquiditySimulator, Quote
from .money import FeeSchedule, div_ceil

# Upper bound on recipe uses searched when neither order book depth nor a
# quantity cap limits production.
MAX_SEARCH_USES = 1 << 20


class ProfitResult(NamedTuple):
    quantity: int
    profit_total: int
    profit_per_step: int
    profit_on_cost: Fraction


ZERO_RESULT = ProfitResult(0, 0, 0, Fraction(0))


@dataclass(frozen=True)
class Opportunity:
    """Best crafting run found for one item."""
    item_id: int
    name: str
    quantity: int
    uses: int
    total_cost: int
    gross_revenue: int
    net_revenue: int
    profit_total: int
    profit_per_item: int
    profit_per_step: int
    profit_on_cost: Fraction
    recipe_id: Optional[int] = None
    min_sell_price: Optional[int] = None
    max_sell_price: Optional[int] = None
    breakeven_price: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProfitOptimizer:
    """Computes q* per item and ranks craftable items by profit."""

    def __init__(self, simulator: LiquiditySimulator, fees: Optional[FeeSchedule] = None,
                 options: Optional[Dict[str, Any]] = None):
        self.simulator = simulator
        self.graph = simulator.graph
        self.resolver = simulator.resolver
        self.fees = fees or FeeSchedule()
        self.logger = logging.getLogger(__name__)

        options = options or {}
        self.min_step_profit = int(options.get('min_step_profit') or 0)
        self.max_quantity = options.get('max_quantity')
        self.fixed_sell_price = options.get('fixed_sell_price')
        self.sort_key = options.get('sort_key') or 'profit_total'
        self.max_results = options.get('max_results')
        self.max_workers = max(1, int(options.get('max_workers') or 1))
        self.disciplines = set(options.get('disciplines') or ())

    # Curves --------------------------------------------------------------

    def gross_revenue(self, item_id, qty: int) -> int:
        if self.fixed_sell_price is not None:
            return self.fixed_sell_price * qty
        return self.simulator.sell_revenue_curve(item_id, qty).total

    def scaled_profit(self, item_id, qty: int) -> Optional[int]:
        """Profit at ``qty`` multiplied by the fee denominator, without rounding.

        ``None`` when the quantity cannot be crafted from current supply.
        """
        if qty == 0:
            return 0
        cost = self.simulator.craft_cost_curve(item_id, qty)
        if cost is None:
            return None
        return self.fees.scaled_net(self.gross_revenue(item_id, qty)) - self.fees.scaled(cost)

    def step_size(self, item_id) -> Optional[int]:
        """Output quantity of the recipe with the cheapest unit craft cost."""
        best = self.resolver.best_craft(item_id)
        return best.recipe.output_quantity if best else None

    # Search --------------------------------------------------------------

    def _use_cap(self, item_id, step: int) -> Optional[int]:
        caps = []
        if self.fixed_sell_price is None:
            caps.append(self.simulator.sell_depth(item_id) // step)
        if self.max_quantity is not None:
            caps.append(int(self.max_quantity) // step)
        return min(caps) if caps else None

    def _feasible(self, item_id, uses: int, step: int) -> bool:
        return uses == 0 or self.simulator.craft_cost_curve(item_id, uses * step) is not None

    def _max_feasible_uses(self, item_id, step: int, cap: Optional[int]) -> int:
        if cap is None:
            cap = 1
            while cap < MAX_SEARCH_USES and self._feasible(item_id, cap, step):
                cap *= 2
            if cap >= MAX_SEARCH_USES:
                self.logger.warning("Item %s: production unbounded, search capped at %d uses",
                                    item_id, MAX_SEARCH_USES)
                cap = MAX_SEARCH_USES

        lo, hi = 0, cap
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self._feasible(item_id, mid, step):
                lo = mid
            else:
                hi = mid - 1
        return lo

    def _revenue_bound(self, item_id, step: int, feasible: int) -> int:
        """Last use whose marginal revenue alone clears the step threshold.

        Marginal revenue never rises and craft cost never falls as quantity
        grows, so no later use can clear the threshold either.
        """
        threshold = self.fees.scaled(self.min_step_profit)

        def clears(uses: int) -> bool:
            gained = self.gross_revenue(item_id, uses * step) - self.gross_revenue(item_id, (uses - 1) * step)
            return self.fees.scaled_net(gained) > threshold

        lo, hi = 0, feasible
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if clears(mid):
                lo = mid
            else:
                hi = mid - 1
        return lo

    def _optimal_uses(self, item_id, step: int) -> int:
        cap = self._use_cap(item_id, step)
        feasible = self._max_feasible_uses(item_id, step, cap)
        bound = self._revenue_bound(item_id, step, feasible)
        threshold = self.fees.scaled(self.min_step_profit)

        profits: Dict[int, int] = {}

        def profit(uses: int) -> int:
            if uses not in profits:
                profits[uses] = self.scaled_profit(item_id, uses * step)
            return profits[uses]

        # Marginal cost can fall again past a buy-vs-craft flip: check each use, largest first
        for uses in range(bound, 0, -1):
            if profit(uses) - profit(uses - 1) > threshold:
                return uses
        return 0

    # Public --------------------------------------------------------------

    def optimal_quantity(self, item_id) -> ProfitResult:
        """Return ``(q*, profit_total, profit_per_step, profit_on_cost)``.

        Items that cannot be sold or crafted at a profit give q* = 0.
        """
        opportunity = self.evaluate(item_id)
        if opportunity is None:
            return ZERO_RESULT
        return ProfitResult(opportunity.quantity, opportunity.profit_total,
                            opportunity.profit_per_step, opportunity.profit_on_cost)

    def evaluate(self, item_id) -> Optional[Opportunity]:
        """Full profit breakdown at q*, or ``None`` when the item is excluded."""
        item = self.graph.require_item(item_id)
        if not item.sellable:
            return None

        step = self.step_size(item_id)
        if step is None:
            return None

        uses = self._optimal_uses(item_id, step)
        if uses == 0:
            return None

        quantity = uses * step
        quote = self.simulator.craft_quote(item_id, quantity)
        if quote is None:
            return None

        gross = self.gross_revenue(item_id, quantity)
        net = self.fees.net_revenue(gross)
        profit = net - quote.total
        if profit <= 0:
            return None

        min_sell, max_sell = self._sell_price_range(item_id, quantity)
        return Opportunity(
            item_id=item.id,
            name=item.name,
            quantity=quantity,
            uses=quote.uses,
            total_cost=quote.total,
            gross_revenue=gross,
            net_revenue=net,
            profit_total=profit,
            profit_per_item=profit // quantity,
            profit_per_step=profit // quote.uses,
            profit_on_cost=Fraction(profit, quote.total) if quote.total else Fraction(0),
            recipe_id=quote.recipe.id,
            min_sell_price=min_sell,
            max_sell_price=max_sell,
            breakeven_price=self._breakeven(item_id, quote, quantity, step),
        )

    def _sell_price_range(self, item_id, qty: int):
        if self.fixed_sell_price is not None:
            return self.fixed_sell_price, self.fixed_sell_price
        curve = self.simulator.sell_revenue_curve(item_id, qty)
        return curve.min_price, curve.max_price

    def _breakeven(self, item_id, quote: Quote, qty: int, step: int) -> int:
        """Listing price that just covers the unit cost of the last step."""
        previous = self.simulator.craft_cost_curve(item_id, qty - step) or 0
        return self.fees.listing_price(max(0, div_ceil(quote.total - previous, step)))

    def candidate_ids(self) -> List[int]:
        """Craftable, sellable items passing the discipline filter."""
        ids = []
        for item_id in self.graph.craftable_item_ids():
            item = self.graph.get_item(item_id)
            if not item.sellable:
                continue
            if self.disciplines and not any(
                    self.disciplines.intersection(recipe.disciplines)
                    for recipe in self.graph.get_recipes_for_output(item_id)):
                continue
            ids.append(item_id)
        return ids

    def rank_opportunities(self, sort_key: Optional[str] = None, max_results: Optional[int] = None,
                           item_ids: Optional[Iterable[int]] = None) -> List[Opportunity]:
        """Evaluate every candidate item and return the profitable ones, best first.

        Ties on the sort key fall back to ascending item id.
        """
        sort_key = sort_key or self.sort_key
        if sort_key not in SORT_KEYS:
            raise ValueError(f"Unknown sort key {sort_key!r}, expected one of {', '.join(SORT_KEYS)}")
        if max_results is None:
            max_results = self.max_results

        ids = list(item_ids) if item_ids is not None else self.candidate_ids()
        self.logger.info("Evaluating %d craftable items with %d workers", len(ids), self.max_workers)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            results = list(pool.map(self.evaluate, ids))

        opportunities = [o for o in results if o is not None]
        opportunities.sort(key=lambda o: (-getattr(o, sort_key), o.item_id))
        if max_results:
            opportunities = opportunities[:max_results]

        self.logger.info("Found %d profitable items", len(opportunities))
        return opportunities


__all__ = ["ProfitResult", "Opportunity", "ProfitOptimizer", "MAX_SEARCH_USES"]
