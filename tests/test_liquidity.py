import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

import pytest

from engine.cost_resolver import CostSource
from engine.liquidity import LiquiditySimulator, walk_tiers
from engine.order_book import ListingTier, OrderBook
from engine.recipe_graph import Ingredient, Item, Recipe, RecipeGraph
from services.market_data import MarketSnapshot


def recipe(output, ingredients, out_qty=1, recipe_id=None):
    return Recipe(output, out_qty, tuple(Ingredient(i, q) for i, q in ingredients), recipe_id)


def simulator_for(items, recipes=(), books=()):
    snapshot = MarketSnapshot(items, recipes, books)
    return LiquiditySimulator(RecipeGraph.from_source(snapshot), snapshot)


def test_walk_reports_capped_quantity_beyond_depth():
    tiers = [ListingTier(10, 5), ListingTier(12, 5)]
    result = walk_tiers(tiers, 15)
    assert result.quantity == 10
    assert result.total == 110
    assert not result.complete
    assert result.shortfall == 5
    assert (result.min_price, result.max_price) == (10, 12)


def test_walk_skips_consumed_depth():
    tiers = [ListingTier(10, 5), ListingTier(12, 5)]
    result = walk_tiers(tiers, 3, skip=4)
    assert result.total == 10 + 12 * 2
    assert result.complete


def test_books_sorted_regardless_of_input_order():
    book = OrderBook.from_listings(1, sells=[(12, 5), (10, 5), (11, 0)], buys=[(3, 1), (8, 2)])
    assert [t.price for t in book.sells] == [10, 12]
    assert book.best_sell == 10
    assert book.best_buy == 8
    assert book.sell_depth == 10 and book.buy_depth == 3


def test_order_book_rejects_negative_tiers():
    with pytest.raises(ValueError):
        OrderBook.from_listings(1, sells=[(-1, 5)])


def test_curves_monotone_up_to_depth():
    sim = simulator_for(
        [Item(1, "Ore")],
        books=[OrderBook.from_listings(1, sells=[(7, 3), (5, 2), (9, 4)], buys=[(4, 3), (6, 2), (2, 4)])],
    )
    buy_totals = [sim.buy_cost_curve(1, q).total for q in range(0, 10)]
    sell_totals = [sim.sell_revenue_curve(1, q).total for q in range(0, 10)]
    buy_marginals = [sim.marginal_cost(1, q) for q in range(1, 10)]
    sell_marginals = [sim.marginal_revenue(1, q) for q in range(1, 10)]

    assert buy_totals == sorted(buy_totals)
    assert sell_totals == sorted(sell_totals)
    assert buy_marginals == sorted(buy_marginals)
    assert sell_marginals == sorted(sell_marginals, reverse=True)
    assert sim.marginal_cost(1, 10) is None
    assert not sim.buy_cost_curve(1, 10).complete


def test_buy_versus_craft_flips_with_quantity():
    raw, part, top = 1, 2, 3
    sim = simulator_for(
        [Item(raw, "Raw"), Item(part, "Part"), Item(top, "Top")],
        [recipe(part, [(raw, 1)]), recipe(top, [(part, 1)])],
        [
            OrderBook.from_listings(raw, sells=[(3, 1000)]),
            OrderBook.from_listings(part, sells=[(2, 2), (50, 100)]),
        ],
    )
    small = sim.craft_quote(top, 1)
    large = sim.craft_quote(top, 10)

    assert small.children[0].source is CostSource.BUY
    assert small.total == 2
    assert large.children[0].source is CostSource.CRAFT
    assert large.total == 30
    assert sim.obtain_cost_curve(part, 10) == 30


def test_shared_ingredient_depth_is_consumed_once():
    raw, a, b, top = 1, 2, 3, 4
    sim = simulator_for(
        [Item(raw, "Raw"), Item(a, "A"), Item(b, "B"), Item(top, "Top")],
        [recipe(a, [(raw, 1)]), recipe(b, [(raw, 1)]), recipe(top, [(a, 1), (b, 1)])],
        [OrderBook.from_listings(raw, sells=[(10, 1), (20, 1)])],
    )
    assert sim.craft_cost_curve(top, 1) == 30
    assert sim.craft_cost_curve(top, 2) is None


def test_recipe_uses_round_up():
    raw, out = 1, 2
    sim = simulator_for(
        [Item(raw, "Raw"), Item(out, "Out")],
        [recipe(out, [(raw, 2)], out_qty=3)],
        [OrderBook.from_listings(raw, sells=[(5, 100)])],
    )
    quote = sim.craft_quote(out, 4)
    assert quote.uses == 2
    assert quote.surplus == 2
    assert quote.children[0].quantity == 4
    assert quote.total == 20


def test_vendor_has_unlimited_depth():
    sim = simulator_for([Item(1, "Water", vendor_price=8, sellable=False)])
    quote = sim.obtain_quote(1, 10000)
    assert quote.source is CostSource.VENDOR
    assert quote.total == 80000


def test_item_cannot_craft_itself():
    sim = simulator_for([Item(1, "Loop")], [recipe(1, [(1, 1)])])
    assert sim.obtain_quote(1, 1) is None
    assert sim.craft_cost_curve(1, 1) is None
    assert sim.craft_cost_curve(1, 0) == 0
