"""
Market snapshot assembly for Craft Arbitrage.

A ``MarketSnapshot`` is the immutable collection of items, recipes and order
books one run works from. It can be built from raw API payloads, a JSON file
or the snapshot store, and is never modified once built.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from engine.cost_resolver import CostResolver
from engine.money import FeeSchedule
from engine.order_book import OrderBook
from engine.recipe_graph import Ingredient, Item, Recipe, RecipeGraph
from utils.constants import (
    CUSTOM_RECIPES_URL,
    DEFAULT_LISTING_FEE_RATE,
    RESTRICTED_FLAGS,
    TIMEGATED_OUTPUTS,
    VENDOR_CUSTOM_PRICES,
    VENDOR_MARKUP,
    VENDOR_STANDARD_ITEMS,
)

logger = logging.getLogger(__name__)


class SnapshotFormatError(ValueError):
    """A snapshot document or API payload has an unexpected shape."""


def vendor_price_for(item_id: int, vendor_value: int,
                     vendor_config: Optional[Dict[str, Any]] = None) -> Optional[int]:
    """Fixed vendor price of an item, or ``None`` when no vendor sells it."""
    vendor_config = vendor_config or {}
    custom = vendor_config.get('custom_prices', VENDOR_CUSTOM_PRICES) or {}
    custom = {int(k): int(v) for k, v in custom.items()}
    if item_id in custom:
        return custom[item_id]
    standard = set(vendor_config.get('standard_items', VENDOR_STANDARD_ITEMS) or ())
    if item_id in standard:
        return vendor_value * int(vendor_config.get('markup', VENDOR_MARKUP))
    return None


def item_from_record(record: Dict[str, Any], vendor_config: Optional[Dict[str, Any]] = None) -> Item:
    """Build an ``Item`` from an API ``/items`` record or a snapshot entry."""
    item_id = int(record['id'])
    flags = tuple(record.get('flags') or ())
    vendor_value = int(record.get('vendor_value') or 0)
    if 'vendor_price' in record:
        vendor_price = record['vendor_price']
    else:
        vendor_price = vendor_price_for(item_id, vendor_value, vendor_config)
    sellable = record.get('sellable')
    if sellable is None:
        sellable = not RESTRICTED_FLAGS.intersection(flags)
    return Item(
        id=item_id,
        name=record.get('name') or str(item_id),
        vendor_price=None if vendor_price is None else int(vendor_price),
        sellable=bool(sellable),
        vendor_value=vendor_value,
        flags=flags,
    )


def _ingredients(record: Dict[str, Any]) -> Optional[List[Ingredient]]:
    """Item ingredients of a recipe record, or ``None`` if it needs anything else."""
    if record.get('guild_ingredients'):
        return None
    ingredients = []
    for raw in record.get('ingredients') or ():
        if raw.get('type', 'Item') != 'Item':
            return None
        item_id = raw['item_id'] if 'item_id' in raw else raw['id']
        ingredients.append(Ingredient(int(item_id), int(raw['count'])))
    return ingredients or None


def recipe_from_record(record: Dict[str, Any]) -> Optional[Recipe]:
    """Build a ``Recipe`` from an API ``/recipes`` record.

    Returns ``None`` for recipes that need anything other than items.
    """
    ingredients = _ingredients(record)
    if ingredients is None:
        return None
    recipe_id = record.get('id')
    return Recipe(
        output_item_id=int(record['output_item_id']),
        output_quantity=int(record.get('output_item_count', 1)),
        ingredients=tuple(ingredients),
        id=None if recipe_id is None else int(recipe_id),
        disciplines=tuple(record.get('disciplines') or ()),
    )


def custom_recipe_from_record(record: Dict[str, Any]) -> Optional[Recipe]:
    """Build an id-less ``Recipe`` from a custom recipe record.

    Custom records name their recipe instead of numbering it, and some carry a
    fractional or missing output count; those are skipped.
    """
    count = record.get('output_item_count')
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        logger.debug("Ignoring custom recipe %r: output count %r is not a whole number",
                     record.get('name'), count)
        return None
    ingredients = _ingredients(record)
    if ingredients is None:
        return None
    return Recipe(
        output_item_id=int(record['output_item_id']),
        output_quantity=count,
        ingredients=tuple(ingredients),
        id=None,
        disciplines=tuple(record.get('disciplines') or ()),
    )


def recipe_to_record(recipe: Recipe) -> Dict[str, Any]:
    return {
        'id': recipe.id,
        'output_item_id': recipe.output_item_id,
        'output_item_count': recipe.output_quantity,
        'disciplines': list(recipe.disciplines),
        'ingredients': [{'item_id': i.item_id, 'count': i.quantity} for i in recipe.ingredients],
    }


def item_to_record(item: Item) -> Dict[str, Any]:
    return {
        'id': item.id,
        'name': item.name,
        'vendor_price': item.vendor_price,
        'sellable': item.sellable,
        'vendor_value': item.vendor_value,
        'flags': list(item.flags),
    }


class MarketSnapshot:
    """Read-only items, recipes and order books for one run."""

    def __init__(self, items: Iterable[Item], recipes: Iterable[Recipe],
                 order_books: Iterable[OrderBook] = (), fetched_at: Optional[datetime] = None):
        self._items: Dict[int, Item] = {item.id: item for item in items}
        self._recipes: Tuple[Recipe, ...] = tuple(recipes)
        by_output: Dict[int, List[Recipe]] = {}
        for recipe in self._recipes:
            by_output.setdefault(recipe.output_item_id, []).append(recipe)
        self._by_output = {k: tuple(v) for k, v in by_output.items()}
        self._books: Dict[int, OrderBook] = {book.item_id: book for book in order_books}
        self.fetched_at = fetched_at or datetime.now(timezone.utc)

    def __len__(self) -> int:
        return len(self._items)

    def get_item(self, item_id) -> Optional[Item]:
        return self._items.get(item_id)

    def items(self) -> List[Item]:
        return list(self._items.values())

    def recipes(self) -> Tuple[Recipe, ...]:
        return self._recipes

    def get_recipes_for_output(self, item_id) -> Tuple[Recipe, ...]:
        return self._by_output.get(item_id, ())

    def get_order_book(self, item_id) -> Optional[OrderBook]:
        return self._books.get(item_id)

    def order_books(self) -> List[OrderBook]:
        return list(self._books.values())

    # Serialization -------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fetched_at': self.fetched_at.isoformat(),
            'items': [item_to_record(i) for i in self._items.values()],
            'recipes': [recipe_to_record(r) for r in self._recipes],
            'listings': [b.to_dict() for b in self._books.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  vendor_config: Optional[Dict[str, Any]] = None) -> "MarketSnapshot":
        """Build a snapshot from a document with ``items``, ``recipes`` and ``listings``."""
        if not isinstance(data, dict):
            raise SnapshotFormatError("Snapshot document must be a mapping")
        try:
            items = [item_from_record(r, vendor_config) for r in data.get('items', [])]
            recipes = [r for r in map(recipe_from_record, data.get('recipes', [])) if r is not None]
            books = [
                OrderBook.from_listings(int(r['id']), r.get('sells') or (), r.get('buys') or ())
                for r in data.get('listings', [])
            ]
            fetched_at = data.get('fetched_at')
            fetched_at = datetime.fromisoformat(fetched_at) if fetched_at else None
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotFormatError(f"Malformed snapshot: {e}") from e
        return cls(items, recipes, books, fetched_at)

    @classmethod
    def from_api(cls, item_records: Iterable[Dict[str, Any]], recipe_records: Iterable[Dict[str, Any]],
                 listing_records: Iterable[Dict[str, Any]] = (),
                 vendor_config: Optional[Dict[str, Any]] = None,
                 custom_records: Iterable[Dict[str, Any]] = ()) -> "MarketSnapshot":
        """Build a snapshot from raw ``/items``, ``/recipes`` and ``/commerce/listings`` payloads.

        ``custom_records`` are id-less recipes from outside the API.
        """
        recipes = []
        dropped = 0
        try:
            parsed = [recipe_from_record(r) for r in recipe_records]
            parsed.extend(custom_recipe_from_record(r) for r in custom_records)
            for recipe in parsed:
                if recipe is None:
                    dropped += 1
                    continue
                recipes.append(recipe)
            items = [item_from_record(r, vendor_config) for r in item_records]
            books = [OrderBook.from_listings(int(r['id']), r.get('sells') or (), r.get('buys') or ())
                     for r in listing_records]
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotFormatError(f"Malformed API payload: {e}") from e
        if dropped:
            logger.debug("Dropped %d recipes with non-item ingredients or bad output counts", dropped)
        return cls(items, recipes, books)

    def dump_json(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open('w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=1)
        logger.info("Wrote snapshot with %d items to %s", len(self), path)
        return path

    @classmethod
    def load_json(cls, path: Union[str, Path],
                  vendor_config: Optional[Dict[str, Any]] = None) -> "MarketSnapshot":
        path = Path(path)
        try:
            with path.open('r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SnapshotFormatError(f"{path} is not valid JSON: {e}") from e
        snapshot = cls.from_dict(data, vendor_config)
        logger.info("Loaded snapshot with %d items and %d recipes from %s",
                    len(snapshot), len(snapshot.recipes()), path)
        return snapshot



def _record_item_ids(record: Dict[str, Any]) -> List[int]:
    ids = [int(record['output_item_id'])]
    for ing in record.get('ingredients') or ():
        if ing.get('type', 'Item') == 'Item':
            ids.append(int(ing['item_id'] if 'item_id' in ing else ing['id']))
    return ids


def _top_of_book(record: Dict[str, Any]) -> Dict[str, Any]:
    """Listing-shaped record holding the single tier a '/commerce/prices' record reports."""
    return {
        'id': record['id'],
        'sells': [record['sells']] if record.get('sells') else [],
        'buys': [record['buys']] if record.get('buys') else [],
    }


def load_custom_recipes(client, crafting: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Custom recipe records from ``crafting.custom_recipes_file`` or the published list."""
    if not crafting.get('custom_recipes', True):
        return []
    path = crafting.get('custom_recipes_file')
    if path:
        path = Path(path)
        try:
            with path.open('r', encoding='utf-8') as f:
                records = json.load(f)
        except json.JSONDecodeError as e:
            raise SnapshotFormatError(f"{path} is not valid JSON: {e}") from e
        if not isinstance(records, list):
            raise SnapshotFormatError(f"{path} must hold a list of recipes")
        logger.info("Loaded %d custom recipes from %s", len(records), path)
        return records
    return client.get_custom_recipes(crafting.get('custom_recipes_url') or CUSTOM_RECIPES_URL)


def prefilter_listing_ids(snapshot: MarketSnapshot, config: Dict[str, Any],
                          fees: FeeSchedule) -> Tuple[List[int], List[int]]:
    """Pick the items worth a full order book, judged on top-of-book prices.

    ``snapshot`` holds one tier per side. An item qualifies when its net top
    buy price (or the configured fixed sell price) beats its cheapest unit
    craft cost. Returns ``(candidates, listing_ids)``, where ``listing_ids``
    adds every ingredient the candidates can transitively use.
    """
    graph = RecipeGraph.from_source(snapshot, config)
    resolver = CostResolver(graph, snapshot)
    fixed_price = (config.get('ranking', {}) or {}).get('fixed_sell_price')

    candidates: List[int] = []
    needed = set()
    for item_id in graph.craftable_item_ids():
        if not graph.get_item(item_id).sellable:
            continue
        if fixed_price is not None:
            price = int(fixed_price)
        else:
            book = snapshot.get_order_book(item_id)
            price = book.best_buy if book is not None else None
        if price is None:
            continue
        best = resolver.best_craft(item_id)
        if best is None or fees.net_revenue(price) <= best.cost.value:
            continue
        candidates.append(item_id)
        needed.add(item_id)
        needed.update(graph.collect_ingredient_ids(item_id))

    listing_ids = sorted(
        i for i in needed
        if graph.get_item(i) is not None and graph.get_item(i).sellable
    )
    logger.info("Prefilter: %d of %d craftable items look profitable, %d order books needed",
                len(candidates), len(graph.craftable_item_ids()), len(listing_ids))
    return candidates, listing_ids


def fetch_snapshot(client, config: Dict[str, Any], fees: Optional[FeeSchedule] = None) -> MarketSnapshot:
    """Download recipes, the items they touch and the order books worth walking.

    With ``api.prefilter_listings`` on, top-of-book prices are fetched first
    and full listings only for items that look profitable plus their
    ingredients. Otherwise every tradable item's listings are fetched.
    """
    crafting = config.get('crafting', {}) or {}
    vendor_config = config.get('vendor')
    if fees is None:
        fees = FeeSchedule((config.get('fees', {}) or {}).get('listing_fee_rate', DEFAULT_LISTING_FEE_RATE))
    timegated = set() if crafting.get('include_timegated') else \
        set(crafting.get('timegated_outputs', TIMEGATED_OUTPUTS) or ())

    recipe_records = [r for r in client.get_recipes() if r.get('output_item_id') not in timegated]
    custom_records = [r for r in load_custom_recipes(client, crafting)
                      if r.get('output_item_id') not in timegated]

    item_ids = set()
    try:
        for record in recipe_records + custom_records:
            item_ids.update(_record_item_ids(record))
    except (KeyError, TypeError, ValueError) as e:
        raise SnapshotFormatError(f"Malformed recipe record: {e}") from e
    item_records = client.get_items(sorted(item_ids))

    tradable = sorted(
        r['id'] for r in item_records
        if not RESTRICTED_FLAGS.intersection(r.get('flags') or ())
    )

    if (config.get('api', {}) or {}).get('prefilter_listings', True):
        price_records = client.get_prices(tradable)
        top_of_book = MarketSnapshot.from_api(
            item_records, recipe_records,
            [_top_of_book(r) for r in price_records],
            vendor_config, custom_records,
        )
        _, listing_ids = prefilter_listing_ids(top_of_book, config, fees)
    else:
        listing_ids = tradable
    listing_records = client.get_listings(listing_ids)

    snapshot = MarketSnapshot.from_api(item_records, recipe_records, listing_records,
                                       vendor_config, custom_records)
    logger.info("Fetched snapshot: %d items, %d recipes, %d order books",
                len(snapshot), len(snapshot.recipes()), len(snapshot.order_books()))
    return snapshot


__all__ = [
    "SnapshotFormatError",
    "MarketSnapshot",
    "fetch_snapshot",
    "prefilter_listing_ids",
    "load_custom_recipes",
    "vendor_price_for",
    "item_from_record",
    "recipe_from_record",
    "custom_recipe_from_record",
]
