import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

import json

import pytest

from engine.money import FeeSchedule
from engine.order_book import OrderBook
from engine.recipe_graph import Ingredient, Item, Recipe
from services.market_data import (
    MarketSnapshot,
    SnapshotFormatError,
    custom_recipe_from_record,
    fetch_snapshot,
    item_from_record,
    load_custom_recipes,
    prefilter_listing_ids,
    recipe_from_record,
    vendor_price_for,
)

VENDOR = {'markup': 8, 'standard_items': [19704], 'custom_prices': {'46747': 150}}


def test_vendor_price_rules():
    assert vendor_price_for(46747, 10, VENDOR) == 150
    assert vendor_price_for(19704, 1, VENDOR) == 8
    assert vendor_price_for(12345, 1, VENDOR) is None


def test_item_from_api_record():
    item = item_from_record({'id': 19704, 'name': 'Lump of Tin', 'vendor_value': 1, 'flags': []}, VENDOR)
    assert item.vendor_price == 8
    assert item.sellable

    bound = item_from_record({'id': 5, 'name': 'Gift', 'flags': ['AccountBound', 'NoSell']}, VENDOR)
    assert not bound.sellable
    assert bound.vendor_price is None


def test_recipe_shapes():
    plain = recipe_from_record({
        'id': 1, 'output_item_id': 10, 'output_item_count': 5, 'disciplines': ['Chef'],
        'ingredients': [{'item_id': 2, 'count': 3}],
    })
    assert plain == Recipe(10, 5, (Ingredient(2, 3),), 1, ('Chef',))

    typed = recipe_from_record({
        'id': 2, 'output_item_id': 11,
        'ingredients': [{'type': 'Item', 'id': 4, 'count': 1}],
    })
    assert typed.ingredients == (Ingredient(4, 1),)
    assert typed.output_quantity == 1

    currency = {'id': 3, 'output_item_id': 12, 'ingredients': [{'type': 'Currency', 'id': 1, 'count': 5}]}
    guild = {'id': 4, 'output_item_id': 13, 'ingredients': [{'item_id': 2, 'count': 1}],
             'guild_ingredients': [{'upgrade_id': 1, 'count': 1}]}
    assert recipe_from_record(currency) is None
    assert recipe_from_record(guild) is None


def test_json_round_trip(tmp_path):
    snapshot = MarketSnapshot(
        [Item(1, "Raw", vendor_price=3), Item(2, "Crafted", sellable=False)],
        [Recipe(2, 1, (Ingredient(1, 2),), 9)],
        [OrderBook.from_listings(1, sells=[(10, 50), (12, 50)], buys=[(8, 5)])],
    )
    path = snapshot.dump_json(tmp_path / "snap.json")
    loaded = MarketSnapshot.load_json(path)

    assert loaded.get_item(1) == snapshot.get_item(1)
    assert loaded.get_item(2).sellable is False
    assert loaded.get_recipes_for_output(2) == snapshot.get_recipes_for_output(2)
    assert loaded.get_order_book(1) == snapshot.get_order_book(1)
    assert loaded.get_order_book(2) is None
    assert loaded.fetched_at == snapshot.fetched_at


def test_malformed_documents(tmp_path):
    with pytest.raises(SnapshotFormatError):
        MarketSnapshot.from_dict([1, 2])
    with pytest.raises(SnapshotFormatError):
        MarketSnapshot.from_dict({'items': [{'name': 'no id'}]})
    with pytest.raises(SnapshotFormatError):
        MarketSnapshot.from_dict({'listings': [{'id': 1, 'sells': [{'unit_price': -5, 'quantity': 1}]}]})

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(SnapshotFormatError):
        MarketSnapshot.load_json(bad)


def test_custom_recipe_shapes():
    forge = custom_recipe_from_record({
        'name': 'Mystic Forge', 'output_item_id': 35, 'output_item_count': 2,
        'disciplines': ['Mystic Forge'], 'ingredients': [{'item_id': 30, 'count': 4}],
    })
    assert forge == Recipe(35, 2, (Ingredient(30, 4),), None, ('Mystic Forge',))

    for count in (0.5, None, True, 0):
        assert custom_recipe_from_record({
            'output_item_id': 35, 'output_item_count': count, 'ingredients': [{'item_id': 30, 'count': 1}],
        }) is None


class FakeClient:
    """Serves a small market: ingots and plates pay, junk and bound gifts do not."""

    ITEMS = {
        30: {'id': 30, 'name': 'Ore', 'flags': []},
        31: {'id': 31, 'name': 'Ingot', 'flags': []},
        32: {'id': 32, 'name': 'Plate', 'flags': []},
        33: {'id': 33, 'name': 'Junk', 'flags': []},
        34: {'id': 34, 'name': 'Dust', 'flags': []},
        35: {'id': 35, 'name': 'Gem', 'flags': []},
        36: {'id': 36, 'name': 'Gift', 'flags': ['AccountBound']},
        46740: {'id': 46740, 'name': 'Spool', 'flags': []},
    }
    # id -> (top sell, top buy)
    TOP = {30: (10, None), 31: (40, 30), 32: (None, 100), 33: (None, 5), 34: (50, None), 35: (None, 40),
           46740: (None, 900)}

    def __init__(self, custom=None):
        self.custom = custom if custom is not None else [
            {'name': 'Gem', 'output_item_id': 35, 'output_item_count': 1,
             'ingredients': [{'item_id': 30, 'count': 1}]},
            {'name': 'Half a Junk', 'output_item_id': 33, 'output_item_count': 0.5,
             'ingredients': [{'item_id': 30, 'count': 1}]},
        ]
        self.item_ids = None
        self.price_ids = None
        self.listing_ids = None
        self.custom_urls = []

    def get_recipes(self):
        return [
            {'id': 1, 'output_item_id': 31, 'output_item_count': 1, 'ingredients': [{'item_id': 30, 'count': 2}]},
            {'id': 2, 'output_item_id': 32, 'ingredients': [{'item_id': 31, 'count': 1}, {'item_id': 30, 'count': 1}]},
            {'id': 3, 'output_item_id': 33, 'ingredients': [{'item_id': 34, 'count': 1}]},
            {'id': 4, 'output_item_id': 36, 'ingredients': [{'item_id': 32, 'count': 1}]},
            {'id': 5, 'output_item_id': 46740, 'ingredients': [{'item_id': 30, 'count': 1}]},
        ]

    def get_custom_recipes(self, url):
        self.custom_urls.append(url)
        return self.custom

    def get_items(self, ids):
        self.item_ids = list(ids)
        return [self.ITEMS[i] for i in ids]

    def get_prices(self, ids):
        self.price_ids = list(ids)
        records = []
        for i in ids:
            sell, buy = self.TOP[i]
            records.append({
                'id': i,
                'sells': {'unit_price': sell, 'quantity': 100} if sell else {'unit_price': 0, 'quantity': 0},
                'buys': {'unit_price': buy, 'quantity': 100} if buy else {'unit_price': 0, 'quantity': 0},
            })
        return records

    def get_listings(self, ids):
        self.listing_ids = list(ids)
        records = []
        for i in ids:
            sell, buy = self.TOP[i]
            records.append({
                'id': i,
                'sells': [{'listings': 1, 'unit_price': sell, 'quantity': 100}] if sell else [],
                'buys': [{'listings': 1, 'unit_price': buy, 'quantity': 100}] if buy else [],
            })
        return records


CONFIG = {'crafting': {'include_timegated': False, 'timegated_outputs': [46740]}, 'vendor': VENDOR}


def test_fetch_snapshot_fetches_listings_for_profitable_items_only():
    client = FakeClient()
    snapshot = fetch_snapshot(client, CONFIG)

    assert client.item_ids == [30, 31, 32, 33, 34, 35, 36]
    assert client.price_ids == [30, 31, 32, 33, 34, 35]
    # Junk and its dust are skipped; the bound gift never reaches the trading post
    assert client.listing_ids == [30, 31, 32, 35]
    assert snapshot.get_order_book(34) is None
    assert snapshot.get_order_book(32).best_buy == 100
    assert snapshot.get_item(36).sellable is False


def test_fetch_snapshot_merges_custom_recipes():
    client = FakeClient()
    snapshot = fetch_snapshot(client, CONFIG)

    assert len(client.custom_urls) == 1
    assert [r.id for r in snapshot.get_recipes_for_output(35)] == [None]
    assert [r.id for r in snapshot.get_recipes_for_output(33)] == [3]
    assert sorted(r.id for r in snapshot.recipes() if r.id is not None) == [1, 2, 3, 4]


def test_fetch_snapshot_without_prefilter_or_custom_recipes():
    client = FakeClient()
    config = dict(CONFIG, crafting=dict(CONFIG['crafting'], custom_recipes=False),
                  api={'prefilter_listings': False})
    snapshot = fetch_snapshot(client, config)

    assert client.custom_urls == []
    assert client.price_ids is None
    assert client.listing_ids == [30, 31, 32, 33, 34]
    assert snapshot.get_recipes_for_output(35) == ()
    assert snapshot.get_order_book(34).best_sell == 50


def test_prefilter_respects_fee_rate():
    client = FakeClient(custom=[])
    top = MarketSnapshot.from_api(
        client.get_items(sorted(FakeClient.ITEMS)), client.get_recipes(),
        [{'id': i, 'sells': [(s, 100)] if s else [], 'buys': [(b, 100)] if b else []}
         for i, (s, b) in FakeClient.TOP.items()],
    )
    candidates, listing_ids = prefilter_listing_ids(top, CONFIG, FeeSchedule())
    assert candidates == [31, 32]
    assert listing_ids == [30, 31, 32]

    # At a 40% fee an ingot nets 18 against a craft cost of 20
    candidates, _ = prefilter_listing_ids(top, CONFIG, FeeSchedule(0.4))
    assert candidates == [32]


def test_load_custom_recipes_from_file(tmp_path):
    path = tmp_path / "recipes.json"
    path.write_text(json.dumps([{'output_item_id': 35, 'output_item_count': 1, 'ingredients': []}]))
    client = FakeClient()

    records = load_custom_recipes(client, {'custom_recipes_file': str(path)})
    assert records[0]['output_item_id'] == 35
    assert client.custom_urls == []

    assert load_custom_recipes(client, {'custom_recipes': False}) == []

    path.write_text("{not json")
    with pytest.raises(SnapshotFormatError):
        load_custom_recipes(client, {'custom_recipes_file': str(path)})
    path.write_text('{"recipes": []}')
    with pytest.raises(SnapshotFormatError):
        load_custom_recipes(client, {'custom_recipes_file': str(path)})
