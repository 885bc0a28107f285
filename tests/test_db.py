import pathlib
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from store.db import DatabaseManager
from sqlalchemy.exc import SQLAlchemyError

from engine.order_book import OrderBook
from engine.recipe_graph import Ingredient, Item, Recipe
from services.market_data import MarketSnapshot


def sample_snapshot(fetched_at=None):
    return MarketSnapshot(
        [Item(1, "Raw", vendor_price=3, flags=("NoSalvage",)), Item(2, "Crafted", sellable=False)],
        [
            Recipe(2, 1, (Ingredient(1, 2),), 9, ("Armorsmith", "Tailor")),
            Recipe(2, 3, (Ingredient(1, 1), Ingredient(2, 1))),
        ],
        [OrderBook.from_listings(1, sells=[(10, 50), (12, 50)], buys=[(8, 5)])],
        fetched_at,
    )


def manager(tmp_path, **db):
    mgr = DatabaseManager({'database': dict({'path': str(tmp_path / 'snap.db'), 'max_age_hours': 1}, **db)})
    mgr.initialize_database()
    return mgr


def test_snapshot_round_trip(tmp_path):
    mgr = manager(tmp_path)
    assert mgr.load_snapshot() is None

    snapshot = sample_snapshot()
    mgr.save_snapshot(snapshot)
    loaded = mgr.load_snapshot()

    assert {i.id: i for i in loaded.items()} == {i.id: i for i in snapshot.items()}
    assert loaded.recipes() == snapshot.recipes()
    assert loaded.get_order_book(1) == snapshot.get_order_book(1)
    mgr.close()


def test_save_replaces_previous_snapshot(tmp_path):
    mgr = manager(tmp_path)
    mgr.save_snapshot(sample_snapshot())
    mgr.save_snapshot(MarketSnapshot([Item(5, "Other")], [], []))
    loaded = mgr.load_snapshot()
    assert [i.id for i in loaded.items()] == [5]
    assert loaded.recipes() == ()
    assert loaded.order_books() == []


def test_stale_snapshot_ignored(tmp_path):
    mgr = manager(tmp_path)
    mgr.save_snapshot(sample_snapshot(datetime.now(timezone.utc) - timedelta(hours=2)))
    assert mgr.load_snapshot() is None
    assert mgr.load_snapshot(max_age_hours=3) is not None


def test_clear(tmp_path):
    mgr = manager(tmp_path)
    mgr.save_snapshot(sample_snapshot())
    mgr.clear()
    assert mgr.load_snapshot() is None


def test_session_requires_initialization(tmp_path):
    mgr = DatabaseManager({'database': {'path': str(tmp_path / 'x.db')}})
    with pytest.raises(RuntimeError):
        mgr.get_session()


def test_db_init_sqlalchemy_error(monkeypatch, caplog, tmp_path):
    mgr = DatabaseManager({'database': {'path': str(tmp_path / 'x.db')}})

    def boom(*args, **kwargs):
        raise SQLAlchemyError("boom")

    monkeypatch.setattr("store.db.create_engine", boom)
    with pytest.raises(SQLAlchemyError):
        mgr.initialize_database()
    assert any("Failed to initialize database" in r.message for r in caplog.records)
