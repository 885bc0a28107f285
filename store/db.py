"""
Database manager for Craft Arbitrage.

Persists the latest market snapshot so repeated runs within the freshness
window do not hit the API again.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from engine.order_book import ListingTier, OrderBook
from engine.recipe_graph import Ingredient, Item, Recipe
from services.market_data import MarketSnapshot
from utils.paths import DB_PATH

from .models import Base, IngredientRecord, ItemRecord, ListingTierRecord, RecipeRecord, SnapshotInfo


def _utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class DatabaseManager:
    """Manages snapshot storage for the application."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize database manager with configuration."""
        self.config = config
        self.logger = logging.getLogger(__name__)

        db_config = config.get('database', {})
        self.db_path = Path(db_config.get('path') or DB_PATH)
        self.max_age_hours = db_config.get('max_age_hours', 1)

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_url = f"sqlite:///{self.db_path}"

        self.engine = None
        self.SessionLocal = None

    def initialize_database(self):
        """Initialize database engine and create tables."""
        try:
            self.logger.info(f"Initializing database at {self.db_path}")
            self.engine = create_engine(
                self.db_url,
                echo=False,
                pool_pre_ping=True,
                connect_args={"check_same_thread": False}
            )
            self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
            Base.metadata.create_all(bind=self.engine)
            self.logger.info("Database initialized successfully")
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to initialize database: {e}")
            raise

    def get_session(self) -> Session:
        """Get a new database session."""
        if not self.SessionLocal:
            raise RuntimeError("Database not initialized. Call initialize_database() first.")
        return self.SessionLocal()

    def save_snapshot(self, snapshot: MarketSnapshot) -> None:
        """Replace the stored snapshot with ``snapshot`` in one transaction."""
        session = self.get_session()
        try:
            self._delete_all(session)

            session.add_all(
                ItemRecord(
                    id=item.id,
                    name=item.name,
                    vendor_price=item.vendor_price,
                    sellable=item.sellable,
                    vendor_value=item.vendor_value,
                    flags=",".join(item.flags),
                )
                for item in snapshot.items()
            )

            for recipe in snapshot.recipes():
                row = RecipeRecord(
                    recipe_id=recipe.id,
                    output_item_id=recipe.output_item_id,
                    output_quantity=recipe.output_quantity,
                    disciplines=",".join(recipe.disciplines),
                )
                row.ingredients = [
                    IngredientRecord(position=pos, item_id=ing.item_id, quantity=ing.quantity)
                    for pos, ing in enumerate(recipe.ingredients)
                ]
                session.add(row)

            books = snapshot.order_books()
            for book in books:
                for side, tiers in (('sell', book.sells), ('buy', book.buys)):
                    session.add_all(
                        ListingTierRecord(item_id=book.item_id, side=side,
                                          price=tier.price, quantity=tier.quantity)
                        for tier in tiers
                    )

            session.add(SnapshotInfo(
                fetched_at_utc=_utc_naive(snapshot.fetched_at),
                items_count=len(snapshot),
                recipes_count=len(snapshot.recipes()),
                listings_count=len(books),
            ))
            session.commit()
            self.logger.info(f"Saved snapshot: {len(snapshot)} items, "
                             f"{len(snapshot.recipes())} recipes, {len(books)} order books")
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.error(f"Failed to save snapshot: {e}")
            raise
        finally:
            session.close()

    def load_snapshot(self, max_age_hours: Optional[float] = None) -> Optional[MarketSnapshot]:
        """Return the stored snapshot, or ``None`` if there is none or it is stale."""
        if max_age_hours is None:
            max_age_hours = self.max_age_hours

        session = self.get_session()
        try:
            info = session.query(SnapshotInfo).order_by(SnapshotInfo.fetched_at_utc.desc()).first()
            if info is None:
                self.logger.info("No stored snapshot")
                return None

            age = datetime.now(timezone.utc).replace(tzinfo=None) - info.fetched_at_utc
            if age > timedelta(hours=max_age_hours):
                self.logger.info(f"Stored snapshot is {age} old, refetching")
                return None

            items = [
                Item(
                    id=row.id,
                    name=row.name,
                    vendor_price=row.vendor_price,
                    sellable=row.sellable,
                    vendor_value=row.vendor_value,
                    flags=tuple(f for f in (row.flags or "").split(",") if f),
                )
                for row in session.query(ItemRecord).all()
            ]

            recipes = [
                Recipe(
                    output_item_id=row.output_item_id,
                    output_quantity=row.output_quantity,
                    ingredients=tuple(Ingredient(i.item_id, i.quantity) for i in row.ingredients),
                    id=row.recipe_id,
                    disciplines=tuple(d for d in (row.disciplines or "").split(",") if d),
                )
                for row in session.query(RecipeRecord)
                .options(selectinload(RecipeRecord.ingredients))
                .order_by(RecipeRecord.row_id)
            ]

            sides = defaultdict(lambda: {'sell': [], 'buy': []})
            for row in session.query(ListingTierRecord).all():
                sides[row.item_id][row.side].append(ListingTier(row.price, row.quantity))
            books = [OrderBook(item_id, tuple(s['sell']), tuple(s['buy'])) for item_id, s in sides.items()]

            fetched_at = info.fetched_at_utc.replace(tzinfo=timezone.utc)
            self.logger.info(f"Loaded stored snapshot from {fetched_at:%Y-%m-%d %H:%M} UTC")
            return MarketSnapshot(items, recipes, books, fetched_at)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to load snapshot: {e}")
            raise
        finally:
            session.close()

    def clear(self) -> None:
        """Remove the stored snapshot."""
        session = self.get_session()
        try:
            self._delete_all(session)
            session.commit()
            self.logger.info("Cleared stored snapshot")
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.error(f"Failed to clear snapshot: {e}")
            raise
        finally:
            session.close()

    @staticmethod
    def _delete_all(session: Session) -> None:
        for model in (IngredientRecord, RecipeRecord, ListingTierRecord, ItemRecord, SnapshotInfo):
            session.query(model).delete()

    def close(self):
        """Dispose of the engine and its connections."""
        if self.engine is not None:
            self.engine.dispose()
