"""
Database models for Craft Arbitrage.

Defines SQLAlchemy models for the stored market snapshot: items, recipes with
their ingredients, and order book tiers.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class SnapshotInfo(Base):
    """When the stored snapshot was fetched."""

    __tablename__ = 'snapshot_info'

    id = Column(Integer, primary_key=True, autoincrement=True)
    fetched_at_utc = Column(DateTime, nullable=False, index=True)
    items_count = Column(Integer, nullable=False, default=0)
    recipes_count = Column(Integer, nullable=False, default=0)
    listings_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=func.now())

    def __repr__(self):
        return f"<SnapshotInfo(fetched_at={self.fetched_at_utc}, items={self.items_count})>"


class ItemRecord(Base):
    """Item as it was in the snapshot."""

    __tablename__ = 'items'

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(255), nullable=False)
    vendor_price = Column(Integer, nullable=True)  # copper, fixed-price vendor
    sellable = Column(Boolean, nullable=False, default=True)
    vendor_value = Column(Integer, nullable=False, default=0)
    flags = Column(Text, nullable=True)  # comma separated API flags

    def __repr__(self):
        return f"<ItemRecord(id={self.id}, name={self.name!r})>"


class RecipeRecord(Base):
    """Recipe; custom recipes have no API id."""

    __tablename__ = 'recipes'

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    recipe_id = Column(Integer, nullable=True, index=True)
    output_item_id = Column(Integer, nullable=False, index=True)
    output_quantity = Column(Integer, nullable=False, default=1)
    disciplines = Column(Text, nullable=True)

    ingredients = relationship('IngredientRecord', back_populates='recipe',
                               cascade='all, delete-orphan', order_by='IngredientRecord.position')


class IngredientRecord(Base):
    __tablename__ = 'ingredients'

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipe_row_id = Column(Integer, ForeignKey('recipes.row_id'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    item_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    recipe = relationship('RecipeRecord', back_populates='ingredients')


class ListingTierRecord(Base):
    """One price tier of an order book side ('sell' or 'buy')."""

    __tablename__ = 'listing_tiers'

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(Integer, nullable=False)
    side = Column(String(4), nullable=False)
    price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    __table_args__ = (
        Index('idx_listing_item_side', 'item_id', 'side'),
    )
