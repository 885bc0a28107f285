from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Union

import pandas as pd

from engine.cost_resolver import CostSource
from engine.money import format_coins
from engine.profit import Opportunity
from engine.shopping_list import ShoppingListNode

logger = logging.getLogger(__name__)

OPPORTUNITY_COLUMNS = [
    "item_id",
    "name",
    "quantity",
    "uses",
    "total_cost",
    "gross_revenue",
    "net_revenue",
    "profit_total",
    "profit_per_item",
    "profit_per_step",
    "profit_on_cost",
    "recipe_id",
    "min_sell_price",
    "max_sell_price",
    "breakeven_price",
]

SHOPPING_COLUMNS = ["item_id", "name", "source", "quantity", "total_cost", "unit_cost"]

COIN_COLUMNS = {
    "total_cost",
    "gross_revenue",
    "net_revenue",
    "profit_total",
    "profit_per_item",
    "profit_per_step",
    "min_sell_price",
    "max_sell_price",
    "breakeven_price",
    "unit_cost",
}


def opportunities_frame(opportunities: Iterable[Opportunity]) -> pd.DataFrame:
    """One row per ranked item, in ranking order."""
    rows = [o.to_dict() for o in opportunities]
    if not rows:
        return pd.DataFrame(columns=OPPORTUNITY_COLUMNS)
    df = pd.DataFrame(rows, columns=OPPORTUNITY_COLUMNS)
    df["profit_on_cost"] = df["profit_on_cost"].astype(float)
    return df


def shopping_list_frame(node: ShoppingListNode) -> pd.DataFrame:
    """Raw purchases of a plan collapsed to one row per (item, source)."""
    rows = [
        {
            "item_id": step.item_id,
            "name": step.name,
            "source": step.source.value,
            "quantity": step.quantity,
            "total_cost": step.total_cost,
        }
        for step in node.walk()
        if step.source in (CostSource.BUY, CostSource.VENDOR)
    ]
    if not rows:
        return pd.DataFrame(columns=SHOPPING_COLUMNS)
    grp = (
        pd.DataFrame(rows)
        .groupby(["item_id", "name", "source"], as_index=False, sort=False)
        .agg({"quantity": "sum", "total_cost": "sum"})
    )
    # Average price paid, rounded up to whole copper
    grp["unit_cost"] = -(-grp["total_cost"] // grp["quantity"])
    return grp.sort_values(["total_cost", "item_id"], ascending=[False, True])[SHOPPING_COLUMNS] \
        .reset_index(drop=True)


def total_profit(opportunities: Iterable[Opportunity]) -> int:
    """Combined profit of every listed opportunity."""
    return sum(o.profit_total for o in opportunities)


def render_table(df: pd.DataFrame) -> str:
    """Human readable table with coin amounts as ``g.ss.cc``."""
    if df.empty:
        return "(no rows)"
    out = df.copy()
    for col in COIN_COLUMNS.intersection(out.columns):
        out[col] = out[col].map(lambda v: "" if pd.isna(v) else format_coins(int(v)))
    if "profit_on_cost" in out.columns:
        out["profit_on_cost"] = out["profit_on_cost"].map(lambda v: f"{float(v):.1%}")
    if "recipe_id" in out.columns:
        out["recipe_id"] = out["recipe_id"].map(lambda v: "" if pd.isna(v) else str(int(v)))
    return out.to_string(index=False)


def write_csv(df: pd.DataFrame, path: Union[str, Path]) -> Path:
    """Write raw integer columns to CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    logger.info("Wrote %d rows to %s", len(df), path)
    return path


__all__ = [
    "OPPORTUNITY_COLUMNS",
    "SHOPPING_COLUMNS",
    "opportunities_frame",
    "shopping_list_frame",
    "render_table",
    "total_profit",
    "write_csv",
]
