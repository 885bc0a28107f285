#!/usr/bin/env python3
"""
Craft Arbitrage - Main Entry Point

Ranks craftable items by trading post profit, or prints the shopping list for
crafting one item.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from logging_config import get_logger

from datasources.gw2api import GW2APIError, GW2Client
from engine.config import ConfigError, ConfigManager
from engine.cost_resolver import CostResolver
from engine.liquidity import LiquiditySimulator
from engine.money import FeeSchedule, format_coins
from engine.profit import ProfitOptimizer
from engine.recipe_graph import RecipeGraph, UnknownItemError
from engine.shopping_list import ShoppingListBuilder, format_tree
from services.market_data import MarketSnapshot, SnapshotFormatError, fetch_snapshot
from services.report import (
    opportunities_frame,
    render_table,
    shopping_list_frame,
    total_profit,
    write_csv,
)
from store.db import DatabaseManager
from utils.constants import SORT_KEYS
from utils.paths import init_app_paths


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="craft-arbitrage",
        description="Find profitable crafts on the trading post.",
    )
    parser.add_argument("item_id", nargs="?", type=int,
                        help="print a shopping list for this item instead of ranking")
    parser.add_argument("-q", "--quantity", type=int,
                        help="units to plan for (default: the most profitable quantity)")
    parser.add_argument("--count", type=int, help="maximum quantity to craft per item")
    parser.add_argument("--threshold", type=int,
                        help="minimum profit in copper a crafting step must add")
    parser.add_argument("--value", type=int,
                        help="fixed sell value in copper per unit instead of buy orders")
    parser.add_argument("--sort-key", choices=SORT_KEYS, help="ranking order")
    parser.add_argument("--max-results", type=int, help="number of ranked items to show")
    parser.add_argument("--disciplines", help="comma separated crafting disciplines to keep")
    parser.add_argument("--include-timegated", action="store_true", default=None,
                        help="keep recipes that can only be crafted once per day")
    parser.add_argument("--output-csv", help="also write the table to this CSV file")
    parser.add_argument("--snapshot", help="read market data from a JSON snapshot file")
    parser.add_argument("--reset-data", action="store_true",
                        help="discard the stored snapshot before running")
    parser.add_argument("--config-file", help="path to the YAML configuration file")
    parser.add_argument("--lang", help="item name language for API requests")
    return parser


def apply_overrides(config_manager: ConfigManager, args: argparse.Namespace) -> None:
    """Copy command line options over the loaded configuration."""
    overrides = {
        'ranking.max_quantity': args.count,
        'ranking.min_step_profit': args.threshold,
        'ranking.fixed_sell_price': args.value,
        'ranking.sort_key': args.sort_key,
        'ranking.max_results': args.max_results,
        'crafting.include_timegated': args.include_timegated,
        'api.lang': args.lang,
    }
    if args.disciplines:
        overrides['ranking.disciplines'] = [d.strip() for d in args.disciplines.split(",") if d.strip()]
    for key, value in overrides.items():
        if value is not None:
            config_manager.set(key, value)


def load_market(config, args, fees, log) -> MarketSnapshot:
    if args.snapshot:
        return MarketSnapshot.load_json(args.snapshot, config.get('vendor'))

    db_manager = DatabaseManager(config)
    db_manager.initialize_database()
    try:
        if args.reset_data:
            db_manager.clear()
        snapshot = db_manager.load_snapshot()
        if snapshot is None:
            log.info("Fetching market data from %s", config['api']['base_url'])
            snapshot = fetch_snapshot(GW2Client(config), config, fees)
            db_manager.save_snapshot(snapshot)
        return snapshot
    finally:
        db_manager.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.quantity is not None and args.quantity <= 0:
        parser.error("--quantity must be positive")

    try:
        init_app_paths()
        config_manager = ConfigManager(args.config_file)
        config_manager.load_config()
        apply_overrides(config_manager, args)
        config = config_manager.get_config()
        fees = FeeSchedule(config_manager.get_listing_fee_rate())
    except ConfigError as e:
        get_logger(__name__).error("Configuration error: %s", e)
        return 2

    log_config = config.get('logging', {})
    log = get_logger(__name__, log_config.get('level', 'INFO'), log_config.get('file'))
    for problem in config_manager.validate_config():
        log.warning("Config: %s", problem)

    try:
        snapshot = load_market(config, args, fees, log)
        graph = RecipeGraph.from_source(snapshot, config)
        simulator = LiquiditySimulator(graph, snapshot, CostResolver(graph, snapshot))
        optimizer = ProfitOptimizer(simulator, fees, config_manager.get_ranking_options())

        if args.item_id is not None:
            builder = ShoppingListBuilder(simulator, optimizer)
            node = builder.build_shopping_list(args.item_id, args.quantity)
            if node is None:
                print(f"Item {args.item_id} is not profitable to craft at current prices.")
                return 0
            if not node.available:
                print(f"{node.quantity} x {node.name} cannot be obtained from the current market.")
                return 0
            print(format_tree(node))
            print()
            df = shopping_list_frame(node)
            print(render_table(df))
            print(f"\nTotal cost: {format_coins(node.total_cost)}")
        else:
            opportunities = optimizer.rank_opportunities()
            df = opportunities_frame(opportunities)
            print(render_table(df))
            print(f"\nTotal profit: {format_coins(total_profit(opportunities))}")

        if args.output_csv:
            write_csv(df, args.output_csv)
        return 0
    except (UnknownItemError, GW2APIError, SnapshotFormatError, OSError) as e:
        log.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
