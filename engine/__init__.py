"""Cost, liquidity and profit engine for Craft Arbitrage."""
