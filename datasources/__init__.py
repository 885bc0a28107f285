"""Data source clients for Craft Arbitrage."""

# Delay heavy imports to avoid circular dependencies
__all__ = ["GW2Client", "GW2APIError"]

def __getattr__(name):  # pragma: no cover - simple lazy loader
    if name in __all__:
        from .gw2api import GW2Client, GW2APIError
        globals().update({"GW2Client": GW2Client, "GW2APIError": GW2APIError})
        return globals()[name]
    raise AttributeError(name)
