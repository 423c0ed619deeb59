"""
Price Feed Adapters.

- base: PriceFeed interface and timeout-guarded lookup
- binance: Binance spot REST feed
- mock: In-memory feed for tests and simulation
- factory: Creates the configured feed
"""

from .base import PriceFeed, guarded_get_price
from .binance import BinancePriceFeed
from .mock import MockPriceFeed
from .factory import create_price_feed, list_supported

__all__ = [
    "PriceFeed",
    "guarded_get_price",
    "BinancePriceFeed",
    "MockPriceFeed",
    "create_price_feed",
    "list_supported",
]
