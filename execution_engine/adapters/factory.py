"""
Price Feed Factory.

============================================================
PURPOSE
============================================================
Creates the configured price feed.

USAGE:
    feed = create_price_feed(FeedConfig(provider="binance"))

============================================================
"""

import logging
from typing import Callable, Dict, Optional

from ..config import FeedConfig
from .base import PriceFeed
from .binance import BinancePriceFeed
from .mock import MockPriceFeed


logger = logging.getLogger(__name__)


_REGISTRY: Dict[str, Callable[[FeedConfig], PriceFeed]] = {
    "binance": lambda config: BinancePriceFeed(config),
    "static": lambda config: MockPriceFeed(),
    "mock": lambda config: MockPriceFeed(),
}


def list_supported() -> list:
    return sorted(_REGISTRY)


def create_price_feed(config: Optional[FeedConfig] = None) -> PriceFeed:
    """
    Create a price feed for ``config.provider``.

    Raises:
        ValueError: unsupported provider
    """
    config = config or FeedConfig()
    builder = _REGISTRY.get(config.provider.lower())
    if builder is None:
        raise ValueError(
            f"Unsupported price feed: {config.provider}. Supported: {list_supported()}"
        )
    logger.info(f"Creating price feed: {config.provider}")
    return builder(config)
