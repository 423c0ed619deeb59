"""
Execution Engine - Price Feed Base.

============================================================
PURPOSE
============================================================
Abstract interface for the price feed the scanner consumes.

DESIGN PRINCIPLES:
- Feed-agnostic interface
- ``None`` means Unavailable: never zero, never a trigger
- Every lookup is bounded by a timeout

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from core.exceptions import FeedUnavailable

from ..types import PriceQuote


logger = logging.getLogger(__name__)


class PriceFeed(ABC):
    """Source of current prices keyed by coin symbol."""

    @property
    @abstractmethod
    def feed_id(self) -> str:
        """Identifier used in logs."""
        pass

    async def connect(self) -> None:
        """Open any underlying resources."""

    async def disconnect(self) -> None:
        """Release any underlying resources."""

    @abstractmethod
    async def get_price(self, symbol: str) -> Optional[PriceQuote]:
        """
        Current price for ``symbol``.

        Returns:
            PriceQuote, or None when the price is unavailable
        """
        pass


async def guarded_get_price(
    feed: PriceFeed,
    symbol: str,
    timeout_seconds: float,
) -> Optional[PriceQuote]:
    """
    Look up a price with a hard timeout.

    Timeouts, feed exceptions and non-positive prices all come back as
    None so a single bad lookup can never halt a scan batch.
    """
    try:
        quote = await asyncio.wait_for(feed.get_price(symbol), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"[{feed.feed_id}] price lookup for {symbol} timed out after {timeout_seconds}s")
        return None
    except FeedUnavailable as e:
        logger.info(f"[{feed.feed_id}] {e.message}")
        return None
    except Exception as e:
        logger.warning(f"[{feed.feed_id}] price lookup for {symbol} failed: {e}")
        return None

    if quote is None:
        return None
    if quote.price is None or quote.price <= 0:
        logger.warning(f"[{feed.feed_id}] ignoring non-positive price for {symbol}: {quote.price}")
        return None
    return quote
