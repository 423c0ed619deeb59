"""
Mock Price Feed.

============================================================
PURPOSE
============================================================
In-memory price feed for tests and offline simulation.

FEATURES:
- Settable prices per symbol
- Symbols can be marked unavailable
- Failure and latency injection

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Optional, Set

from core.clock import now_utc
from core.exceptions import FeedUnavailable

from ..types import PriceQuote
from .base import PriceFeed


logger = logging.getLogger(__name__)


class MockPriceFeed(PriceFeed):
    """Price feed backed by a dict."""

    def __init__(
        self,
        prices: Optional[Dict[str, Decimal]] = None,
        latency_seconds: float = 0.0,
    ):
        self._prices: Dict[str, Decimal] = {}
        self._unavailable: Set[str] = set()
        self._failing: Set[str] = set()
        self._latency_seconds = latency_seconds
        self.lookups: Dict[str, int] = {}
        for symbol, price in (prices or {}).items():
            self.set_price(symbol, price)

    @property
    def feed_id(self) -> str:
        return "mock"

    @staticmethod
    def _key(symbol: str) -> str:
        return symbol.strip().upper()

    def set_price(self, symbol: str, price: Decimal) -> None:
        key = self._key(symbol)
        self._prices[key] = Decimal(str(price))
        self._unavailable.discard(key)
        self._failing.discard(key)

    def set_unavailable(self, symbol: str) -> None:
        self._unavailable.add(self._key(symbol))

    def set_failing(self, symbol: str) -> None:
        """Make lookups for ``symbol`` raise."""
        self._failing.add(self._key(symbol))

    def set_latency(self, seconds: float) -> None:
        self._latency_seconds = seconds

    async def get_price(self, symbol: str) -> Optional[PriceQuote]:
        key = self._key(symbol)
        self.lookups[key] = self.lookups.get(key, 0) + 1

        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)
        if key in self._failing:
            raise FeedUnavailable(key, "injected failure")
        if key in self._unavailable or key not in self._prices:
            return None

        price = self._prices[key]
        return PriceQuote(symbol=key, price=price, bid=price, ask=price, fetched_at=now_utc())
