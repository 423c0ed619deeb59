"""
Binance Spot Price Feed.

============================================================
PURPOSE
============================================================
Reads last trade price and best bid/ask for ``<SYMBOL><QUOTE>``
from the Binance public REST API.

Only public, unsigned market-data endpoints are used.

============================================================
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import aiohttp

from core.clock import now_utc

from ..config import FeedConfig
from ..types import PriceQuote
from .base import PriceFeed


logger = logging.getLogger(__name__)


class BinancePriceFeed(PriceFeed):
    """Price feed over Binance spot tickers."""

    def __init__(self, config: Optional[FeedConfig] = None):
        self._config = config or FeedConfig()
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def feed_id(self) -> str:
        return "binance"

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    def market_symbol(self, symbol: str) -> str:
        """Coin symbol -> Binance market, e.g. btc -> BTCUSDT."""
        base = symbol.strip().upper()
        quote = self._config.quote_asset.upper()
        if base.endswith(quote) and base != quote:
            return base
        return f"{base}{quote}"

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        if self.is_connected:
            return
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
        self._session = aiohttp.ClientSession(
            base_url=self._config.rest_url,
            timeout=timeout,
        )
        logger.info(f"Binance price feed ready ({self._config.rest_url})")

    async def disconnect(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.info("Binance price feed closed")

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def _get_json(self, path: str, market: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._session.get(path, params={"symbol": market}) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.warning(
                        f"Binance {path} for {market} returned HTTP {response.status}: {body[:200]}"
                    )
                    return None
                return await response.json()
        except aiohttp.ClientError as e:
            logger.warning(f"Binance network error for {market}: {e}")
            return None
        except asyncio.TimeoutError:
            logger.warning(f"Binance request timeout for {market}")
            return None

    async def get_price(self, symbol: str) -> Optional[PriceQuote]:
        if not self.is_connected:
            await self.connect()

        market = self.market_symbol(symbol)
        ticker, book = await asyncio.gather(
            self._get_json("/api/v3/ticker/price", market),
            self._get_json("/api/v3/ticker/bookTicker", market),
        )
        if not ticker:
            return None

        try:
            price = Decimal(str(ticker["price"]))
            bid = Decimal(str(book["bidPrice"])) if book else None
            ask = Decimal(str(book["askPrice"])) if book else None
        except (KeyError, InvalidOperation, TypeError) as e:
            logger.warning(f"Malformed Binance ticker for {market}: {e}")
            return None

        return PriceQuote(
            symbol=symbol.strip().upper(),
            price=price,
            bid=bid,
            ask=ask,
            fetched_at=now_utc(),
        )
