"""
Price Feed Tests.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from execution_engine.adapters import (
    BinancePriceFeed,
    MockPriceFeed,
    create_price_feed,
    guarded_get_price,
    list_supported,
)
from execution_engine.config import FeedConfig
from execution_engine.types import PriceQuote


class TestFactory:
    """Tests for create_price_feed."""

    def test_supported(self):
        assert "binance" in list_supported()
        assert "static" in list_supported()

    def test_create_binance(self):
        assert isinstance(create_price_feed(FeedConfig(provider="binance")), BinancePriceFeed)

    def test_create_static(self):
        assert isinstance(create_price_feed(FeedConfig(provider="static")), MockPriceFeed)

    def test_unsupported_raises(self):
        with pytest.raises(ValueError, match="Unsupported price feed"):
            create_price_feed(FeedConfig(provider="nope"))


class TestGuardedGetPrice:
    """Tests for the timeout-guarded lookup."""

    @pytest.mark.asyncio
    async def test_returns_quote(self):
        feed = MockPriceFeed({"btc": Decimal("100")})

        quote = await guarded_get_price(feed, "BTC", 1)

        assert quote.price == Decimal("100")

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        feed = MockPriceFeed({"BTC": Decimal("100")}, latency_seconds=0.5)

        assert await guarded_get_price(feed, "BTC", 0.05) is None

    @pytest.mark.asyncio
    async def test_exception_is_unavailable(self):
        feed = MockPriceFeed()
        feed.set_failing("BTC")

        assert await guarded_get_price(feed, "BTC", 1) is None

    @pytest.mark.asyncio
    async def test_zero_price_is_unavailable(self):
        feed = MockPriceFeed()
        feed.get_price = AsyncMock(return_value=PriceQuote(symbol="BTC", price=Decimal("0")))

        assert await guarded_get_price(feed, "BTC", 1) is None


class TestBinancePriceFeed:
    """Tests for BinancePriceFeed without network access."""

    def test_market_symbol(self):
        feed = BinancePriceFeed(FeedConfig())

        assert feed.market_symbol("btc") == "BTCUSDT"
        assert feed.market_symbol("ETHUSDT") == "ETHUSDT"

    @pytest.mark.asyncio
    async def test_parses_ticker_and_book(self):
        feed = BinancePriceFeed(FeedConfig())
        await feed.connect()
        try:
            feed._get_json = AsyncMock(side_effect=[
                {"symbol": "BTCUSDT", "price": "43000.10"},
                {"symbol": "BTCUSDT", "bidPrice": "43000.00", "askPrice": "43000.20"},
            ])

            quote = await feed.get_price("btc")
        finally:
            await feed.disconnect()

        assert quote.symbol == "BTC"
        assert quote.price == Decimal("43000.10")
        assert quote.bid == Decimal("43000.00")
        assert quote.ask == Decimal("43000.20")

    @pytest.mark.asyncio
    async def test_missing_ticker_is_unavailable(self):
        feed = BinancePriceFeed(FeedConfig())
        await feed.connect()
        try:
            feed._get_json = AsyncMock(return_value=None)
            assert await feed.get_price("btc") is None
        finally:
            await feed.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_ticker_is_unavailable(self):
        feed = BinancePriceFeed(FeedConfig())
        await feed.connect()
        try:
            feed._get_json = AsyncMock(return_value={"symbol": "BTCUSDT"})
            assert await feed.get_price("btc") is None
        finally:
            await feed.disconnect()
