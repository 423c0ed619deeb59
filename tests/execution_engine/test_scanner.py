"""
Order Scanner Tests.

============================================================
PURPOSE
============================================================
Trigger rules, fill price and batch error handling.

============================================================
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from execution_engine.executor import TradeExecutor
from execution_engine.scanner import OrderScanner, should_trigger
from execution_engine.types import OrderSide


@pytest.fixture
def scanner(session_factory, feed, clock):
    executor = TradeExecutor(session_factory, clock=clock)
    return OrderScanner(session_factory, feed, executor, feed_timeout_seconds=0.2)


# ============================================================
# TRIGGER RULES
# ============================================================

class TestShouldTrigger:
    """Tests for the trigger decision."""

    def test_buy_triggers_at_or_below_limit(self):
        assert should_trigger(OrderSide.BUY, Decimal("88"), Decimal("90"))
        assert should_trigger(OrderSide.BUY, Decimal("90"), Decimal("90"))
        assert not should_trigger(OrderSide.BUY, Decimal("95"), Decimal("90"))

    def test_sell_triggers_at_or_above_limit(self):
        assert should_trigger(OrderSide.SELL, Decimal("106"), Decimal("105"))
        assert should_trigger(OrderSide.SELL, Decimal("105"), Decimal("105"))
        assert not should_trigger(OrderSide.SELL, Decimal("104"), Decimal("105"))


# ============================================================
# SCAN PASS
# ============================================================

class TestScan:
    """Tests for OrderScanner.scan."""

    @pytest.mark.asyncio
    async def test_empty_book(self, scanner):
        result = await scanner.scan()

        assert result.checked == 0
        assert result.to_response() == {"success": True, "checked": 0, "executed": 0, "errors": []}

    @pytest.mark.asyncio
    async def test_limit_buy_waits_above_limit(self, scanner, seed, feed):
        await seed.balance("alice", "10000")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="90", coin_symbol="BTC")
        feed.set_price("BTC", Decimal("95"))

        result = await scanner.scan()

        assert result.checked == 1
        assert result.executed == 0
        assert (await seed.get_order(order_id)).status == "pending"

    @pytest.mark.asyncio
    async def test_limit_buy_fills_at_market_not_limit(self, scanner, seed, feed):
        await seed.balance("alice", "10000")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="90", coin_symbol="BTC")
        feed.set_price("BTC", Decimal("88"))

        result = await scanner.scan()

        assert result.executed == 1
        assert result.executed_order_ids == [order_id]
        order = await seed.get_order(order_id)
        assert order.status == "completed"
        assert order.total_amount == Decimal("88")
        # 88 * 1.001
        assert await seed.get_balance("alice") == Decimal("9911.912")
        assert (await seed.get_holding("alice", "bitcoin")).average_buy_price == Decimal("88")

    @pytest.mark.asyncio
    async def test_limit_sell_triggers_only_at_or_above_limit(self, scanner, seed, feed):
        await seed.balance("bob", "0")
        await seed.holding("bob", "ethereum", "1", "100", coin_symbol="ETH")
        order_id = await seed.order("bob", "ethereum", "sell", "1", limit_price="105", coin_symbol="ETH")

        feed.set_price("ETH", Decimal("104"))
        assert (await scanner.scan()).executed == 0
        assert (await seed.get_order(order_id)).status == "pending"

        feed.set_price("ETH", Decimal("106"))
        assert (await scanner.scan()).executed == 1
        assert await seed.get_balance("bob") == Decimal("105.894")

    @pytest.mark.asyncio
    async def test_unavailable_price_is_skipped(self, scanner, seed, feed):
        await seed.balance("alice", "10000")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="90", coin_symbol="BTC")
        feed.set_unavailable("BTC")

        result = await scanner.scan()

        assert result.unavailable == 1
        assert result.executed == 0
        assert result.errors == []
        assert result.feed_starved
        assert (await seed.get_order(order_id)).status == "pending"

    @pytest.mark.asyncio
    async def test_failing_or_slow_feed_counts_as_unavailable(self, scanner, seed, feed):
        await seed.balance("alice", "10000")
        await seed.order("alice", "bitcoin", "buy", "1", limit_price="90", coin_symbol="BTC")
        await seed.order("alice", "solana", "buy", "1", limit_price="90", coin_symbol="SOL")
        feed.set_failing("BTC")
        feed.set_price("SOL", Decimal("10"))
        feed.set_latency(1.0)

        result = await scanner.scan()

        assert result.unavailable == 2
        assert result.executed == 0

    @pytest.mark.asyncio
    async def test_one_lookup_per_symbol(self, scanner, seed, feed):
        await seed.balance("alice", "10000")
        for _ in range(3):
            await seed.order("alice", "bitcoin", "buy", "1", limit_price="90", coin_symbol="BTC")
        feed.set_price("BTC", Decimal("95"))

        result = await scanner.scan()

        assert result.checked == 3
        assert feed.lookups["BTC"] == 1

    @pytest.mark.asyncio
    async def test_failed_order_does_not_abort_batch(self, scanner, seed, feed):
        await seed.balance("alice", "10000")
        await seed.balance("carol", "1")
        poor = await seed.order("carol", "bitcoin", "buy", "1", limit_price="90", coin_symbol="BTC")
        rich = await seed.order("alice", "bitcoin", "buy", "1", limit_price="90", coin_symbol="BTC")
        feed.set_price("BTC", Decimal("80"))

        result = await scanner.scan()

        assert result.checked == 2
        assert result.executed == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"Order {poor}:")
        assert (await seed.get_order(poor)).status == "pending"
        assert (await seed.get_order(rich)).status == "completed"

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_abort_batch(self, session_factory, seed, feed):
        broken = await seed.order("alice", "bitcoin", "buy", "1", limit_price="90", coin_symbol="BTC")
        healthy = await seed.order("bob", "bitcoin", "buy", "1", limit_price="90", coin_symbol="BTC")
        feed.set_price("BTC", Decimal("80"))

        async def execute(order_id, price):
            if order_id == broken:
                raise OSError("connection reset")
            return MagicMock()

        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=execute)
        scanner = OrderScanner(session_factory, feed, executor, feed_timeout_seconds=0.2)

        result = await scanner.scan()

        assert result.checked == 2
        assert executor.execute.await_count == 2
        assert result.executed_order_ids == [healthy]
        assert result.errors == [f"Order {broken}: connection reset"]

    @pytest.mark.asyncio
    async def test_overlapping_scans_execute_once(self, scanner, seed, feed):
        await seed.balance("alice", "10000")
        await seed.order("alice", "bitcoin", "buy", "1", limit_price="90", coin_symbol="BTC")
        feed.set_price("BTC", Decimal("80"))

        first, second = await asyncio.gather(scanner.scan(), scanner.scan())

        assert first.executed + second.executed == 1
        assert await seed.count_transactions() == 1

    @pytest.mark.asyncio
    async def test_market_and_terminal_orders_are_ignored(self, scanner, seed, feed):
        await seed.balance("alice", "10000")
        await seed.order("alice", "bitcoin", "buy", "1", mode="market", total_amount="80", coin_symbol="BTC")
        await seed.order("alice", "bitcoin", "buy", "1", limit_price="90", status="cancelled", coin_symbol="BTC")
        feed.set_price("BTC", Decimal("80"))

        result = await scanner.scan()

        assert result.checked == 0
