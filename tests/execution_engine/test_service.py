"""
Ledger Engine Service Tests.

End-to-end through the facade: response shapes of the public operations.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from core.exceptions import OrderRejected
from execution_engine.service import LedgerEngine
from execution_engine.types import OrderMode, OrderSide, PlaceOrderRequest


@pytest_asyncio.fixture
async def engine(database, engine_config, feed, clock):
    engine = LedgerEngine(database, engine_config, feed=feed, clock=clock)
    await engine.start(run_scheduler=False)
    yield engine
    await engine.stop()


def _request(side, mode, quantity, limit_price=None, current_price=None):
    return PlaceOrderRequest(
        user_id="alice",
        coin_id="bitcoin",
        coin_symbol="BTC",
        side=side,
        mode=mode,
        quantity=Decimal(quantity),
        limit_price=Decimal(limit_price) if limit_price else None,
        current_price=Decimal(current_price) if current_price else None,
    )


class TestLedgerEngine:
    """Tests for LedgerEngine operations."""

    @pytest.mark.asyncio
    async def test_place_then_scan_executes(self, engine, feed, seed):
        placed = await engine.place(_request(OrderSide.BUY, OrderMode.LIMIT, "1", limit_price="90"))
        order_id = placed["order"]["id"]

        feed.set_price("BTC", Decimal("95"))
        assert (await engine.scan())["executed"] == 0

        feed.set_price("BTC", Decimal("88"))
        response = await engine.scan()

        assert response == {"success": True, "checked": 1, "executed": 1, "errors": []}
        assert (await seed.get_order(order_id)).status == "completed"
        assert engine.get_stats()["executed"] == 1

    @pytest.mark.asyncio
    async def test_cancel_shapes(self, engine, seed):
        placed = await engine.place(_request(OrderSide.BUY, OrderMode.LIMIT, "1", limit_price="90"))
        order_id = placed["order"]["id"]

        assert await engine.cancel(order_id) == {"success": True, "order_id": order_id}

        again = await engine.cancel(order_id)
        assert again["success"] is False
        assert again["code"] == "not_pending"
        assert again["detail"]

        missing = await engine.cancel("nope")
        assert missing["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_market_sell_without_holdings_is_rejected(self, engine):
        with pytest.raises(OrderRejected) as exc_info:
            await engine.place(_request(OrderSide.SELL, OrderMode.MARKET, "1", current_price="100"))

        assert exc_info.value.code == "insufficient_holdings"

    @pytest.mark.asyncio
    async def test_reconcile_and_cleanup_shapes(self, engine, seed):
        await seed.holding("alice", "dust", "0", "1")

        assert await engine.reconcile() == {
            "success": True, "synced": 0, "total_orders": 0, "errors": [],
        }
        assert await engine.cleanup() == {
            "success": True, "cleaned": 1, "total": 1, "failed": 0,
        }

    @pytest.mark.asyncio
    async def test_portfolio_values_holdings(self, engine, feed):
        await engine.place(_request(OrderSide.BUY, OrderMode.MARKET, "2", current_price="100"))
        await engine.place(_request(OrderSide.SELL, OrderMode.LIMIT, "1", limit_price="150"))
        feed.set_price("BTC", Decimal("120"))

        portfolio = await engine.portfolio("alice")

        assert Decimal(portfolio["balance"]) == Decimal("99799.8")
        assert Decimal(portfolio["available_holdings"]["bitcoin"]) == Decimal("1")
        holding = portfolio["holdings"][0]
        assert Decimal(holding["current_value"]) == Decimal("240")
        assert Decimal(holding["profit_loss"]) == Decimal("40")
        assert Decimal(holding["profit_loss_percent"]) == Decimal("20")
        assert Decimal(portfolio["summary"]["total_invested"]) == Decimal("200")

    @pytest.mark.asyncio
    async def test_portfolio_without_price_values_at_zero(self, engine, feed):
        await engine.place(_request(OrderSide.BUY, OrderMode.MARKET, "1", current_price="100"))
        feed.set_unavailable("BTC")

        portfolio = await engine.portfolio("alice")

        assert Decimal(portfolio["summary"]["total_portfolio_value"]) == Decimal("0")
