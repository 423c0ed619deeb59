"""
Trade Executor Tests.

============================================================
PURPOSE
============================================================
Ledger effects of executing buy and sell orders.

TEST CATEGORIES:
- Buy / sell arithmetic including the 0.1% fee
- Weighted average cost basis
- Re-validation failures leave the ledger untouched
- At-most-once execution

============================================================
"""

import asyncio
from decimal import Decimal

import pytest

from core.exceptions import (
    AuthorizationDenied,
    ConcurrencyConflict,
    InsufficientBalance,
    InsufficientHoldings,
    OrderNotFound,
)
from execution_engine.executor import TradeExecutor, weighted_average_price


@pytest.fixture
def executor(session_factory, clock):
    return TradeExecutor(session_factory, clock=clock)


# ============================================================
# WEIGHTED AVERAGE
# ============================================================

class TestWeightedAverage:
    """Tests for the cost-basis formula."""

    def test_equal_quantities(self):
        assert weighted_average_price(
            Decimal("1"), Decimal("100"), Decimal("1"), Decimal("120")
        ) == Decimal("110")

    def test_unequal_quantities(self):
        # (3*10 + 1*50) / 4 = 20
        assert weighted_average_price(
            Decimal("3"), Decimal("10"), Decimal("1"), Decimal("50")
        ) == Decimal("20")

    def test_empty_position_uses_new_price(self):
        assert weighted_average_price(
            Decimal("0"), Decimal("0"), Decimal("2"), Decimal("42")
        ) == Decimal("42")


# ============================================================
# BUY
# ============================================================

class TestBuyExecution:
    """Tests for buy orders."""

    @pytest.mark.asyncio
    async def test_buy_debits_price_times_quantity_plus_fee(self, executor, seed):
        await seed.balance("alice", "10000")
        order_id = await seed.order("alice", "bitcoin", "buy", "2", limit_price="100")

        outcome = await executor.execute(order_id, Decimal("100"))

        assert outcome.base_amount == Decimal("200")
        assert outcome.fee == Decimal("0.2")
        assert await seed.get_balance("alice") == Decimal("9799.8")

        holding = await seed.get_holding("alice", "bitcoin")
        assert holding.quantity == Decimal("2")
        assert holding.average_buy_price == Decimal("100")
        assert await seed.count_transactions() == 1

    @pytest.mark.asyncio
    async def test_buy_marks_order_completed(self, executor, seed, clock):
        await seed.balance("alice", "10000")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="90")

        await executor.execute(order_id, Decimal("88"))

        order = await seed.get_order(order_id)
        assert order.status == "completed"
        assert order.completed_at is not None
        # limit orders record what they actually cost
        assert order.total_amount == Decimal("88")

    @pytest.mark.asyncio
    async def test_buy_merges_into_existing_holding(self, executor, seed):
        await seed.balance("alice", "10000")
        await seed.holding("alice", "bitcoin", "1", "100")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="120")

        await executor.execute(order_id, Decimal("120"))

        holding = await seed.get_holding("alice", "bitcoin")
        assert holding.quantity == Decimal("2")
        assert holding.average_buy_price == Decimal("110")

    @pytest.mark.asyncio
    async def test_insufficient_balance_leaves_everything_untouched(self, executor, seed):
        await seed.balance("alice", "100")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="100")

        # 100 * 1.001 = 100.1 > 100
        with pytest.raises(InsufficientBalance):
            await executor.execute(order_id, Decimal("100"))

        order = await seed.get_order(order_id)
        assert order.status == "pending"
        assert await seed.get_balance("alice") == Decimal("100")
        assert await seed.get_holding("alice", "bitcoin") is None
        assert await seed.count_transactions() == 0


# ============================================================
# SELL
# ============================================================

class TestSellExecution:
    """Tests for sell orders."""

    @pytest.mark.asyncio
    async def test_sell_credits_proceeds_less_fee(self, executor, seed):
        await seed.balance("bob", "1000")
        await seed.holding("bob", "ethereum", "5", "100")
        order_id = await seed.order("bob", "ethereum", "sell", "2", limit_price="105")

        outcome = await executor.execute(order_id, Decimal("110"))

        # 220 * 0.999 = 219.78
        assert await seed.get_balance("bob") == Decimal("1219.78")
        assert outcome.holding_quantity_after == Decimal("3")
        holding = await seed.get_holding("bob", "ethereum")
        assert holding.quantity == Decimal("3")
        assert holding.average_buy_price == Decimal("100")

    @pytest.mark.asyncio
    async def test_selling_everything_deletes_holding(self, executor, seed):
        await seed.balance("bob", "0")
        await seed.holding("bob", "ethereum", "2", "100")
        order_id = await seed.order("bob", "ethereum", "sell", "2", limit_price="100")

        await executor.execute(order_id, Decimal("100"))

        assert await seed.get_holding("bob", "ethereum") is None
        assert await seed.get_balance("bob") == Decimal("199.8")

    @pytest.mark.asyncio
    async def test_insufficient_holdings_keeps_order_pending(self, executor, seed):
        await seed.balance("bob", "0")
        await seed.holding("bob", "ethereum", "1", "100")
        order_id = await seed.order("bob", "ethereum", "sell", "2", limit_price="100")

        with pytest.raises(InsufficientHoldings):
            await executor.execute(order_id, Decimal("100"))

        assert (await seed.get_order(order_id)).status == "pending"
        assert (await seed.get_holding("bob", "ethereum")).quantity == Decimal("1")
        assert await seed.get_balance("bob") == Decimal("0")


# ============================================================
# AT-MOST-ONCE
# ============================================================

class TestAtMostOnce:
    """Tests for double-execution protection."""

    @pytest.mark.asyncio
    async def test_unknown_order_raises_not_found(self, executor):
        with pytest.raises(OrderNotFound):
            await executor.execute("missing", Decimal("1"))

    @pytest.mark.asyncio
    async def test_second_execution_conflicts(self, executor, seed):
        await seed.balance("alice", "10000")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="100")

        await executor.execute(order_id, Decimal("100"))
        with pytest.raises(ConcurrencyConflict):
            await executor.execute(order_id, Decimal("100"))

        assert await seed.get_balance("alice") == Decimal("9899.9")
        assert await seed.count_transactions() == 1

    @pytest.mark.asyncio
    async def test_concurrent_executions_apply_once(self, executor, seed):
        await seed.balance("alice", "10000")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="100")

        results = await asyncio.gather(
            executor.execute(order_id, Decimal("100")),
            executor.execute(order_id, Decimal("100")),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConcurrencyConflict)]
        assert len(conflicts) == 1
        assert await seed.get_balance("alice") == Decimal("9899.9")
        assert (await seed.get_holding("alice", "bitcoin")).quantity == Decimal("1")

    @pytest.mark.asyncio
    async def test_cancelled_order_is_not_executed(self, executor, seed):
        await seed.balance("alice", "10000")
        order_id = await seed.order(
            "alice", "bitcoin", "buy", "1", limit_price="100", status="cancelled"
        )

        with pytest.raises(ConcurrencyConflict):
            await executor.execute(order_id, Decimal("100"))
        assert await seed.count_transactions() == 0


# ============================================================
# POLICY ESCALATION
# ============================================================

class TestEscalation:
    """Tests for retrying a denied execution through the admin session factory."""

    @pytest.mark.asyncio
    async def test_denied_execution_retries_once_elevated(self, session_factory, seed, clock):
        await seed.balance("alice", "10000")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="100")
        executor = TradeExecutor(session_factory, clock=clock, admin_session_factory=session_factory)
        real_execute = executor._execute_with
        attempts = []

        async def deny_normal(capability, order_id, execution_price):
            attempts.append(capability.name)
            if not capability.privileged:
                raise AuthorizationDenied("denied by policy")
            return await real_execute(capability, order_id, execution_price)

        executor._execute_with = deny_normal
        outcome = await executor.execute(order_id, Decimal("100"))

        assert attempts == ["normal", "elevated"]
        assert outcome.balance_after == Decimal("9899.9")
        assert (await seed.get_order(order_id)).status == "completed"
        assert await seed.count_transactions() == 1

    @pytest.mark.asyncio
    async def test_denial_without_admin_path_propagates(self, executor, seed):
        await seed.balance("alice", "10000")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="100")

        async def deny(capability, order_id, execution_price):
            raise AuthorizationDenied("denied by policy")

        executor._execute_with = deny
        with pytest.raises(AuthorizationDenied):
            await executor.execute(order_id, Decimal("100"))

        assert (await seed.get_order(order_id)).status == "pending"
        assert await seed.get_balance("alice") == Decimal("10000")

    @pytest.mark.asyncio
    async def test_elevated_denial_is_not_retried_again(self, session_factory, seed, clock):
        await seed.balance("alice", "10000")
        order_id = await seed.order("alice", "bitcoin", "buy", "1", limit_price="100")
        executor = TradeExecutor(session_factory, clock=clock, admin_session_factory=session_factory)
        attempts = []

        async def deny(capability, order_id, execution_price):
            attempts.append(capability.name)
            raise AuthorizationDenied("denied by policy")

        executor._execute_with = deny
        with pytest.raises(AuthorizationDenied):
            await executor.execute(order_id, Decimal("100"))

        assert attempts == ["normal", "elevated"]
