"""
Execution Engine - Trade Executor.

============================================================
PURPOSE
============================================================
Applies one order's effect to the ledger.

    BUY:  total_cost = price * qty * (1 + fee)
          balance -= total_cost
          holding += qty, average price re-weighted
    SELL: proceeds = price * qty * (1 - fee)
          balance += proceeds
          holding -= qty, row deleted at ~0

CRITICAL INVARIANTS:
- Claim (pending -> completed), balance, holding and transaction
  writes commit together or not at all
- Balance and holdings are re-validated at execution time
- An order can be executed at most once

============================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import ClockProtocol, resolve_clock
from core.exceptions import (
    ConcurrencyConflict,
    InsufficientBalance,
    InsufficientHoldings,
    OrderNotFound,
    TradingException,
)
from storage.models.ledger import Holding, Order, Transaction

from .concurrency import KeyedLockRegistry, balance_key, position_key
from .config import FeeConfig
from .errors import map_store_error
from .repository import LedgerRepository
from .types import ExecutionOutcome, OrderMode, OrderSide, OrderStatus
from .write_paths import EscalatingWriter, WriteCapability


logger = logging.getLogger(__name__)


def weighted_average_price(
    old_quantity: Decimal,
    old_average: Decimal,
    new_quantity: Decimal,
    new_price: Decimal,
) -> Decimal:
    """Cost-basis average after adding ``new_quantity`` at ``new_price``."""
    total = old_quantity + new_quantity
    if total <= 0:
        return new_price
    return (old_quantity * old_average + new_quantity * new_price) / total


class TradeExecutor:
    """
    Executes orders against the ledger.

    One call to ``execute`` is one database transaction. The
    pending -> completed claim is the first write of that transaction,
    so losing the claim race aborts before any money moves, and any
    later failure rolls the claim back with everything else.

    A write denied by a store policy is rolled back and retried once
    through the admin session factory, when one is configured.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fees: Optional[FeeConfig] = None,
        locks: Optional[KeyedLockRegistry] = None,
        clock: Optional[ClockProtocol] = None,
        admin_session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self._session_factory = session_factory
        self._fees = fees or FeeConfig()
        self._locks = locks or KeyedLockRegistry()
        self._clock = clock
        self._writer = EscalatingWriter(session_factory, admin_session_factory)

    @property
    def locks(self) -> KeyedLockRegistry:
        return self._locks

    def _now(self):
        return resolve_clock(self._clock).now()

    def _q(self, value: Decimal) -> Decimal:
        return value.quantize(self._fees.quantum)

    async def execute(self, order_id: str, execution_price: Decimal) -> ExecutionOutcome:
        """
        Execute one pending order at ``execution_price``.

        Raises:
            OrderNotFound: no such order
            ConcurrencyConflict: order is no longer pending
            InsufficientBalance / InsufficientHoldings: re-validation failed,
                order stays pending
            PersistenceFailure / AuthorizationDenied: store rejected a write
        """
        if execution_price <= 0:
            raise ValueError(f"execution_price must be positive, got {execution_price}")

        async with self._session_factory() as session:
            order = await LedgerRepository(session).get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)

        keys = [position_key(order.user_id, order.coin_id)]
        if order.side == OrderSide.BUY.value:
            keys.append(balance_key(order.user_id))

        async with self._locks.hold(*keys):
            outcome = await self._writer.run(
                lambda capability: self._execute_with(capability, order_id, execution_price),
                f"Execution of order {order_id}",
            )

        logger.info(
            f"{outcome.side.value.upper()} executed: order={order_id} "
            f"qty={outcome.quantity} @ {outcome.execution_price} "
            f"balance={outcome.balance_after}"
        )
        return outcome

    async def _execute_with(
        self,
        capability: WriteCapability,
        order_id: str,
        execution_price: Decimal,
    ) -> ExecutionOutcome:
        try:
            async with capability.session_factory() as session:
                async with session.begin():
                    return await self._apply(
                        LedgerRepository(session), order_id, execution_price
                    )
        except TradingException:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Ledger write failed for order {order_id}, rolled back: {e}")
            raise map_store_error(e, f"execute order {order_id} ({capability.name})") from e

    async def _apply(
        self,
        repo: LedgerRepository,
        order_id: str,
        execution_price: Decimal,
    ) -> ExecutionOutcome:
        order = await repo.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status != OrderStatus.PENDING.value:
            raise ConcurrencyConflict(order_id)

        now = self._now()
        base_amount = self._q(execution_price * order.quantity)

        claim_values = {"completed_at": now}
        if order.mode == OrderMode.LIMIT.value:
            # limit price is the trigger; the fill happens at market
            claim_values["total_amount"] = base_amount
        if not await repo.transition_order(order_id, OrderStatus.COMPLETED, **claim_values):
            raise ConcurrencyConflict(order_id)

        balance = await repo.get_or_create_balance(
            order.user_id, Decimal("0"), now, for_update=True
        )
        holding = await repo.get_holding(order.user_id, order.coin_id, for_update=True)

        if order.side == OrderSide.BUY.value:
            fee, holding_after = await self._apply_buy(
                repo, order, balance, holding, execution_price, base_amount, now
            )
        else:
            fee, holding_after = await self._apply_sell(
                repo, order, balance, holding, base_amount, now
            )

        transaction = await repo.add_transaction(
            Transaction(
                order_id=order.id,
                user_id=order.user_id,
                type=order.side,
                coin_id=order.coin_id,
                coin_symbol=order.coin_symbol,
                quantity=order.quantity,
                price_per_unit=execution_price,
                total_amount=base_amount,
                timestamp=now,
            )
        )

        return ExecutionOutcome(
            order_id=order.id,
            user_id=order.user_id,
            coin_id=order.coin_id,
            side=OrderSide(order.side),
            quantity=order.quantity,
            execution_price=execution_price,
            base_amount=base_amount,
            fee=fee,
            balance_after=balance.amount,
            holding_quantity_after=holding_after,
            transaction_id=transaction.id,
        )

    async def _apply_buy(
        self,
        repo: LedgerRepository,
        order: Order,
        balance,
        holding: Optional[Holding],
        execution_price: Decimal,
        base_amount: Decimal,
        now,
    ):
        fee = self._q(base_amount * self._fees.fee_rate)
        total_cost = base_amount + fee

        if balance.amount < total_cost:
            logger.warning(
                f"Insufficient balance for user {order.user_id}. "
                f"Required: {total_cost}, Available: {balance.amount}"
            )
            raise InsufficientBalance(order.user_id, total_cost, balance.amount)

        balance.amount = self._q(balance.amount - total_cost)
        balance.updated_at = now

        if holding is not None:
            holding.average_buy_price = self._q(weighted_average_price(
                holding.quantity, holding.average_buy_price, order.quantity, execution_price
            ))
            holding.quantity = self._q(holding.quantity + order.quantity)
            holding.last_updated = now
        else:
            holding = await repo.add_holding(
                Holding(
                    user_id=order.user_id,
                    coin_id=order.coin_id,
                    coin_symbol=order.coin_symbol,
                    quantity=order.quantity,
                    average_buy_price=execution_price,
                    last_updated=now,
                )
            )
        await repo.session.flush()
        return fee, holding.quantity

    async def _apply_sell(
        self,
        repo: LedgerRepository,
        order: Order,
        balance,
        holding: Optional[Holding],
        base_amount: Decimal,
        now,
    ):
        held = holding.quantity if holding is not None else Decimal("0")
        if held < order.quantity:
            logger.warning(
                f"Insufficient holdings for user {order.user_id}. "
                f"Selling: {order.quantity}, Held: {held}"
            )
            raise InsufficientHoldings(order.user_id, order.coin_id, order.quantity, held)

        remainder = self._q(held - order.quantity)
        if remainder <= self._fees.holding_epsilon:
            await repo.delete_holding(holding)
            remainder = Decimal("0")
        else:
            holding.quantity = remainder
            holding.last_updated = now

        fee = self._q(base_amount * self._fees.fee_rate)
        balance.amount = self._q(balance.amount + base_amount - fee)
        balance.updated_at = now
        await repo.session.flush()
        return fee, remainder
