"""
Execution Engine - Repository.

============================================================
PURPOSE
============================================================
Database operations over the ledger tables (the Ledger Store).

RESPONSIBILITIES:
- Load / insert orders
- Conditional status transitions (pending -> terminal)
- Load / create balances, with row locks where supported
- Load / delete holdings
- Append transactions
- Aggregations used by the locked-amount calculator

CRITICAL REQUIREMENTS:
- The repository never commits; callers own the transaction
- Status transitions only succeed from the allowed source status
- Coin identifiers are normalised before every query

============================================================
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storage.models.ledger import (
    Balance,
    Holding,
    Order,
    Transaction,
    normalize_coin_id,
)

from .state_machine import TransitionGuard
from .types import OrderMode, OrderSide, OrderStatus


logger = logging.getLogger(__name__)


def _as_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ============================================================
# LEDGER REPOSITORY
# ============================================================

class LedgerRepository:
    """
    Repository for ledger persistence.

    Wraps one AsyncSession; every method runs inside whatever
    transaction the caller opened.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    # --------------------------------------------------------
    # ORDER OPERATIONS
    # --------------------------------------------------------

    async def get_order(
        self,
        order_id: str,
        user_id: Optional[str] = None,
    ) -> Optional[Order]:
        """Get order by id, optionally scoped to its owner."""
        query = select(Order).where(Order.id == order_id)
        if user_id is not None:
            query = query.where(Order.user_id == user_id)
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def add_order(self, order: Order) -> Order:
        order.coin_id = normalize_coin_id(order.coin_id)
        self._session.add(order)
        await self._session.flush()
        return order

    async def transition_order(
        self,
        order_id: str,
        to_status: OrderStatus,
        **values,
    ) -> bool:
        """
        Move an order to ``to_status`` only if it is still in the
        allowed source status.

        Returns:
            True if this call performed the transition, False if the
            row was already elsewhere (someone else won the race).
        """
        from_status = TransitionGuard.source_status_for(to_status)
        result = await self._session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == from_status.value)
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_pending_limit_orders(self) -> List[Order]:
        """All pending limit orders, oldest first."""
        result = await self._session.execute(
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING.value,
                Order.mode == OrderMode.LIMIT.value,
            )
            .order_by(Order.created_at)
        )
        return list(result.scalars())

    async def list_completed_buy_orders(self) -> List[Order]:
        """All completed buy orders across users, oldest first."""
        result = await self._session.execute(
            select(Order)
            .where(
                Order.status == OrderStatus.COMPLETED.value,
                Order.side == OrderSide.BUY.value,
            )
            .order_by(Order.created_at)
        )
        return list(result.scalars())

    async def list_pending_buy_orders(self, user_id: str) -> List[Order]:
        result = await self._session.execute(
            select(Order).where(
                Order.user_id == user_id,
                Order.status == OrderStatus.PENDING.value,
                Order.side == OrderSide.BUY.value,
            )
        )
        return list(result.scalars())

    async def sum_pending_limit_buy_notional(self, user_id: str) -> Decimal:
        """Σ limit_price * quantity over the user's pending limit buys."""
        result = await self._session.execute(
            select(func.coalesce(func.sum(Order.limit_price * Order.quantity), 0))
            .where(
                Order.user_id == user_id,
                Order.status == OrderStatus.PENDING.value,
                Order.side == OrderSide.BUY.value,
                Order.mode == OrderMode.LIMIT.value,
            )
        )
        return _as_decimal(result.scalar_one())

    async def sum_pending_sell_quantity(self, user_id: str, coin_id: str) -> Decimal:
        result = await self._session.execute(
            select(func.coalesce(func.sum(Order.quantity), 0))
            .where(
                Order.user_id == user_id,
                Order.coin_id == normalize_coin_id(coin_id),
                Order.status == OrderStatus.PENDING.value,
                Order.side == OrderSide.SELL.value,
            )
        )
        return _as_decimal(result.scalar_one())

    async def pending_sell_quantities(self, user_id: str) -> Dict[str, Decimal]:
        """Σ pending sell quantity per coin for one user."""
        result = await self._session.execute(
            select(Order.coin_id, func.sum(Order.quantity))
            .where(
                Order.user_id == user_id,
                Order.status == OrderStatus.PENDING.value,
                Order.side == OrderSide.SELL.value,
            )
            .group_by(Order.coin_id)
        )
        return {coin_id: _as_decimal(total) for coin_id, total in result.all()}

    # --------------------------------------------------------
    # BALANCE OPERATIONS
    # --------------------------------------------------------

    async def get_balance(
        self,
        user_id: str,
        for_update: bool = False,
    ) -> Optional[Balance]:
        query = select(Balance).where(Balance.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def get_or_create_balance(
        self,
        user_id: str,
        initial_amount: Decimal,
        now,
        for_update: bool = False,
    ) -> Balance:
        balance = await self.get_balance(user_id, for_update=for_update)
        if balance is None:
            logger.info(f"Creating balance for user {user_id} with {initial_amount}")
            balance = Balance(user_id=user_id, amount=initial_amount, updated_at=now)
            self._session.add(balance)
            await self._session.flush()
        return balance

    # --------------------------------------------------------
    # HOLDING OPERATIONS
    # --------------------------------------------------------

    async def get_holding(
        self,
        user_id: str,
        coin_id: str,
        for_update: bool = False,
    ) -> Optional[Holding]:
        query = select(Holding).where(
            Holding.user_id == user_id,
            Holding.coin_id == normalize_coin_id(coin_id),
        )
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def list_holdings(self, user_id: str) -> List[Holding]:
        result = await self._session.execute(
            select(Holding)
            .where(Holding.user_id == user_id)
            .order_by(Holding.coin_id)
        )
        return list(result.scalars())

    async def add_holding(self, holding: Holding) -> Holding:
        holding.coin_id = normalize_coin_id(holding.coin_id)
        self._session.add(holding)
        await self._session.flush()
        return holding

    async def delete_holding(self, holding: Holding) -> None:
        await self._session.delete(holding)
        await self._session.flush()

    async def list_non_positive_holdings(self) -> List[Holding]:
        result = await self._session.execute(
            select(Holding).where(Holding.quantity <= 0)
        )
        return list(result.scalars())

    async def delete_non_positive_holding(self, holding_id: str) -> bool:
        """Delete one holding by primary key if its quantity is still <= 0."""
        result = await self._session.execute(
            delete(Holding)
            .where(Holding.id == holding_id, Holding.quantity <= 0)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    # --------------------------------------------------------
    # TRANSACTION OPERATIONS
    # --------------------------------------------------------

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        transaction.coin_id = normalize_coin_id(transaction.coin_id)
        self._session.add(transaction)
        await self._session.flush()
        return transaction

    async def count_transactions(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(Transaction))
        return int(result.scalar_one())
