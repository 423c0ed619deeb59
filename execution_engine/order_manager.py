"""
Execution Engine - Order Manager.

============================================================
PURPOSE
============================================================
Order placement and cancellation.

PLACEMENT:
1. Validate quantity and price
2. Ensure the user has a balance (first order credits the
   configured initial balance)
3. Check against AVAILABLE balance / holdings, i.e. net of
   what pending orders already lock
4. Insert the order as pending
5. Market orders: execute immediately at the supplied price

Placement holds the position lock; buys also hold the per-user
balance lock so concurrent buys on different coins see each other.

CANCELLATION:
- pending -> cancelled via conditional update
- nothing to release, locks are computed on read

============================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import ClockProtocol, resolve_clock
from core.exceptions import (
    AuthorizationDenied,
    ExecutionError,
    OrderNotFound,
    OrderNotPending,
    OrderRejected,
    PersistenceFailure,
)
from storage.models.ledger import Order, normalize_coin_id, normalize_coin_symbol

from .concurrency import KeyedLockRegistry, balance_key, position_key
from .config import LedgerEngineConfig
from .errors import map_store_error
from .executor import TradeExecutor
from .locked_amounts import available_balance, available_holdings
from .repository import LedgerRepository
from .types import ExecutionOutcome, OrderMode, OrderSide, OrderStatus, PlaceOrderRequest


logger = logging.getLogger(__name__)


class OrderManager:
    """Places and cancels orders for users."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        executor: TradeExecutor,
        config: Optional[LedgerEngineConfig] = None,
        locks: Optional[KeyedLockRegistry] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._executor = executor
        self._config = config or LedgerEngineConfig()
        self._locks = locks or executor.locks
        self._clock = clock

    def _now(self):
        return resolve_clock(self._clock).now()

    # --------------------------------------------------------
    # PLACEMENT
    # --------------------------------------------------------

    def _validate(self, request: PlaceOrderRequest) -> Decimal:
        """Check the request shape. Returns the reference price."""
        if request.quantity is None or request.quantity <= 0:
            raise OrderRejected("invalid_quantity", "Quantity must be greater than zero")

        if request.mode == OrderMode.LIMIT:
            price = request.limit_price
            if price is None or price <= 0:
                raise OrderRejected("invalid_price", "Limit orders need a positive limit price")
        else:
            price = request.current_price
            if price is None or price <= 0:
                raise OrderRejected("invalid_price", "Market orders need a positive current price")

        if not request.coin_id or not request.coin_id.strip():
            raise OrderRejected("invalid_coin", "Coin id is required")
        return price

    async def place_order(self, request: PlaceOrderRequest) -> Order:
        """
        Validate and insert an order; execute it at once if it is a
        market order.

        Raises:
            OrderRejected: validation failed, or a market order could
                not be executed (the order is cancelled)
        """
        price = self._validate(request)
        coin_id = normalize_coin_id(request.coin_id)
        quantum = self._config.fees.quantum
        fee_rate = self._config.fees.fee_rate

        keys = [position_key(request.user_id, coin_id)]
        if request.side == OrderSide.BUY:
            # buys across coins draw on the same balance
            keys.append(balance_key(request.user_id))

        async with self._locks.hold(*keys):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        repo = LedgerRepository(session)
                        now = self._now()
                        await repo.get_or_create_balance(
                            request.user_id, self._config.initial_balance, now, for_update=True
                        )

                        if request.side == OrderSide.BUY:
                            required = (price * request.quantity * (Decimal("1") + fee_rate)).quantize(quantum)
                            available = await available_balance(repo, request.user_id, fee_rate)
                            if available < required:
                                raise OrderRejected(
                                    "insufficient_balance",
                                    f"Insufficient balance. Required: {required}, Available: {available}",
                                )
                        else:
                            available = await available_holdings(repo, request.user_id, coin_id)
                            if available < request.quantity:
                                raise OrderRejected(
                                    "insufficient_holdings",
                                    f"Insufficient holdings. Selling: {request.quantity}, "
                                    f"Available: {available}",
                                )

                        order = await repo.add_order(
                            Order(
                                user_id=request.user_id,
                                coin_id=coin_id,
                                coin_symbol=normalize_coin_symbol(request.coin_symbol or coin_id),
                                side=request.side.value,
                                mode=request.mode.value,
                                status=OrderStatus.PENDING.value,
                                quantity=request.quantity,
                                limit_price=request.limit_price if request.mode == OrderMode.LIMIT else None,
                                total_amount=(price * request.quantity).quantize(quantum),
                                created_at=now,
                            )
                        )
            except SQLAlchemyError as e:
                raise map_store_error(e, f"place order for {request.user_id}") from e

        logger.info(
            f"Order placed: {order.id} {request.mode.value} {request.side.value} "
            f"{request.quantity} {order.coin_symbol} @ {price}"
        )

        if request.mode == OrderMode.MARKET:
            await self._execute_market(order.id, price)
            async with self._session_factory() as session:
                order = await LedgerRepository(session).get_order(order.id)
        return order

    async def _execute_market(self, order_id: str, price: Decimal) -> ExecutionOutcome:
        try:
            return await self._executor.execute(order_id, price)
        except ExecutionError as e:
            await self._abandon(order_id)
            raise OrderRejected(e.code, e.detail) from e
        except (PersistenceFailure, AuthorizationDenied):
            await self._abandon(order_id)
            raise

    async def _abandon(self, order_id: str) -> None:
        """Cancel a market order whose execution failed."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await LedgerRepository(session).transition_order(order_id, OrderStatus.CANCELLED)
        except SQLAlchemyError as e:
            raise map_store_error(e, f"cancel failed market order {order_id}") from e
        logger.warning(f"Market order {order_id} cancelled after failed execution")

    # --------------------------------------------------------
    # CANCELLATION
    # --------------------------------------------------------

    async def cancel_order(self, order_id: str, user_id: Optional[str] = None) -> Order:
        """
        Cancel a pending order.

        Raises:
            OrderNotFound: no such order (for this user)
            OrderNotPending: order is completed or cancelled
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    repo = LedgerRepository(session)
                    order = await repo.get_order(order_id, user_id=user_id)
                    if order is None:
                        raise OrderNotFound(order_id)
                    if order.status != OrderStatus.PENDING.value:
                        raise OrderNotPending(order_id, order.status)
                    if not await repo.transition_order(order_id, OrderStatus.CANCELLED):
                        # filled by the scanner between the read and the update
                        raise OrderNotPending(order_id, "no longer pending")
                await session.refresh(order)
        except SQLAlchemyError as e:
            raise map_store_error(e, f"cancel order {order_id}") from e

        logger.info(f"Order cancelled: {order_id}")
        return order
