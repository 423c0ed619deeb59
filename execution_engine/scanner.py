"""
Execution Engine - Order Scanner.

============================================================
PURPOSE
============================================================
One pass over pending limit orders:

    pending limit orders
        -> price per symbol (timeout-guarded)
        -> trigger decision
        -> Trade Executor (fills at current price)

TRIGGER RULES:
- BUY:  current_price <= limit_price
- SELL: current_price >= limit_price

An unavailable price is never a trigger and never zero; the order
is left for the next cycle. Per-order failures are collected and the
batch always completes.

The scanner keeps no state between passes; backoff belongs to the
scheduler that calls it.

============================================================
"""

import logging
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import ConcurrencyConflict, TradingException

from .adapters.base import PriceFeed, guarded_get_price
from .errors import map_store_error
from .executor import TradeExecutor
from .repository import LedgerRepository
from .types import OrderSide, PriceQuote, ScanResult


logger = logging.getLogger(__name__)


def should_trigger(side: OrderSide, current_price: Decimal, limit_price: Decimal) -> bool:
    """Whether a limit order on ``side`` triggers at ``current_price``."""
    if side == OrderSide.BUY:
        return current_price <= limit_price
    return current_price >= limit_price


class OrderScanner:
    """Finds triggered limit orders and hands them to the executor."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: PriceFeed,
        executor: TradeExecutor,
        feed_timeout_seconds: float = 5.0,
    ):
        self._session_factory = session_factory
        self._feed = feed
        self._executor = executor
        self._feed_timeout = feed_timeout_seconds

    async def scan(self) -> ScanResult:
        """
        Check every pending limit order once.

        Raises:
            PersistenceFailure / AuthorizationDenied: the pending orders
                could not be listed (nothing was checked)
        """
        result = ScanResult()

        try:
            async with self._session_factory() as session:
                orders = await LedgerRepository(session).list_pending_limit_orders()
        except SQLAlchemyError as e:
            raise map_store_error(e, "list pending limit orders") from e

        if not orders:
            logger.debug("No pending limit orders")
            return result

        logger.info(f"Checking {len(orders)} pending limit orders")
        quotes: Dict[str, Optional[PriceQuote]] = {}

        for order in orders:
            result.checked += 1

            if order.limit_price is None or order.limit_price <= 0:
                logger.warning(f"Order {order.id} has no usable limit price, skipping")
                continue

            symbol = order.coin_symbol.upper()
            if symbol not in quotes:
                quotes[symbol] = await guarded_get_price(self._feed, symbol, self._feed_timeout)
            quote = quotes[symbol]
            if quote is None:
                result.unavailable += 1
                logger.debug(f"No price for {symbol}, order {order.id} left pending")
                continue

            side = OrderSide(order.side)
            if not should_trigger(side, quote.price, order.limit_price):
                continue

            logger.info(
                f"Limit {side.value} {order.id} triggered: "
                f"{symbol} at {quote.price} vs limit {order.limit_price}"
            )
            try:
                await self._executor.execute(order.id, quote.price)
            except ConcurrencyConflict:
                result.conflicts += 1
                logger.info(f"Order {order.id} already handled elsewhere")
                continue
            except TradingException as e:
                result.errors.append(f"Order {order.id}: {e.message}")
                logger.warning(f"Order {order.id} not executed: {e.message}")
                continue
            except Exception as e:
                result.errors.append(f"Order {order.id}: {e}")
                logger.error(f"Unexpected error executing order {order.id}: {e}", exc_info=True)
                continue

            result.executed += 1
            result.executed_order_ids.append(order.id)

        logger.info(
            f"Scan complete: checked={result.checked} executed={result.executed} "
            f"unavailable={result.unavailable} errors={len(result.errors)}"
        )
        return result
