"""
Execution Engine - Ledger Engine Service.

============================================================
PURPOSE
============================================================
Single entry point for the ledger engine.

Wires the executor, scanner, scheduler, reconciler, cleaner and
order manager around one database and one price feed, and returns
the response shapes the outer API layer serves:

    scan()       -> {success, checked, executed, errors}
    cancel(id)   -> {success, order_id} | {success: False, code, detail}
    reconcile()  -> {success, synced, total_orders, errors}
    cleanup()    -> {success, cleaned, total, failed}

All components share one KeyedLockRegistry, so placement, scanner
fills and reconciliation serialise per (user, coin).

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.clock import ClockProtocol
from core.exceptions import OrderError
from storage.database import Database

from .adapters.base import PriceFeed, guarded_get_price
from .adapters.factory import create_price_feed
from .cleanup import HoldingsCleaner
from .concurrency import KeyedLockRegistry
from .config import LedgerEngineConfig
from .errors import map_store_error
from .executor import TradeExecutor
from .locked_amounts import locked_amounts_for
from .order_manager import OrderManager
from .portfolio import value_portfolio
from .reconciliation import HoldingsReconciler
from .repository import LedgerRepository
from .scanner import OrderScanner
from .scheduler import ScanScheduler
from .types import PlaceOrderRequest


logger = logging.getLogger(__name__)


# ============================================================
# LEDGER ENGINE
# ============================================================

class LedgerEngine:
    """
    Facade over the ledger engine components.

    Single-flight guards for reconcile and cleanup are scoped to
    this instance; run one engine per process.
    """

    def __init__(
        self,
        database: Database,
        config: Optional[LedgerEngineConfig] = None,
        feed: Optional[PriceFeed] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config or LedgerEngineConfig()
        self._database = database
        self._feed = feed or create_price_feed(self._config.feed)
        self._locks = KeyedLockRegistry()

        session_factory = database.session_factory
        admin_session_factory = database.admin_session_factory
        self._executor = TradeExecutor(
            session_factory,
            fees=self._config.fees,
            locks=self._locks,
            clock=clock,
            admin_session_factory=admin_session_factory,
        )
        self._scanner = OrderScanner(
            session_factory,
            self._feed,
            self._executor,
            feed_timeout_seconds=self._config.feed.timeout_seconds,
        )
        self._scheduler = ScanScheduler(self._scanner, self._config.scheduler)
        self._reconciler = HoldingsReconciler(
            session_factory,
            locks=self._locks,
            fees=self._config.fees,
            clock=clock,
            admin_session_factory=admin_session_factory,
        )
        self._cleaner = HoldingsCleaner(session_factory, admin_session_factory)
        self._orders = OrderManager(
            session_factory,
            self._executor,
            config=self._config,
            locks=self._locks,
            clock=clock,
        )

        self._scheduler_task: Optional[asyncio.Task] = None
        self._stats = {
            "scans": 0,
            "executed": 0,
            "scan_errors": 0,
            "reconciles": 0,
            "cleanups": 0,
        }

    # --------------------------------------------------------
    # COMPONENTS
    # --------------------------------------------------------

    @property
    def config(self) -> LedgerEngineConfig:
        return self._config

    @property
    def feed(self) -> PriceFeed:
        return self._feed

    @property
    def executor(self) -> TradeExecutor:
        return self._executor

    @property
    def scanner(self) -> OrderScanner:
        return self._scanner

    @property
    def scheduler(self) -> ScanScheduler:
        return self._scheduler

    @property
    def orders(self) -> OrderManager:
        return self._orders

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self, run_scheduler: bool = True) -> None:
        await self._feed.connect()
        if run_scheduler and self._scheduler_task is None:
            self._scheduler_task = asyncio.create_task(self._scheduler.run_forever())
        logger.info(f"Ledger engine started (feed={self._feed.feed_id})")

    async def stop(self) -> None:
        if self._scheduler_task is not None:
            self._scheduler.stop()
            await self._scheduler_task
            self._scheduler_task = None
        await self._feed.disconnect()
        logger.info("Ledger engine stopped")

    # --------------------------------------------------------
    # OPERATIONS
    # --------------------------------------------------------

    async def scan(self) -> Dict[str, Any]:
        """Check pending limit orders once."""
        result = await self._scanner.scan()
        self._stats["scans"] += 1
        self._stats["executed"] += result.executed
        self._stats["scan_errors"] += len(result.errors)
        return result.to_response()

    async def cancel(self, order_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            order = await self._orders.cancel_order(order_id, user_id=user_id)
        except OrderError as e:
            logger.info(f"Cancel rejected for {order_id}: {e.code}")
            return {"success": False, "code": e.code, "detail": e.detail}
        return {"success": True, "order_id": order.id}

    async def reconcile(self) -> Dict[str, Any]:
        result = await self._reconciler.reconcile()
        self._stats["reconciles"] += 1
        return result.to_response()

    async def cleanup(self) -> Dict[str, Any]:
        result = await self._cleaner.cleanup()
        self._stats["cleanups"] += 1
        return result.to_response()

    async def place(self, request: PlaceOrderRequest) -> Dict[str, Any]:
        """
        Place an order.

        Raises:
            OrderRejected: validation or market execution failed
        """
        order = await self._orders.place_order(request)
        return {"success": True, "order": order.to_dict()}

    async def portfolio(self, user_id: str) -> Dict[str, Any]:
        """Balance, locked amounts and holdings valued at current prices."""
        try:
            async with self._database.session_factory() as session:
                repo = LedgerRepository(session)
                holdings = await repo.list_holdings(user_id)
                locked = await locked_amounts_for(repo, user_id, self._config.fees.fee_rate)
        except SQLAlchemyError as e:
            raise map_store_error(e, f"load portfolio for {user_id}") from e

        prices: Dict[str, Decimal] = {}
        for holding in holdings:
            quote = await guarded_get_price(
                self._feed, holding.coin_symbol, self._config.feed.timeout_seconds
            )
            if quote is not None:
                prices[holding.coin_id] = quote.price

        valued = value_portfolio(holdings, prices).to_dict()
        return {
            "success": True,
            "user_id": user_id,
            "balance": str(locked.balance),
            "locked_balance": str(locked.locked_balance),
            "available_balance": str(locked.available_balance),
            "locked_holdings": {k: str(v) for k, v in locked.locked_holdings.items()},
            "available_holdings": {k: str(v) for k, v in locked.available_holdings.items()},
            **valued,
        }
