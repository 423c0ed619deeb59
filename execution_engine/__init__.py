"""
Execution Engine - Limit Order Execution & Portfolio Reconciliation.

============================================================
MODULES
============================================================
- config: Fee, scheduler and feed configuration
- types: Value types and result shapes
- errors: Error code registry and store error mapping
- state_machine: Allowed order status transitions
- repository: Ledger store queries
- locked_amounts: Available balance / holdings
- executor: Atomic trade execution
- scanner: Limit order trigger pass
- scheduler: Interval driver with backoff
- reconciliation: Holdings backfill
- cleanup: Zero-holding removal
- order_manager: Placement and cancellation
- portfolio: Holding valuation
- service: LedgerEngine facade

============================================================
"""

from .config import FeeConfig, FeedConfig, LedgerEngineConfig, SchedulerConfig
from .types import (
    CleanupResult,
    ExecutionOutcome,
    LockedAmounts,
    OrderMode,
    OrderSide,
    OrderStatus,
    PlaceOrderRequest,
    PriceQuote,
    ReconcileResult,
    ScanResult,
)
from .concurrency import KeyedLockRegistry, SingleFlight
from .executor import TradeExecutor
from .scanner import OrderScanner, should_trigger
from .scheduler import ScanScheduler, SchedulerState
from .reconciliation import HoldingsReconciler
from .cleanup import HoldingsCleaner
from .write_paths import EscalatingWriter, WriteCapability
from .order_manager import OrderManager
from .portfolio import PortfolioSummary, value_portfolio
from .service import LedgerEngine

__all__ = [
    "FeeConfig",
    "FeedConfig",
    "LedgerEngineConfig",
    "SchedulerConfig",
    "CleanupResult",
    "ExecutionOutcome",
    "LockedAmounts",
    "OrderMode",
    "OrderSide",
    "OrderStatus",
    "PlaceOrderRequest",
    "PriceQuote",
    "ReconcileResult",
    "ScanResult",
    "KeyedLockRegistry",
    "SingleFlight",
    "TradeExecutor",
    "OrderScanner",
    "should_trigger",
    "ScanScheduler",
    "SchedulerState",
    "HoldingsReconciler",
    "HoldingsCleaner",
    "WriteCapability",
    "EscalatingWriter",
    "OrderManager",
    "PortfolioSummary",
    "value_portfolio",
    "LedgerEngine",
]
