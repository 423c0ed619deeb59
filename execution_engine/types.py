"""
Execution Engine - Types.

============================================================
PURPOSE
============================================================
Value types passed between the engine components and returned
from its public operations.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from storage.models.ledger import OrderMode, OrderSide, OrderStatus


# ============================================================
# PRICES
# ============================================================

@dataclass(frozen=True)
class PriceQuote:
    """A price observation from the feed."""

    symbol: str
    price: Decimal
    bid: Optional[Decimal] = None
    ask: Optional[Decimal] = None
    fetched_at: Optional[datetime] = None


# ============================================================
# ORDER PLACEMENT
# ============================================================

@dataclass
class PlaceOrderRequest:
    """A user's request to place an order."""

    user_id: str
    coin_id: str
    coin_symbol: str
    side: OrderSide
    mode: OrderMode
    quantity: Decimal

    limit_price: Optional[Decimal] = None
    """Threshold price, required for limit orders."""

    current_price: Optional[Decimal] = None
    """Market price at placement, required for market orders."""


# ============================================================
# RESULTS
# ============================================================

@dataclass
class ExecutionOutcome:
    """Effect of one executed order on the ledger."""

    order_id: str
    user_id: str
    coin_id: str
    side: OrderSide
    quantity: Decimal
    execution_price: Decimal
    base_amount: Decimal
    fee: Decimal
    balance_after: Decimal
    holding_quantity_after: Decimal
    transaction_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "user_id": self.user_id,
            "coin_id": self.coin_id,
            "side": self.side.value,
            "quantity": str(self.quantity),
            "execution_price": str(self.execution_price),
            "base_amount": str(self.base_amount),
            "fee": str(self.fee),
            "balance_after": str(self.balance_after),
            "holding_quantity_after": str(self.holding_quantity_after),
            "transaction_id": self.transaction_id,
        }


@dataclass
class ScanResult:
    """Summary of one scanner pass."""

    checked: int = 0
    executed: int = 0
    unavailable: int = 0
    conflicts: int = 0
    errors: List[str] = field(default_factory=list)
    executed_order_ids: List[str] = field(default_factory=list)

    @property
    def feed_starved(self) -> bool:
        """Every checked order was skipped for lack of a price."""
        return self.checked > 0 and self.unavailable == self.checked

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "checked": self.checked,
            "executed": self.executed,
            "errors": list(self.errors),
        }


@dataclass
class ReconcileResult:
    """Summary of one holdings backfill pass."""

    synced: int = 0
    skipped: int = 0
    total_orders: int = 0
    errors: List[str] = field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": not self.errors,
            "synced": self.synced,
            "total_orders": self.total_orders,
            "errors": list(self.errors),
        }


@dataclass
class CleanupResult:
    """Summary of one zero-holding cleanup pass."""

    cleaned: int = 0
    total: int = 0
    failed: int = 0
    escalated: int = 0
    errors: List[str] = field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "cleaned": self.cleaned,
            "total": self.total,
            "failed": self.failed,
        }


@dataclass
class LockedAmounts:
    """Raw, locked and available figures for one user."""

    balance: Decimal
    locked_balance: Decimal
    available_balance: Decimal
    holdings: Dict[str, Decimal] = field(default_factory=dict)
    locked_holdings: Dict[str, Decimal] = field(default_factory=dict)
    available_holdings: Dict[str, Decimal] = field(default_factory=dict)


__all__ = [
    "OrderSide",
    "OrderMode",
    "OrderStatus",
    "PriceQuote",
    "PlaceOrderRequest",
    "ExecutionOutcome",
    "ScanResult",
    "ReconcileResult",
    "CleanupResult",
    "LockedAmounts",
]
