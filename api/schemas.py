"""
Pydantic Schemas for the Orders API.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from execution_engine.types import OrderMode, OrderSide, PlaceOrderRequest


# =============================================================
# REQUESTS
# =============================================================

class PlaceOrderBody(BaseModel):
    """Order placement request."""
    user_id: str = Field(..., min_length=1)
    coin_id: str = Field(..., min_length=1)
    coin_symbol: str = Field(..., min_length=1)
    side: OrderSide
    mode: OrderMode
    quantity: Decimal
    limit_price: Optional[Decimal] = None
    current_price: Optional[Decimal] = None

    def to_request(self) -> PlaceOrderRequest:
        return PlaceOrderRequest(
            user_id=self.user_id,
            coin_id=self.coin_id,
            coin_symbol=self.coin_symbol,
            side=self.side,
            mode=self.mode,
            quantity=self.quantity,
            limit_price=self.limit_price,
            current_price=self.current_price,
        )


class CancelOrderBody(BaseModel):
    """Optional owner scope for cancellation."""
    user_id: Optional[str] = None


# =============================================================
# RESPONSES
# =============================================================

class ErrorResponse(BaseModel):
    code: str
    detail: str
    retryable: bool = False


class ScanResponse(BaseModel):
    success: bool
    checked: int = 0
    executed: int
    errors: List[str] = []


class CancelResponse(BaseModel):
    success: bool
    order_id: str


class ReconcileResponse(BaseModel):
    success: bool
    synced: int
    total_orders: int
    errors: List[str] = []


class CleanupResponse(BaseModel):
    success: bool
    cleaned: int
    total: int
    failed: int


class PlaceOrderResponse(BaseModel):
    success: bool
    order: Dict[str, Any]
