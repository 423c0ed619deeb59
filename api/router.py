"""
FastAPI Router for Order Endpoints.

Provides REST API over the ledger engine:
- Check pending limit orders
- Cancel an order
- Sync holdings from order history
- Clean up zero holdings
- Place an order
- Portfolio view
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request

from api.errors import error_response
from api.schemas import (
    CancelOrderBody,
    CancelResponse,
    CleanupResponse,
    ErrorResponse,
    PlaceOrderBody,
    PlaceOrderResponse,
    ReconcileResponse,
    ScanResponse,
)
from execution_engine.service import LedgerEngine

router = APIRouter(prefix="/orders", tags=["Orders"])


# =============================================================
# HELPER: Engine dependency
# =============================================================

def get_engine(request: Request) -> LedgerEngine:
    return request.app.state.engine


# =============================================================
# LEDGER OPERATIONS
# =============================================================

@router.post("/check-limits", response_model=ScanResponse)
async def check_limit_orders(engine: LedgerEngine = Depends(get_engine)):
    """Run one pass over pending limit orders."""
    return await engine.scan()


@router.post(
    "/{order_id}/cancel",
    response_model=CancelResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_order(
    order_id: str,
    body: Optional[CancelOrderBody] = None,
    engine: LedgerEngine = Depends(get_engine),
):
    """Cancel a pending order. Completed or cancelled orders are rejected."""
    result = await engine.cancel(order_id, user_id=body.user_id if body else None)
    if not result["success"]:
        return error_response(result["code"], result["detail"])
    return result


@router.post("/sync-holdings", response_model=ReconcileResponse)
async def sync_holdings(engine: LedgerEngine = Depends(get_engine)):
    """Rebuild holdings from completed buy orders."""
    return await engine.reconcile()


@router.post("/cleanup-holdings", response_model=CleanupResponse)
async def cleanup_holdings(engine: LedgerEngine = Depends(get_engine)):
    """Delete holdings left at zero quantity."""
    return await engine.cleanup()


# =============================================================
# ORDER PLACEMENT / PORTFOLIO
# =============================================================

@router.post(
    "/place",
    response_model=PlaceOrderResponse,
    responses={400: {"model": ErrorResponse}},
)
async def place_order(body: PlaceOrderBody, engine: LedgerEngine = Depends(get_engine)):
    """
    Place a market or limit order.

    Rejections (insufficient balance / holdings, bad quantity or price)
    come back as 400 with a machine code and a detail string.
    """
    return await engine.place(body.to_request())


@router.get("/portfolio/{user_id}")
async def get_portfolio(user_id: str, engine: LedgerEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Balance, locked amounts and holdings valued at current prices."""
    return await engine.portfolio(user_id)
