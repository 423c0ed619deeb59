"""
Storage Models Package.

ORM models for the ledger database.

============================================================
MODEL ORGANIZATION
============================================================
- Balance: one cash balance per user
- Holding: one position per user x coin, quantity > 0
- Order: market / limit orders and their lifecycle
- Transaction: append-only audit record, one per executed order
"""

from storage.models.base import Base, LEDGER_NUMERIC
from storage.models.ledger import (
    Balance,
    Holding,
    Order,
    Transaction,
    OrderSide,
    OrderMode,
    OrderStatus,
    normalize_coin_id,
    normalize_coin_symbol,
)

__all__ = [
    "Base",
    "LEDGER_NUMERIC",
    "Balance",
    "Holding",
    "Order",
    "Transaction",
    "OrderSide",
    "OrderMode",
    "OrderStatus",
    "normalize_coin_id",
    "normalize_coin_symbol",
]
