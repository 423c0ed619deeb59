"""
Ledger Domain ORM Models.

============================================================
PURPOSE
============================================================
Durable records for the simulated spot-trading ledger:
balances, holdings, orders and transactions.

============================================================
DATA LIFECYCLE
============================================================
- balances: mutated only by trade execution
- holdings: mutated by trade execution, reconciliation and cleanup
- orders: created by placement; status changes pending -> completed
  or pending -> cancelled, both terminal
- transactions: append-only, one per executed order

Field names are part of the storage contract and must not change.

============================================================
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Index, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base


# ============================================================
# ENUMS
# ============================================================

class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderMode(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


# ============================================================
# IDENTIFIER NORMALISATION
# ============================================================

def normalize_coin_id(coin_id: str) -> str:
    """Canonical form of a coin identifier. Applied on every write."""
    return (coin_id or "").strip().lower()


def normalize_coin_symbol(symbol: str) -> str:
    return (symbol or "").strip().upper()


def _new_id() -> str:
    return str(uuid.uuid4())


# ============================================================
# MODELS
# ============================================================

class Balance(Base):
    """
    Cash balance, one row per user.

    INVARIANT: amount >= 0 after every committed mutation.
    """

    __tablename__ = "balances"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Balance user={self.user_id} amount={self.amount}>"


class Holding(Base):
    """
    A user's position in one coin.

    INVARIANT: quantity > 0. A holding that reaches zero is deleted.
    average_buy_price is the quantity-weighted cost basis.
    """

    __tablename__ = "holdings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    coin_id: Mapped[str] = mapped_column(String(64), nullable=False)
    coin_symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    average_buy_price: Mapped[Decimal] = mapped_column(nullable=False)
    last_updated: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "coin_id", name="uq_holdings_user_coin"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "coin_id": self.coin_id,
            "coin_symbol": self.coin_symbol,
            "quantity": str(self.quantity),
            "average_buy_price": str(self.average_buy_price),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


class Order(Base):
    """Market or limit order."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    coin_id: Mapped[str] = mapped_column(String(64), nullable=False)
    coin_symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    mode: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=OrderStatus.PENDING.value,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    limit_price: Mapped[Optional[Decimal]] = mapped_column(nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    __table_args__ = (
        Index("ix_orders_status_mode", "status", "mode"),
        Index("ix_orders_user_status", "user_id", "status"),
    )

    @property
    def order_side(self) -> OrderSide:
        return OrderSide(self.side)

    @property
    def order_mode(self) -> OrderMode:
        return OrderMode(self.mode)

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "coin_id": self.coin_id,
            "coin_symbol": self.coin_symbol,
            "side": self.side,
            "mode": self.mode,
            "status": self.status,
            "quantity": str(self.quantity),
            "limit_price": str(self.limit_price) if self.limit_price is not None else None,
            "total_amount": str(self.total_amount),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class Transaction(Base):
    """
    Audit record of one executed order.

    Written once by the trade executor; never updated or deleted.
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(8), nullable=False)
    coin_id: Mapped[str] = mapped_column(String(64), nullable=False)
    coin_symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    price_per_unit: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "type": self.type,
            "coin_id": self.coin_id,
            "coin_symbol": self.coin_symbol,
            "quantity": str(self.quantity),
            "price_per_unit": str(self.price_per_unit),
            "total_amount": str(self.total_amount),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
