"""
Execution Engine - Holdings Reconciliation.

============================================================
PURPOSE
============================================================
Rebuilds holdings from completed buy orders.

Per (user, coin):
    quantity          = Σ order.quantity
    average_buy_price = Σ order.total_amount / Σ order.quantity

An existing holding whose quantity already matches (within epsilon)
is left alone, so replaying the pass writes nothing. Sell orders are
not consulted; holdings removed by cleanup are not resurrected by
sells that never existed.

Only one pass runs at a time per engine; concurrent callers share
the running pass.

A holding write denied by a store policy is retried once through
the admin session factory, when one is configured.

============================================================
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import ClockProtocol, resolve_clock
from core.exceptions import TradingException
from storage.models.ledger import Holding

from .concurrency import KeyedLockRegistry, SingleFlight, position_key
from .config import FeeConfig
from .errors import map_store_error
from .repository import LedgerRepository
from .types import ReconcileResult
from .write_paths import EscalatingWriter, WriteCapability


logger = logging.getLogger(__name__)


@dataclass
class _Position:
    user_id: str
    coin_id: str
    coin_symbol: str
    quantity: Decimal = Decimal("0")
    cost: Decimal = Decimal("0")

    @property
    def average_price(self) -> Decimal:
        return self.cost / self.quantity


class HoldingsReconciler:
    """Idempotent backfill of holdings from the order history."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: Optional[KeyedLockRegistry] = None,
        fees: Optional[FeeConfig] = None,
        clock: Optional[ClockProtocol] = None,
        admin_session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self._session_factory = session_factory
        self._locks = locks or KeyedLockRegistry()
        self._fees = fees or FeeConfig()
        self._clock = clock
        self._writer = EscalatingWriter(session_factory, admin_session_factory)
        self._flight: SingleFlight[ReconcileResult] = SingleFlight("Holdings sync")

    @property
    def in_progress(self) -> bool:
        return self._flight.in_flight

    async def reconcile(self) -> ReconcileResult:
        """Run a pass, or join the one already running."""
        return await self._flight.run(self._reconcile)

    async def _reconcile(self) -> ReconcileResult:
        try:
            async with self._session_factory() as session:
                orders = await LedgerRepository(session).list_completed_buy_orders()
        except SQLAlchemyError as e:
            raise map_store_error(e, "list completed buy orders") from e

        result = ReconcileResult(total_orders=len(orders))
        positions = self._group(orders)
        logger.info(
            f"Syncing holdings from {len(orders)} completed buy orders "
            f"({len(positions)} positions)"
        )

        for position in positions:
            try:
                if await self._sync_position(position):
                    result.synced += 1
                else:
                    result.skipped += 1
            except TradingException as e:
                result.errors.append(f"{position.user_id}/{position.coin_id}: {e.message}")
                logger.error(f"Failed to sync {position.user_id}/{position.coin_id}: {e.message}")

        logger.info(
            f"Holdings sync complete: synced={result.synced} skipped={result.skipped} "
            f"errors={len(result.errors)}"
        )
        return result

    @staticmethod
    def _group(orders) -> List[_Position]:
        grouped: Dict[Tuple[str, str], _Position] = {}
        for order in orders:
            key = (order.user_id, order.coin_id)
            position = grouped.get(key)
            if position is None:
                position = _Position(order.user_id, order.coin_id, order.coin_symbol)
                grouped[key] = position
            position.quantity += order.quantity
            position.cost += order.total_amount
        return [p for p in grouped.values() if p.quantity > 0]

    async def _sync_position(self, position: _Position) -> bool:
        """Upsert one holding. Returns False when it already matched."""
        quantum = self._fees.quantum
        quantity = position.quantity.quantize(quantum)
        average = position.average_price.quantize(quantum)
        now = resolve_clock(self._clock).now()

        async with self._locks.hold(position_key(position.user_id, position.coin_id)):
            written = await self._writer.run(
                lambda capability: self._write_position(
                    capability, position, quantity, average, now
                ),
                f"Sync of holding {position.user_id}/{position.coin_id}",
            )

        if written:
            logger.info(
                f"Synced holding {position.user_id}/{position.coin_id}: "
                f"qty={quantity} avg={average}"
            )
        return written

    async def _write_position(
        self,
        capability: WriteCapability,
        position: _Position,
        quantity: Decimal,
        average: Decimal,
        now,
    ) -> bool:
        try:
            async with capability.session_factory() as session:
                async with session.begin():
                    repo = LedgerRepository(session)
                    holding = await repo.get_holding(
                        position.user_id, position.coin_id, for_update=True
                    )
                    if holding is not None:
                        if abs(holding.quantity - quantity) < self._fees.holding_epsilon:
                            return False
                        holding.quantity = quantity
                        holding.average_buy_price = average
                        holding.last_updated = now
                    else:
                        await repo.add_holding(
                            Holding(
                                user_id=position.user_id,
                                coin_id=position.coin_id,
                                coin_symbol=position.coin_symbol,
                                quantity=quantity,
                                average_buy_price=average,
                                last_updated=now,
                            )
                        )
        except SQLAlchemyError as e:
            raise map_store_error(
                e, f"sync holding {position.user_id}/{position.coin_id} ({capability.name})"
            ) from e
        return True
