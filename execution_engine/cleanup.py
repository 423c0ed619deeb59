"""
Execution Engine - Zero-Holding Cleanup.

============================================================
PURPOSE
============================================================
Deletes holdings left at quantity <= 0.

WRITE CAPABILITIES:
1. Normal - the application's own session factory
2. Elevated - the admin session factory, used only after the
   normal attempt is denied by a store policy (SQLSTATE 42501),
   and at most once per holding

Any other failure is recorded against the holding and the pass
moves on.

============================================================
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import TradingException

from .concurrency import SingleFlight
from .errors import map_store_error
from .repository import LedgerRepository
from .types import CleanupResult
from .write_paths import EscalatingWriter, WriteCapability


logger = logging.getLogger(__name__)


class HoldingsCleaner:
    """Removes non-positive holdings, escalating once on policy denial."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        admin_session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self._writer = EscalatingWriter(session_factory, admin_session_factory)
        self._flight: SingleFlight[CleanupResult] = SingleFlight("Holdings cleanup")

    async def cleanup(self) -> CleanupResult:
        """Run a pass, or join the one already running."""
        return await self._flight.run(self._cleanup)

    async def _cleanup(self) -> CleanupResult:
        try:
            async with self._writer.normal.session_factory() as session:
                holdings = await LedgerRepository(session).list_non_positive_holdings()
        except SQLAlchemyError as e:
            raise map_store_error(e, "list non-positive holdings") from e

        result = CleanupResult(total=len(holdings))
        if not holdings:
            logger.info("No zero holdings to clean up")
            return result

        logger.info(f"Cleaning up {len(holdings)} zero holdings")
        for holding in holdings:
            try:
                await self._delete(holding.id, result)
                result.cleaned += 1
            except TradingException as e:
                result.failed += 1
                result.errors.append(f"Holding {holding.id}: {e.message}")
                logger.error(f"Failed to delete holding {holding.id}: {e.message}")

        logger.info(
            f"Cleanup complete: cleaned={result.cleaned} failed={result.failed} "
            f"escalated={result.escalated}"
        )
        return result

    async def _delete(self, holding_id: str, result: CleanupResult) -> None:
        def escalated() -> None:
            result.escalated += 1

        await self._writer.run(
            lambda capability: self._delete_with(capability, holding_id),
            f"Delete of holding {holding_id}",
            on_escalate=escalated,
        )

    async def _delete_with(self, capability: WriteCapability, holding_id: str) -> bool:
        try:
            async with capability.session_factory() as session:
                async with session.begin():
                    deleted = await LedgerRepository(session).delete_non_positive_holding(holding_id)
        except SQLAlchemyError as e:
            raise map_store_error(e, f"delete holding {holding_id} ({capability.name})") from e
        if not deleted:
            logger.debug(f"Holding {holding_id} already gone or no longer zero")
        return deleted
