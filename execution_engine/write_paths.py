"""
Execution Engine - Write Paths.

============================================================
PURPOSE
============================================================
Two-tier write capability for ledger mutations.

1. Normal - the application's own session factory
2. Elevated - the admin session factory

A write is attempted through the normal path. Only when the store
denies it under a row-level policy (AuthorizationDenied, SQLSTATE
42501) is it retried, once, through the elevated path. A second
denial, or a denial with no elevated path configured, propagates.

Used by the trade executor, holdings reconciliation and cleanup.

============================================================
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import AuthorizationDenied


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class WriteCapability:
    """A named way of writing to the ledger store."""

    name: str
    session_factory: async_sessionmaker[AsyncSession]
    privileged: bool = False


class EscalatingWriter:
    """Runs a write through the normal capability, escalating once on denial."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        admin_session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self._normal = WriteCapability("normal", session_factory)
        self._elevated = (
            WriteCapability("elevated", admin_session_factory, privileged=True)
            if admin_session_factory is not None
            else None
        )

    @property
    def normal(self) -> WriteCapability:
        return self._normal

    @property
    def elevated(self) -> Optional[WriteCapability]:
        return self._elevated

    async def run(
        self,
        operation: Callable[[WriteCapability], Awaitable[T]],
        description: str,
        on_escalate: Optional[Callable[[], None]] = None,
    ) -> T:
        """
        Run ``operation`` with the normal capability, then at most once
        with the elevated one.

        ``operation`` must be a complete unit of work: a denied attempt
        has been rolled back before the retry starts.
        """
        try:
            return await operation(self._normal)
        except AuthorizationDenied:
            if self._elevated is None:
                logger.warning(f"{description} denied, no elevated capability configured")
                raise
            logger.warning(f"{description} denied, retrying with elevated capability")

        if on_escalate is not None:
            on_escalate()
        return await operation(self._elevated)
