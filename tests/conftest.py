"""
Shared fixtures: a file-backed SQLite ledger per test.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio

from core.clock import MockClock
from execution_engine.adapters.mock import MockPriceFeed
from execution_engine.config import LedgerEngineConfig
from execution_engine.repository import LedgerRepository
from storage.database import Database, DatabaseConfig
from storage.models.ledger import Balance, Holding, Order


START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class LedgerSeeder:
    """Writes fixture rows straight into the ledger tables."""

    def __init__(self, session_factory, clock: MockClock):
        self._session_factory = session_factory
        self._clock = clock

    async def balance(self, user_id: str, amount) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(Balance(user_id=user_id, amount=Decimal(str(amount)), updated_at=self._clock.now()))

    async def holding(self, user_id: str, coin_id: str, quantity, average_buy_price, coin_symbol: Optional[str] = None) -> str:
        async with self._session_factory() as session:
            async with session.begin():
                holding = await LedgerRepository(session).add_holding(
                    Holding(
                        user_id=user_id,
                        coin_id=coin_id,
                        coin_symbol=coin_symbol or coin_id.upper(),
                        quantity=Decimal(str(quantity)),
                        average_buy_price=Decimal(str(average_buy_price)),
                        last_updated=self._clock.now(),
                    )
                )
        return holding.id

    async def order(
        self,
        user_id: str,
        coin_id: str,
        side: str,
        quantity,
        mode: str = "limit",
        status: str = "pending",
        limit_price=None,
        total_amount=None,
        coin_symbol: Optional[str] = None,
    ) -> str:
        quantity = Decimal(str(quantity))
        limit_price = Decimal(str(limit_price)) if limit_price is not None else None
        if total_amount is None:
            total_amount = (limit_price or Decimal("0")) * quantity
        self._clock.advance(seconds=1)
        async with self._session_factory() as session:
            async with session.begin():
                order = await LedgerRepository(session).add_order(
                    Order(
                        user_id=user_id,
                        coin_id=coin_id,
                        coin_symbol=coin_symbol or coin_id.upper(),
                        side=side,
                        mode=mode,
                        status=status,
                        quantity=quantity,
                        limit_price=limit_price,
                        total_amount=Decimal(str(total_amount)),
                        created_at=self._clock.now(),
                        completed_at=self._clock.now() if status == "completed" else None,
                    )
                )
        return order.id

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._session_factory() as session:
            return await LedgerRepository(session).get_order(order_id)

    async def get_balance(self, user_id: str) -> Decimal:
        async with self._session_factory() as session:
            balance = await LedgerRepository(session).get_balance(user_id)
        return balance.amount if balance is not None else None

    async def get_holding(self, user_id: str, coin_id: str) -> Optional[Holding]:
        async with self._session_factory() as session:
            return await LedgerRepository(session).get_holding(user_id, coin_id)

    async def count_transactions(self) -> int:
        async with self._session_factory() as session:
            return await LedgerRepository(session).count_transactions()


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path}/ledger.db"))
    await db.connect()
    await db.create_all()
    yield db
    await db.disconnect()


@pytest.fixture
def session_factory(database):
    return database.session_factory


@pytest.fixture
def clock():
    return MockClock(START)


@pytest.fixture
def seed(session_factory, clock):
    return LedgerSeeder(session_factory, clock)


@pytest.fixture
def feed():
    return MockPriceFeed()


@pytest.fixture
def engine_config():
    return LedgerEngineConfig.for_testing()
