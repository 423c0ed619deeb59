"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages database connections and sessions.

- Creates the async engine
- Provides session factories (normal and elevated privilege)
- Creates the ledger schema
- Health check

============================================================
DESIGN PRINCIPLES
============================================================
- Async by default
- PostgreSQL (asyncpg) in production, SQLite (aiosqlite) locally
- Explicit transaction boundaries owned by callers
- Hard failures on persistence errors

============================================================
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storage.models.base import Base


logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./ledger.db"


def _clean_url(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    url = raw.strip().strip('"').strip("'")
    return url or None


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass
class DatabaseConfig:
    """Database connection configuration."""

    url: str = DEFAULT_DATABASE_URL
    """Primary (normal privilege) connection URL."""

    admin_url: Optional[str] = None
    """Elevated-privilege URL used only after a policy denial."""

    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout_seconds: int = 30
    echo: bool = False

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Build config from DATABASE_URL / DATABASE_ADMIN_URL."""
        load_dotenv()
        url = _clean_url(os.getenv("DATABASE_URL"))
        if not url:
            url = DEFAULT_DATABASE_URL
            logger.warning(f"DATABASE_URL not set, using default: {url}")
        return cls(
            url=url,
            admin_url=_clean_url(os.getenv("DATABASE_ADMIN_URL")),
            pool_size=int(os.getenv("DATABASE_POOL_SIZE", "10")),
            max_overflow=int(os.getenv("DATABASE_MAX_OVERFLOW", "20")),
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
        )


# ============================================================
# DATABASE
# ============================================================

class Database:
    """
    Owns the async engines and session factories.

    ``session_factory`` is the normal-privilege path. ``admin_session_factory``
    is the elevated path; when no admin URL is configured it is ``None`` and
    callers cannot escalate.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self._config = config or DatabaseConfig()
        self._engine: Optional[AsyncEngine] = None
        self._admin_engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._admin_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    def _create_engine(self, url: str) -> AsyncEngine:
        kwargs = {"echo": self._config.echo}
        if not url.startswith("sqlite"):
            kwargs.update(
                pool_size=self._config.pool_size,
                max_overflow=self._config.max_overflow,
                pool_timeout=self._config.pool_timeout_seconds,
            )
        logger.info(f"Creating database engine for: {url.split('@')[-1]}")
        return create_async_engine(url, **kwargs)

    async def connect(self) -> None:
        """Create engines and session factories."""
        if self._engine is not None:
            return

        self._engine = self._create_engine(self._config.url)
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            autoflush=False,
        )

        if self._config.admin_url:
            self._admin_engine = self._create_engine(self._config.admin_url)
            self._admin_session_factory = async_sessionmaker(
                self._admin_engine,
                expire_on_commit=False,
                autoflush=False,
            )

    async def disconnect(self) -> None:
        """Dispose engines."""
        if self._engine is not None:
            await self._engine.dispose()
        if self._admin_engine is not None:
            await self._admin_engine.dispose()
        self._engine = None
        self._admin_engine = None
        self._session_factory = None
        self._admin_session_factory = None
        logger.info("Database connections closed")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database is not connected")
        return self._session_factory

    @property
    def admin_session_factory(self) -> Optional[async_sessionmaker[AsyncSession]]:
        return self._admin_session_factory

    async def create_all(self) -> None:
        """Create all ledger tables if they do not exist."""
        import storage.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Ledger tables created")

    async def health_check(self) -> bool:
        """Check that the primary connection answers."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False
