"""
Orders API application.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import trading_error_handler
from api.router import router as orders_router
from core.exceptions import TradingException
from execution_engine.config import LedgerEngineConfig
from execution_engine.service import LedgerEngine
from storage.database import Database, DatabaseConfig


@asynccontextmanager
async def _env_lifespan(app: FastAPI):
    """Build the engine from the environment and run the scanner."""
    database = Database(DatabaseConfig.from_env())
    await database.connect()
    engine = LedgerEngine(database, LedgerEngineConfig.from_env())
    await engine.start(run_scheduler=True)
    app.state.engine = engine
    try:
        yield
    finally:
        await engine.stop()
        await database.disconnect()

def create_app(engine: Optional[LedgerEngine] = None) -> FastAPI:
    """
    Create the API app.

    With ``engine`` the caller owns its lifecycle; without it the app
    builds one from the environment on startup.
    """
    app = FastAPI(
        title="Ledger Engine API",
        description="Limit order execution and portfolio reconciliation.",
        version="1.0.0",
        lifespan=None if engine is not None else _env_lifespan,
    )
    if engine is not None:
        app.state.engine = engine

    # CORS (Allow local frontend development)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(TradingException, trading_error_handler)
    app.include_router(orders_router)

    @app.get("/")
    def root():
        return {"status": "ok", "message": "Ledger Engine API is running"}

    return app
