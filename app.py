#!/usr/bin/env python3
"""
Ledger Engine - Main Application Entry Point.

============================================================
COMMANDS
============================================================
    python app.py init-db          Create ledger tables
    python app.py serve-scanner    Run the limit order scanner loop
    python app.py serve-api        Run the HTTP API (scanner included)
    python app.py scan-once        One scanner pass, print the result
    python app.py reconcile        Rebuild holdings from completed buys
    python app.py cleanup          Delete zero-quantity holdings

Configuration comes from the environment (.env supported):
DATABASE_URL, DATABASE_ADMIN_URL, PRICE_FEED_PROVIDER,
SCANNER_INTERVAL_SECONDS, LOG_LEVEL, ...

============================================================
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional

from dotenv import load_dotenv

from core.exceptions import TradingException
from execution_engine.config import LedgerEngineConfig
from execution_engine.service import LedgerEngine
from storage.database import Database, DatabaseConfig


logger = logging.getLogger("ledger_engine")


# ============================================================
# CLI
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-engine",
        description="Limit order execution and portfolio reconciliation engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "command",
        choices=["init-db", "serve-scanner", "serve-api", "scan-once", "reconcile", "cleanup"],
        help="Operation to run",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="API bind host (serve-api only)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="API port (serve-api only)",
    )
    return parser


def setup_logging(level: Optional[str]) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


# ============================================================
# COMMANDS
# ============================================================

async def _with_engine(
    operation: Callable[[LedgerEngine], Awaitable[Dict[str, Any]]],
) -> Dict[str, Any]:
    database = Database(DatabaseConfig.from_env())
    await database.connect()
    engine = LedgerEngine(database, LedgerEngineConfig.from_env())
    try:
        await engine.start(run_scheduler=False)
        return await operation(engine)
    finally:
        await engine.stop()
        await database.disconnect()


async def init_db() -> Dict[str, Any]:
    database = Database(DatabaseConfig.from_env())
    await database.connect()
    try:
        await database.create_all()
        healthy = await database.health_check()
    finally:
        await database.disconnect()
    return {"success": healthy}


async def serve_scanner() -> None:
    database = Database(DatabaseConfig.from_env())
    await database.connect()
    engine = LedgerEngine(database, LedgerEngineConfig.from_env())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.scheduler.stop)
        except NotImplementedError:
            # Windows event loops
            logger.debug(f"Signal handler for {sig.name} not supported")

    try:
        await engine.start(run_scheduler=False)
        logger.info("Scanner running (Ctrl+C to stop)")
        await engine.scheduler.run_forever()
    finally:
        await engine.stop()
        await database.disconnect()


def serve_api(host: str, port: int) -> None:
    import uvicorn

    from api.main import create_app

    uvicorn.run(create_app(), host=host, port=port)


COMMANDS: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {
    "init-db": init_db,
    "scan-once": lambda: _with_engine(lambda engine: engine.scan()),
    "reconcile": lambda: _with_engine(lambda engine: engine.reconcile()),
    "cleanup": lambda: _with_engine(lambda engine: engine.cleanup()),
}


# ============================================================
# MAIN
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = create_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "serve-api":
        serve_api(args.host, args.port)
        return 0

    try:
        if args.command == "serve-scanner":
            asyncio.run(serve_scanner())
            return 0
        result = asyncio.run(COMMANDS[args.command]())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except TradingException as e:
        logger.error(f"{args.command} failed: {e.to_log_format()}")
        return 1

    print(json.dumps(result, indent=2))
    return 0 if result.get("success") else 1


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
