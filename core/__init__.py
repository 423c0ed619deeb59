"""
Core Module Package.

Shared infrastructure for the ledger engine:
- clock: UTC time source, swappable in tests
- exceptions: TradingException hierarchy with machine codes
"""

from .clock import ClockProtocol, MockClock, SystemClock, get_clock, now_utc, resolve_clock, set_clock
from .exceptions import (
    TradingException,
    Severity,
    ErrorClassification,
    LedgerEngineError,
    OrderError,
)
