"""
Core Module - Ledger Clock.

============================================================
RESPONSIBILITY
============================================================
Single source of "now" for ledger timestamps: order completion,
holding updates, balance updates and transactions.

- Always timezone-aware UTC
- Components take an optional clock; without one they read the
  process-wide default
- Tests inject a MockClock and move it by hand

============================================================
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional


class ClockProtocol(ABC):
    """Anything that can tell the current UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(ClockProtocol):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class MockClock(ClockProtocol):
    """Frozen clock, moved only by ``advance`` / ``set_time``."""

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = _as_utc(initial_time) if initial_time else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._time

    def set_time(self, new_time: datetime) -> None:
        self._time = _as_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        self._time += timedelta(seconds=seconds, **kwargs)


def _as_utc(value: datetime) -> datetime:
    # naive datetimes are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================
# PROCESS DEFAULT
# ============================================================

_default_clock: ClockProtocol = SystemClock()


def get_clock() -> ClockProtocol:
    return _default_clock


def set_clock(clock: ClockProtocol) -> None:
    global _default_clock
    _default_clock = clock


def resolve_clock(clock: Optional[ClockProtocol]) -> ClockProtocol:
    """``clock`` if given, else the process default."""
    return clock if clock is not None else _default_clock


@contextmanager
def use_mock_clock(initial_time: Optional[datetime] = None) -> Iterator[MockClock]:
    """Swap in a MockClock as the process default for the block."""
    previous = _default_clock
    mock = MockClock(initial_time)
    set_clock(mock)
    try:
        yield mock
    finally:
        set_clock(previous)


def now_utc() -> datetime:
    """Current time from the process default clock."""
    return _default_clock.now()


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "get_clock",
    "set_clock",
    "resolve_clock",
    "use_mock_clock",
    "now_utc",
]
