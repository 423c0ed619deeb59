"""
Execution Engine - Scan Scheduler.

============================================================
PURPOSE
============================================================
Runs the Order Scanner on an interval.

BACKOFF:
- Failed cycle: interval *= multiplier, capped at the ceiling
- Successful cycle: interval back to baseline

A cycle fails when the scan raises, or when every order it
checked was skipped for lack of a price.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from core.exceptions import TradingException

from .config import SchedulerConfig
from .scanner import OrderScanner
from .types import ScanResult


logger = logging.getLogger(__name__)


@dataclass
class SchedulerState:
    """Backoff state, owned by the scheduler and never persisted."""

    interval: float
    consecutive_failures: int = 0
    cycles: int = 0


class ScanScheduler:
    """Periodic driver for ``OrderScanner.scan``."""

    def __init__(self, scanner: OrderScanner, config: Optional[SchedulerConfig] = None):
        self._scanner = scanner
        self._config = config or SchedulerConfig()
        self._state = SchedulerState(interval=self._config.base_interval_seconds)
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    def _record_success(self) -> None:
        if self._state.consecutive_failures:
            logger.info("Scanner recovered, interval reset to baseline")
        self._state.consecutive_failures = 0
        self._state.interval = self._config.base_interval_seconds

    def _record_failure(self) -> None:
        self._state.consecutive_failures += 1
        self._state.interval = min(
            self._state.interval * self._config.backoff_multiplier,
            self._config.max_interval_seconds,
        )
        logger.warning(
            f"Scan cycle failed ({self._state.consecutive_failures} in a row), "
            f"next run in {self._state.interval:.2f}s"
        )

    async def run_once(self) -> Optional[ScanResult]:
        """Run one cycle and update backoff. Returns None if the scan raised."""
        self._state.cycles += 1
        try:
            result = await self._scanner.scan()
        except TradingException as e:
            logger.error(f"Scan failed: {e.to_log_format()}")
            self._record_failure()
            return None

        if result.feed_starved:
            self._record_failure()
        else:
            self._record_success()
        return result

    async def run_forever(self) -> None:
        """Run until ``stop()`` is called."""
        self._running = True
        self._stop_event.clear()
        logger.info(f"Scan scheduler started (interval {self._state.interval}s)")
        try:
            while not self._stop_event.is_set():
                await self.run_once()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._state.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("Scan scheduler stopped")

    def stop(self) -> None:
        self._stop_event.set()
