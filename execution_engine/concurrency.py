"""
Execution Engine - Concurrency Guards.

============================================================
PURPOSE
============================================================
In-process guards for ledger mutations.

- KeyedLockRegistry: serialises mutations per (user, coin) so a
  market fill and a limit fill for the same position cannot
  interleave their read-modify-write
- SingleFlight: at most one run of an operation at a time;
  concurrent callers await the run already in flight

The store-side guards (conditional status updates, row locks)
still apply across processes; these guards cover one process.

============================================================
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================
# KEYED LOCKS
# ============================================================

class KeyedLockRegistry:
    """asyncio locks created on demand per key, dropped when idle."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._holders: Dict[Hashable, int] = {}

    def _acquire_ref(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._holders[key] = self._holders.get(key, 0) + 1
        return lock

    def _release_ref(self, key: Hashable) -> None:
        remaining = self._holders.get(key, 1) - 1
        if remaining <= 0:
            self._holders.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._holders[key] = remaining

    @asynccontextmanager
    async def hold(self, *keys: Hashable) -> AsyncIterator[None]:
        """
        Hold the locks for all ``keys``.

        Keys are acquired in sorted order so two callers asking for
        overlapping key sets cannot deadlock.
        """
        ordered = sorted(set(keys), key=repr)
        acquired = []
        try:
            for key in ordered:
                lock = self._acquire_ref(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._release_ref(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._release_ref(key)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


def position_key(user_id: str, coin_id: str) -> tuple:
    return ("position", user_id, coin_id)


def balance_key(user_id: str) -> tuple:
    return ("balance", user_id)


# ============================================================
# SINGLE FLIGHT
# ============================================================

class SingleFlight(Generic[T]):
    """
    Runs at most one instance of an operation at a time.

    The first caller starts the run; callers arriving while it is in
    flight share its result (or its exception). The slot is released
    when the run finishes, successfully or not.
    """

    def __init__(self, name: str):
        self._name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        task = self._task
        if task is None or task.done():
            task = asyncio.ensure_future(operation())
            self._task = task
            task.add_done_callback(self._release)
        else:
            logger.info(f"{self._name} already in progress, joining the running pass")
        # shield: a cancelled caller must not cancel the shared run
        return await asyncio.shield(task)

    def _release(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"{self._name} failed: {task.exception()}")
