"""
Keyed mutation locks.

Every endpoint that rewrites a collection holds the lock for each collection
it touches, so the read-modify-write cycle of one request cannot interleave
with another's. Keys are acquired in sorted order, which rules out deadlock
between requests that share more than one key.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from typing import List, Optional, Set

import structlog

from ..config import settings
from ..errors import LockTimeoutError


logger = structlog.get_logger(__name__)


class KeyedLock:
    def __init__(self, timeout: Optional[float] = None, poll_interval: Optional[float] = None) -> None:
        self._held: Set[str] = set()
        self.timeout = settings.lock_timeout_seconds if timeout is None else timeout
        self.poll_interval = settings.lock_poll_seconds if poll_interval is None else poll_interval

    def is_held(self, key: str) -> bool:
        return key in self._held

    async def acquire(self, key: str) -> None:
        deadline = time.monotonic() + self.timeout
        while key in self._held:
            if time.monotonic() >= deadline:
                logger.warning("lock_timeout", key=key, timeout=self.timeout)
                raise LockTimeoutError(f"Could not acquire lock for {key}, please try again")
            await asyncio.sleep(self.poll_interval)
        self._held.add(key)

    def release(self, key: str) -> None:
        self._held.discard(key)

    @asynccontextmanager
    async def hold(self, *keys: str):
        ordered = sorted(set(keys))
        taken: List[str] = []
        try:
            for key in ordered:
                await self.acquire(key)
                taken.append(key)
            yield
        finally:
            for key in reversed(taken):
                self.release(key)


locks = KeyedLock()


def locked(*keys: str):
    """``async with locked(PILOTS, LEDGER): ...`` on the process-wide lock table."""
    return locks.hold(*keys)
