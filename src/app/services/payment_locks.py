"""
Per-payment locks

Deliveries for different payments run in parallel; deliveries for the same
vendor transaction are serialised from the replay check to the final write.
Locks are reference counted and dropped once nobody holds or waits on them.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple

logger = logging.getLogger(__name__)

LockKey = Tuple[str, str]


class PaymentLockManager:
    def __init__(self):
        self._locks: Dict[LockKey, asyncio.Lock] = {}
        self._refcounts: Dict[LockKey, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def _acquire_entry(self, key: LockKey) -> asyncio.Lock:
        # no await between lookup and increment, so this is atomic on the event loop
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refcounts[key] = self._refcounts.get(key, 0) + 1
        return lock

    def _release_entry(self, key: LockKey) -> None:
        remaining = self._refcounts.get(key, 1) - 1
        if remaining <= 0:
            self._refcounts.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._refcounts[key] = remaining

    @asynccontextmanager
    async def hold(self, vendor: str, transaction_id: str) -> AsyncIterator[None]:
        key = (vendor, transaction_id)
        lock = self._acquire_entry(key)
        try:
            if lock.locked():
                logger.info("[WEBHOOK] waiting for in-flight delivery on %s/%s", vendor, transaction_id)
            async with lock:
                yield
        finally:
            self._release_entry(key)
