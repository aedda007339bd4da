"""
Per-order lock manager.

Events for one order must be published in the order their transitions were
accepted. The orchestrator holds the order's lock from transition check
through broadcast and push, so concurrent callers for the same order are
serialized while different orders proceed independently.

The meta lock is non-reentrant: methods holding it must not call other
methods that acquire it.
"""

from __future__ import annotations

import asyncio

from shared.config.logging import get_logger
from realtime_gateway.components.core.constants import WSConstants

logger = get_logger(__name__)


class OrderLockManager:
    """
    Manages one asyncio.Lock per in-flight order.

    Locks are dropped when the order reaches a terminal status (release) and,
    as a safety net, unheld locks are swept when the cache grows past
    max_cached_locks.
    """

    def __init__(self, max_cached_locks: int = WSConstants.MAX_ORDER_LOCKS):
        self._max_cached_locks = max_cached_locks
        self._order_locks: dict[int, asyncio.Lock] = {}
        self._meta_lock = asyncio.Lock()
        self._locks_cleaned = 0

    @property
    def lock_count(self) -> int:
        return len(self._order_locks)

    @property
    def locks_cleaned_total(self) -> int:
        return self._locks_cleaned

    async def get_order_lock(self, order_id: int) -> asyncio.Lock:
        """Get or create the lock for an order."""
        async with self._meta_lock:
            lock = self._order_locks.get(order_id)
            if lock is not None:
                return lock

            if len(self._order_locks) >= self._max_cached_locks:
                self._cleanup_unheld_locks()

            lock = asyncio.Lock()
            self._order_locks[order_id] = lock
            return lock

    async def release(self, order_id: int) -> bool:
        """
        Drop an order's lock if nobody holds it.

        Returns:
            True if the lock was removed.
        """
        async with self._meta_lock:
            lock = self._order_locks.get(order_id)
            if lock is None or lock.locked():
                return False
            del self._order_locks[order_id]
            self._locks_cleaned += 1
            return True

    def _cleanup_unheld_locks(self) -> None:
        """Remove every unheld lock. Caller holds the meta lock."""
        unheld = [oid for oid, lock in self._order_locks.items() if not lock.locked()]
        for order_id in unheld:
            del self._order_locks[order_id]
        self._locks_cleaned += len(unheld)
        logger.info("Order locks swept", removed=len(unheld), remaining=len(self._order_locks))

    def get_stats(self) -> dict[str, int]:
        return {
            "order_locks": len(self._order_locks),
            "max_cached_locks": self._max_cached_locks,
            "locks_cleaned_total": self._locks_cleaned,
        }
