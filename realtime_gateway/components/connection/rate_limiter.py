"""
Inbound message rate limiting, one sliding window per connection.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict, deque

from shared.config.logging import get_logger
from realtime_gateway.components.core.constants import WSConstants

logger = get_logger(__name__)


class WebSocketRateLimiter:
    """
    Allows at most `max_messages` frames per `window_seconds` per connection.

    Windows live in an LRU-ordered map capped at `max_tracked`; when a new
    connection arrives at capacity the least recently active
    EVICTION_PERCENTAGE of windows are dropped.
    """

    def __init__(
        self,
        max_messages: int,
        window_seconds: float,
        max_tracked: int = WSConstants.MAX_TRACKED_CONNECTIONS,
    ):
        self._max_messages = max_messages
        self._window_seconds = window_seconds
        self._max_tracked = max_tracked

        self._windows: OrderedDict[str, deque[float]] = OrderedDict()
        self._lock = asyncio.Lock()
        self._at_capacity = False

        self._allowed = 0
        self._rejected = 0
        self._evictions = 0

    @property
    def max_messages(self) -> int:
        return self._max_messages

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @property
    def tracked_count(self) -> int:
        return len(self._windows)

    async def is_allowed(self, connection_id: str) -> bool:
        """Record one inbound frame. False means it must be rejected."""
        now = time.monotonic()
        cutoff = now - self._window_seconds

        async with self._lock:
            window = self._windows.get(connection_id)
            if window is None:
                if len(self._windows) >= self._max_tracked:
                    self._evict()
                window = self._windows[connection_id] = deque()
            else:
                self._windows.move_to_end(connection_id)

            while window and window[0] <= cutoff:
                window.popleft()

            if len(window) >= self._max_messages:
                self._rejected += 1
                return False

            window.append(now)
            self._allowed += 1
            return True

    def _evict(self) -> None:
        if not self._at_capacity:
            logger.warning(
                "Message rate limiter full, dropping least recently active windows",
                max_tracked=self._max_tracked,
            )
            self._at_capacity = True

        count = max(1, self._max_tracked * WSConstants.EVICTION_PERCENTAGE // 100)
        for _ in range(min(count, len(self._windows))):
            self._windows.popitem(last=False)
            self._evictions += 1

    async def remove_connection(self, connection_id: str) -> None:
        async with self._lock:
            self._windows.pop(connection_id, None)
            if len(self._windows) < self._max_tracked * 0.9:
                self._at_capacity = False

    def get_stats(self) -> dict[str, int | float]:
        return {
            "tracked_connections": len(self._windows),
            "max_tracked": self._max_tracked,
            "max_messages_per_window": self._max_messages,
            "window_seconds": self._window_seconds,
            "total_allowed": self._allowed,
            "total_rejected": self._rejected,
            "evictions": self._evictions,
        }
