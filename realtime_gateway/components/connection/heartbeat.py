"""
Liveness bookkeeping: when each connection was last heard from.
"""

from __future__ import annotations

import time


class HeartbeatTracker:
    """
    Last-activity timestamps keyed by connection id.

    The gateway records a connection on admission and on every inbound
    frame; the sweeper closes whatever get_stale_connections() returns.
    Only touched from the event loop.
    """

    def __init__(self, timeout_seconds: float = 60.0):
        self._timeout = timeout_seconds
        self._seen: dict[str, float] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def tracked_count(self) -> int:
        return len(self._seen)

    def record(self, connection_id: str, timestamp: float | None = None) -> None:
        self._seen[connection_id] = time.time() if timestamp is None else timestamp

    def remove(self, connection_id: str) -> None:
        self._seen.pop(connection_id, None)

    def get_last_activity(self, connection_id: str) -> float | None:
        return self._seen.get(connection_id)

    def _expired(self, seen_at: float, now: float) -> bool:
        return now - seen_at > self._timeout

    def is_stale(self, connection_id: str) -> bool:
        """Unknown connections count as stale."""
        seen_at = self._seen.get(connection_id)
        return seen_at is None or self._expired(seen_at, time.time())

    def get_stale_connections(self) -> list[str]:
        now = time.time()
        return [cid for cid, seen_at in self._seen.items() if self._expired(seen_at, now)]

    def get_stats(self) -> dict[str, float | int]:
        now = time.time()
        ages = sorted(now - seen_at for seen_at in self._seen.values())
        return {
            "tracked_connections": len(ages),
            "timeout_seconds": self._timeout,
            "oldest_heartbeat_age": ages[-1] if ages else 0,
            "average_heartbeat_age": sum(ages) / len(ages) if ages else 0,
        }
