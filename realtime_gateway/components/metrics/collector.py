"""
Metrics Collector.

Centralizes counters for observability. Counter updates take a
threading.Lock so they can be called from sync hot paths as well as from
coroutines, and read from the metrics endpoint at any time.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class ConnectionMetrics:
    admitted: int = 0
    closed: int = 0
    rejected_auth: int = 0
    rejected_limit: int = 0
    rejected_rate_limit: int = 0
    heartbeat_timeouts: int = 0


@dataclass
class BroadcastMetrics:
    total: int = 0
    recipients_reached: int = 0
    recipients_failed: int = 0
    empty: int = 0  # Published to rooms with no live members


@dataclass
class PushMetrics:
    sent: int = 0
    failed: int = 0
    no_device: int = 0
    no_template: int = 0


@dataclass
class DomainMetrics:
    transitions_accepted: int = 0
    transitions_rejected: int = 0
    locations_accepted: int = 0
    locations_dropped: int = 0
    subscriptions_granted: int = 0
    subscriptions_denied: int = 0
    order_rooms_released: int = 0
    messages_received: int = 0
    messages_invalid: int = 0


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Usage:
        metrics = MetricsCollector()
        metrics.record_broadcast(reached=3, failed=0)
        stats = metrics.get_snapshot()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connection = ConnectionMetrics()
        self._broadcast = BroadcastMetrics()
        self._push = PushMetrics()
        self._domain = DomainMetrics()

    # ==========================================================================
    # Connections
    # ==========================================================================

    def increment_connection(self, field_name: str) -> None:
        """Increment a ConnectionMetrics counter by name."""
        with self._lock:
            setattr(self._connection, field_name, getattr(self._connection, field_name) + 1)

    # ==========================================================================
    # Broadcasts
    # ==========================================================================

    def record_broadcast(self, reached: int, failed: int) -> None:
        with self._lock:
            self._broadcast.total += 1
            self._broadcast.recipients_reached += reached
            self._broadcast.recipients_failed += failed
            if reached == 0 and failed == 0:
                self._broadcast.empty += 1

    # ==========================================================================
    # Push notifications
    # ==========================================================================

    def increment_push(self, field_name: str) -> None:
        """Increment a PushMetrics counter by name."""
        with self._lock:
            setattr(self._push, field_name, getattr(self._push, field_name) + 1)

    # ==========================================================================
    # Domain
    # ==========================================================================

    def increment_domain(self, field_name: str, count: int = 1) -> None:
        """Increment a DomainMetrics counter by name."""
        with self._lock:
            setattr(self._domain, field_name, getattr(self._domain, field_name) + count)

    # ==========================================================================
    # Snapshot
    # ==========================================================================

    def get_snapshot(self) -> dict[str, Any]:
        """Point-in-time copy of all counters, grouped by category."""
        with self._lock:
            return {
                "connections": asdict(self._connection),
                "broadcasts": asdict(self._broadcast),
                "push": asdict(self._push),
                "domain": asdict(self._domain),
            }

    def reset(self) -> dict[str, Any]:
        """Reset all counters, returning the values they had."""
        with self._lock:
            snapshot = {
                "connections": asdict(self._connection),
                "broadcasts": asdict(self._broadcast),
                "push": asdict(self._push),
                "domain": asdict(self._domain),
            }
            self._connection = ConnectionMetrics()
            self._broadcast = BroadcastMetrics()
            self._push = PushMetrics()
            self._domain = DomainMetrics()
        return snapshot
