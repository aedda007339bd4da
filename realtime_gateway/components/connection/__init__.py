"""
Connection management: registry, heartbeat tracking, rate limiting, order locks.
"""

from realtime_gateway.components.connection.registry import (
    Connection,
    ConnectionRegistry,
    ConnectionState,
    ConnectionTransport,
    RoomKey,
    RoomKind,
)
from realtime_gateway.components.connection.heartbeat import HeartbeatTracker
from realtime_gateway.components.connection.rate_limiter import WebSocketRateLimiter
from realtime_gateway.components.connection.locks import OrderLockManager

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "ConnectionState",
    "ConnectionTransport",
    "HeartbeatTracker",
    "OrderLockManager",
    "RoomKey",
    "RoomKind",
    "WebSocketRateLimiter",
]
