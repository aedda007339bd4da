"""
Realtime Gateway Constants.

Centralized constants with the rationale for each value.
"""

from enum import IntEnum
from typing import Final, Protocol

from shared.config.logging import get_logger

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "MessageType",
    "CourierPresence",
    "AnnouncementSeverity",
    "MSG_PING_PLAIN",
    "DEFAULT_ALLOWED_ORIGINS",
    "validate_websocket_origin",
    "HasStats",
]

logger = get_logger(__name__)


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the gateway.

    Standard codes (1000-1999) from RFC 6455.
    Custom codes (4000-4999) for application-specific errors.
    """

    # Standard codes (RFC 6455)
    NORMAL = 1000  # Normal closure
    GOING_AWAY = 1001  # Server shutting down or client navigating away
    POLICY_VIOLATION = 1008  # Generic policy violation
    MESSAGE_TOO_BIG = 1009  # Message too large to process
    SERVER_ERROR = 1011  # Unexpected server error
    SERVER_OVERLOADED = 1013  # Server overloaded, try again later

    # Custom application codes (4000-4999)
    AUTH_FAILED = 4001  # Token missing, invalid or expired
    FORBIDDEN = 4003  # Valid auth but origin not allowed
    HEARTBEAT_TIMEOUT = 4008  # No ping within ws_heartbeat_timeout
    DELIVERY_FAILED = 4010  # A server write failed or timed out
    RATE_LIMITED = 4029  # Too many messages or too many connections


class WSConstants:
    """
    Operational constants.

    Values marked configurable are read from settings at runtime; these are
    the defaults used when no settings object is supplied.
    """

    # WS_SEND_TIMEOUT: 5 seconds (configurable: ws_send_timeout)
    # A healthy client drains a small JSON frame in milliseconds. A write
    # that has not finished after 5s belongs to a stuck consumer.
    WS_SEND_TIMEOUT: Final[float] = 5.0

    # WS_RECEIVE_TIMEOUT: 90 seconds (configurable: ws_receive_timeout)
    # Three times the client ping interval, so network jitter never
    # looks like a dead connection.
    WS_RECEIVE_TIMEOUT: Final[float] = 90.0

    # ORDER_ROOM_RELEASE_GRACE: 30 seconds (configurable)
    # Long enough for clients to receive and render the final status.
    ORDER_ROOM_RELEASE_GRACE: Final[float] = 30.0

    # NOTIFICATION_HISTORY_SIZE: 100 (configurable)
    NOTIFICATION_HISTORY_SIZE: Final[int] = 100

    # MAX_TRACKED_CONNECTIONS: 2000
    # Twice the default connection limit, leaving headroom for connections
    # being torn down. Bounds rate limiter memory.
    MAX_TRACKED_CONNECTIONS: Final[int] = 2000

    # EVICTION_PERCENTAGE: 10%
    EVICTION_PERCENTAGE: Final[int] = 10

    # HEARTBEAT_CLEANUP_INTERVAL: 30 seconds (configurable)
    HEARTBEAT_CLEANUP_INTERVAL: Final[float] = 30.0

    # MAX_ORDER_LOCKS: 5000
    # One lock per in-flight order; released on terminal status.
    MAX_ORDER_LOCKS: Final[int] = 5000


class MessageType:
    """Wire message names (the `type` field of every frame)."""

    # Client -> server
    LOCATION_REPORT: Final[str] = "location:report"
    ORDER_SUBSCRIBE: Final[str] = "order:subscribe"
    ORDER_UNSUBSCRIBE: Final[str] = "order:unsubscribe"
    STATUS_REPORT: Final[str] = "status:report"
    PING: Final[str] = "ping"

    # Server -> client (domain event names live in EventType)
    CONNECTED: Final[str] = "connected"
    PONG: Final[str] = "pong"
    ERROR: Final[str] = "error"
    ORDER_SUBSCRIBED: Final[str] = "order:subscribed"
    ORDER_UNSUBSCRIBED: Final[str] = "order:unsubscribed"


class CourierPresence:
    """Courier availability values accepted by status:report."""

    AVAILABLE: Final[str] = "available"
    BUSY: Final[str] = "busy"
    OFFLINE: Final[str] = "offline"

    ALL: Final[frozenset[str]] = frozenset({AVAILABLE, BUSY, OFFLINE})


class AnnouncementSeverity:
    INFO: Final[str] = "info"
    WARNING: Final[str] = "warning"
    CRITICAL: Final[str] = "critical"

    ALL: Final[frozenset[str]] = frozenset({INFO, WARNING, CRITICAL})


# Plain-text ping accepted alongside {"type": "ping"}
MSG_PING_PLAIN: Final[str] = "ping"


# Default development origins
DEFAULT_ALLOWED_ORIGINS: Final[tuple[str, ...]] = (
    "http://localhost:3000", "http://localhost:5173", "http://localhost:8080",
    "http://127.0.0.1:3000", "http://127.0.0.1:5173", "http://127.0.0.1:8080",
)


def validate_websocket_origin(origin: str | None, settings: object) -> bool:
    """
    Validate WebSocket origin header against allowed origins.

    Native mobile clients send no Origin header, so a missing origin is
    accepted. A present origin must be on the allow list.

    Args:
        origin: The Origin header value, or None if not present.
        settings: Settings object with an allowed_origins attribute.

    Returns:
        True if origin is allowed, False otherwise.
    """
    if not origin:
        return True

    allowed_origins_str = getattr(settings, "allowed_origins", None)
    if allowed_origins_str:
        allowed = [o.strip() for o in allowed_origins_str.split(",") if o.strip()]
    else:
        allowed = list(DEFAULT_ALLOWED_ORIGINS)

    if "*" in allowed or origin in allowed:
        return True

    logger.warning(
        "WebSocket connection rejected: origin not in allowed list",
        origin=origin,
        allowed_count=len(allowed),
    )
    return False


class HasStats(Protocol):
    """Protocol for components that provide statistics."""

    def get_stats(self) -> dict[str, int | float | str]:
        """Return component statistics as a dictionary."""
        ...
