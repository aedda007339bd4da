"""
Connection Gateway.

Admits connections (token verification, connection limits, identity and
role rooms), grants and revokes order-room membership, and tears
connections down. It is the only component that mutates the
ConnectionRegistry.

Connection lifecycle:
    pending_auth -> admitted -> closed

A connection enters the registry only after its token verified and the
limits allowed it, so a rejected handshake leaves no state behind. close()
is idempotent and always runs the full cleanup, whatever triggered it
(client disconnect, receive timeout, heartbeat sweep, failed write,
shutdown).
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, TYPE_CHECKING

from shared.config.logging import get_logger, mask_user_id
from shared.config.settings import Settings, get_settings
from realtime_gateway.components.auth.identity import Permission, Role, SubscriberIdentity
from realtime_gateway.components.connection.heartbeat import HeartbeatTracker
from realtime_gateway.components.connection.rate_limiter import WebSocketRateLimiter
from realtime_gateway.components.connection.registry import (
    Connection,
    ConnectionState,
    ConnectionTransport,
    RoomKey,
)
from realtime_gateway.components.core.constants import MessageType, WSCloseCode
from realtime_gateway.components.core.errors import (
    AuthError,
    AuthorizationError,
    ConnectionLimitError,
    OrderNotFoundError,
)
from realtime_gateway.components.events.types import Order, isoformat, utcnow

if TYPE_CHECKING:
    from realtime_gateway.components.auth.strategies import AuthStrategy
    from realtime_gateway.components.broadcast.broadcaster import EventBroadcaster
    from realtime_gateway.components.connection.registry import ConnectionRegistry
    from realtime_gateway.components.core.context import Handshake
    from realtime_gateway.components.location.broadcast import LocationBroadcast
    from realtime_gateway.components.metrics.collector import MetricsCollector
    from realtime_gateway.components.orders.repository import OrderRepository

logger = get_logger(__name__)


def can_access_order(identity: SubscriberIdentity, order: Order) -> bool:
    """
    Whether an identity may follow an order's room.

    Customers see their own orders, couriers the orders assigned to them,
    restaurant staff the orders of their restaurant. Admins and holders of
    orders:read:any see everything.
    """
    if identity.has_permission(Permission.READ_ANY_ORDER):
        return True
    if identity.role is Role.CUSTOMER:
        return order.customer_id == identity.id
    if identity.role is Role.COURIER:
        return order.courier_id is not None and order.courier_id == identity.id
    if identity.role is Role.RESTAURANT:
        return identity.restaurant_slug is not None and order.restaurant_slug == identity.restaurant_slug
    return False


class ConnectionGateway:
    """
    Admission and teardown of client connections.

    Usage:
        gateway = ConnectionGateway(registry, JWTAuthStrategy(), broadcaster, location, repo)
        connection = await gateway.admit(Handshake.from_websocket(ws, "/ws"), ws)
        ...
        await gateway.close(connection.connection_id)
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        auth_strategy: "AuthStrategy",
        broadcaster: "EventBroadcaster",
        location: "LocationBroadcast",
        order_repository: "OrderRepository",
        settings: Settings | None = None,
        metrics: "MetricsCollector | None" = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._registry = registry
        self._auth = auth_strategy
        self._broadcaster = broadcaster
        self._location = location
        self._orders = order_repository
        self._metrics = metrics

        self._max_per_identity = self._settings.ws_max_connections_per_identity
        self._max_total = self._settings.ws_max_total_connections
        self._heartbeat = HeartbeatTracker(timeout_seconds=self._settings.ws_heartbeat_timeout)
        self._rate_limiter = WebSocketRateLimiter(
            max_messages=self._settings.ws_message_rate_limit,
            window_seconds=self._settings.ws_message_rate_window,
        )
        # Serializes the limit check with registration
        self._admission_lock = asyncio.Lock()

    @property
    def registry(self) -> "ConnectionRegistry":
        return self._registry

    @property
    def heartbeat(self) -> HeartbeatTracker:
        return self._heartbeat

    # =========================================================================
    # Admission
    # =========================================================================

    async def admit(self, handshake: "Handshake", transport: ConnectionTransport) -> Connection:
        """
        Verify a handshake and register the connection.

        Returns:
            The admitted Connection, already in its identity and role rooms.

        Raises:
            AuthError: Token missing or invalid, origin refused (close_code on
                the error says which). Never leaves registry state behind.
            ConnectionLimitError: Per-identity or global limit reached.
        """
        connection_id = uuid.uuid4().hex

        try:
            result = await self._auth.authenticate(handshake.token, origin=handshake.origin)
        except Exception as e:
            # Verifier failures of any kind fail closed
            logger.error("Token verifier raised", connection_id=connection_id, error=str(e))
            self._reject(handshake, "verifier_error")
            raise AuthError("Authentication failed", audit_reason="verifier_error") from e

        if not result.success or result.identity is None:
            self._reject(handshake, result.audit_reason or "auth_failed")
            raise AuthError(
                result.error_message or "Authentication failed",
                close_code=result.close_code,
                audit_reason=result.audit_reason,
            )

        identity = result.identity
        connection = Connection(
            connection_id=connection_id,
            identity=identity,
            transport=transport,
            state=ConnectionState.PENDING_AUTH,
        )

        async with self._admission_lock:
            if self._registry.total_connections >= self._max_total:
                self._reject(handshake, "server_full", user_id=identity.id, limit_reached=True)
                raise ConnectionLimitError(
                    "Server connection limit reached",
                    limit=self._max_total,
                )

            if await self._registry.count_for(identity.id) >= self._max_per_identity:
                self._reject(handshake, "identity_limit", user_id=identity.id, limit_reached=True)
                raise ConnectionLimitError(
                    f"Connection limit of {self._max_per_identity} per user reached",
                    limit=self._max_per_identity,
                )

            connection.state = ConnectionState.ADMITTED
            await self._registry.add(connection)

        self._heartbeat.record(connection_id)
        if self._metrics is not None:
            self._metrics.increment_connection("admitted")

        handshake.audit(
            "CONNECT",
            user_id=identity.id,
            role=identity.role.value,
            connection_id=connection_id,
        )
        logger.info(
            "Connection admitted",
            connection_id=connection_id,
            user_id=mask_user_id(identity.id),
            role=identity.role.value,
            total=self._registry.total_connections,
        )

        await self.send(connection, MessageType.CONNECTED, {
            "connectionId": connection_id,
            "userId": identity.id,
            "role": identity.role.value,
            "timestamp": isoformat(utcnow()),
        })
        return connection

    def _reject(
        self,
        handshake: "Handshake",
        reason: str,
        user_id: str | None = None,
        limit_reached: bool = False,
    ) -> None:
        if self._metrics is not None:
            self._metrics.increment_connection("rejected_limit" if limit_reached else "rejected_auth")
        handshake.audit("AUTH_FAILED", user_id=user_id, reason=reason)

    # =========================================================================
    # Teardown
    # =========================================================================

    async def close(
        self,
        connection_id: str,
        code: int = WSCloseCode.NORMAL,
        reason: str = "",
    ) -> bool:
        """
        Tear a connection down. Idempotent.

        Returns:
            True if this call performed the teardown, False if it was already done.
        """
        connection = await self._registry.remove_connection(connection_id)
        if connection is None:
            return False

        connection.state = ConnectionState.CLOSED
        self._heartbeat.remove(connection_id)
        await self._rate_limiter.remove_connection(connection_id)

        identity = connection.identity
        if identity.is_courier and await self._registry.count_for(identity.id) == 0:
            self._location.forget(identity.id)

        if self._metrics is not None:
            self._metrics.increment_connection("closed")

        logger.info(
            "Connection closed",
            connection_id=connection_id,
            user_id=mask_user_id(identity.id),
            code=int(code),
            reason=reason or None,
        )

        try:
            await connection.transport.close(code=int(code), reason=reason)
        except Exception as e:
            # Transport already gone (client disconnect)
            logger.debug("Transport close failed", connection_id=connection_id, error=str(e))
        return True

    async def close_failed_connection(self, connection_id: str, reason: str) -> bool:
        """Failure handler for the broadcaster: tear down after a failed write."""
        return await self.close(connection_id, WSCloseCode.DELIVERY_FAILED, "Delivery failed")

    async def close_all(self, code: int = WSCloseCode.GOING_AWAY, reason: str = "Server shutdown") -> int:
        """Close every live connection. Returns how many were closed."""
        closed = 0
        for connection in await self._registry.all_connections():
            if await self.close(connection.connection_id, code, reason):
                closed += 1
        return closed

    async def sweep_stale_connections(self) -> int:
        """Close connections that have been silent longer than the heartbeat timeout."""
        stale = self._heartbeat.get_stale_connections()
        closed = 0
        for connection_id in stale:
            if await self.close(connection_id, WSCloseCode.HEARTBEAT_TIMEOUT, "Heartbeat timeout"):
                closed += 1
                if self._metrics is not None:
                    self._metrics.increment_connection("heartbeat_timeouts")
        if closed:
            logger.info("Stale connections closed", count=closed)
        return closed

    # =========================================================================
    # Per-message hygiene
    # =========================================================================

    def record_activity(self, connection_id: str) -> None:
        self._heartbeat.record(connection_id)

    async def check_rate_limit(self, connection_id: str) -> bool:
        allowed = await self._rate_limiter.is_allowed(connection_id)
        if not allowed and self._metrics is not None:
            self._metrics.increment_connection("rejected_rate_limit")
        return allowed

    async def send(self, connection: Connection, message_type: str, data: dict[str, Any]) -> bool:
        """Send a direct (non-room) frame to one connection."""
        return await self._broadcaster.send_to_connection(
            connection, {"type": message_type, "data": data}
        )

    # =========================================================================
    # Order rooms
    # =========================================================================

    async def subscribe_to_order(self, connection_id: str, order_id: int) -> bool:
        """
        Join a connection to `order:<order_id>` after an authorization check.

        Returns:
            True if newly joined, False if already a member.

        Raises:
            AuthError: Unknown connection.
            OrderNotFoundError: Order unknown to the order service.
            AuthorizationError: Identity may not follow this order.
            OrderLookupError: Order service unavailable.
        """
        connection = await self._registry.get(connection_id)
        if connection is None:
            raise AuthError("Connection is not admitted", connection_id=connection_id)

        order = await self._orders.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)

        identity = connection.identity
        if not can_access_order(identity, order):
            if self._metrics is not None:
                self._metrics.increment_domain("subscriptions_denied")
            logger.warning(
                "Order subscription denied",
                connection_id=connection_id,
                user_id=mask_user_id(identity.id),
                role=identity.role.value,
                order_id=order_id,
            )
            raise AuthorizationError(
                f"Not allowed to follow order {order_id}",
                order_id=order_id,
            )

        try:
            joined = await self._registry.join(connection_id, RoomKey.order(order_id))
        except KeyError:
            # Closed while the order lookup was in flight
            raise AuthError("Connection is not admitted", connection_id=connection_id)

        if joined and self._metrics is not None:
            self._metrics.increment_domain("subscriptions_granted")
        logger.debug("Order subscribed", connection_id=connection_id, order_id=order_id)
        return joined

    async def unsubscribe_from_order(self, connection_id: str, order_id: int) -> bool:
        """Leave `order:<order_id>`. Returns True if the connection was a member."""
        left = await self._registry.leave(connection_id, RoomKey.order(order_id))
        logger.debug("Order unsubscribed", connection_id=connection_id, order_id=order_id, left=left)
        return left

    async def release_order_room(self, order_id: int) -> int:
        """
        Remove every member from `order:<order_id>`.

        Returns:
            Number of connections that left the room.
        """
        room = RoomKey.order(order_id)
        released = 0
        for connection in await self._registry.members_of(room):
            if await self._registry.leave(connection.connection_id, room):
                released += 1

        if self._metrics is not None:
            self._metrics.increment_domain("order_rooms_released")
        logger.info("Order room released", order_id=order_id, members=released)
        return released

    # =========================================================================
    # Stats
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._registry.get_stats(),
            "max_connections": self._max_total,
            "max_connections_per_identity": self._max_per_identity,
            "heartbeat": self._heartbeat.get_stats(),
            "rate_limiter": self._rate_limiter.get_stats(),
        }
