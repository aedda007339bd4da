"""
Pytest configuration and fixtures for the realtime gateway tests.

Components are wired the same way create_app() wires them, with test
doubles for the token verifier (NullAuthStrategy), the push provider
(MockPushProvider) and the order service (InMemoryOrderRepository).
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest
from fastapi.testclient import TestClient

from shared.config.settings import Settings
from shared.security.rate_limit import limiter
from realtime_gateway.components.auth.identity import Permission, Role, SubscriberIdentity
from realtime_gateway.components.auth.strategies import NullAuthStrategy
from realtime_gateway.components.broadcast.broadcaster import EventBroadcaster
from realtime_gateway.components.connection.registry import Connection, ConnectionRegistry
from realtime_gateway.components.core.context import Handshake
from realtime_gateway.components.endpoints.gateway import ConnectionGateway
from realtime_gateway.components.events.types import Order, OrderStatus
from realtime_gateway.components.location.broadcast import LocationBroadcast
from realtime_gateway.components.metrics.collector import MetricsCollector
from realtime_gateway.components.notifications.dispatcher import NotificationDispatcher
from realtime_gateway.components.notifications.providers import MockPushProvider
from realtime_gateway.components.orders.repository import InMemoryOrderRepository
from realtime_gateway.main import create_app
from realtime_gateway.orchestrator import RealtimeOrchestrator


# =============================================================================
# Transport double
# =============================================================================


class FakeTransport:
    """
    Records frames written to a connection.

    fail: exception raised by every send_json call.
    hang: send_json never completes (exercises the send timeout).
    """

    def __init__(self, fail: Exception | None = None, hang: bool = False):
        self.sent: list[dict[str, Any]] = []
        self.closed: list[tuple[int, str | None]] = []
        self.fail = fail
        self.hang = hang

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.fail is not None:
            raise self.fail
        if self.hang:
            await asyncio.Event().wait()
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed.append((code, reason))

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == message_type]

    @property
    def types(self) -> list[str]:
        return [m.get("type") for m in self.sent]


# =============================================================================
# Identities and orders
# =============================================================================

CUSTOMER = SubscriberIdentity(id="c1", role=Role.CUSTOMER)
OTHER_CUSTOMER = SubscriberIdentity(id="c2", role=Role.CUSTOMER)
COURIER = SubscriberIdentity(id="k1", role=Role.COURIER)
OTHER_COURIER = SubscriberIdentity(id="k2", role=Role.COURIER)
ADMIN = SubscriberIdentity(id="a1", role=Role.ADMIN)
RESTAURANT = SubscriberIdentity(id="r1", role=Role.RESTAURANT, restaurant_slug="pizza-place")
ORDER_SERVICE = SubscriberIdentity(
    id="svc-orders",
    role=Role.RESTAURANT,
    permissions=frozenset({Permission.PUBLISH_EVENTS}),
)

TOKENS: dict[str, SubscriberIdentity] = {
    "customer-token": CUSTOMER,
    "other-customer-token": OTHER_CUSTOMER,
    "courier-token": COURIER,
    "other-courier-token": OTHER_COURIER,
    "admin-token": ADMIN,
    "restaurant-token": RESTAURANT,
    "service-token": ORDER_SERVICE,
}


def make_order(
    order_id: int = 42,
    status: OrderStatus = OrderStatus.RECEIVED,
    customer_id: str = "c1",
    courier_id: str | None = None,
) -> Order:
    return Order(
        id=order_id,
        status=status,
        customer_id=customer_id,
        courier_id=courier_id,
        restaurant_slug="pizza-place",
        details={"total": 2590},
    )


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Component wiring
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings tuned for fast, deterministic tests."""
    return Settings(
        environment="test",
        debug=False,
        ws_send_timeout=0.2,
        ws_receive_timeout=5.0,
        ws_max_connections_per_identity=3,
        ws_max_total_connections=20,
        ws_message_rate_limit=50,
        ws_message_rate_window=1,
        ws_heartbeat_timeout=60,
        order_room_release_grace_seconds=0.0,
        push_mode="mock",
        order_service_url="",
        redis_events_enabled=False,
        notification_history_size=5,
    )


@dataclass
class Components:
    settings: Settings
    metrics: MetricsCollector
    registry: ConnectionRegistry
    broadcaster: EventBroadcaster
    location: LocationBroadcast
    provider: MockPushProvider
    dispatcher: NotificationDispatcher
    auth: NullAuthStrategy
    orders: InMemoryOrderRepository
    gateway: ConnectionGateway
    orchestrator: RealtimeOrchestrator
    transports: dict[str, FakeTransport] = field(default_factory=dict)

    async def connect(self, token: str, transport: FakeTransport | None = None) -> Connection:
        """Admit a connection for `token` over a FakeTransport."""
        transport = transport or FakeTransport()
        connection = await self.gateway.admit(Handshake(endpoint="/ws", token=token), transport)
        self.transports[connection.connection_id] = transport
        return connection

    def transport(self, connection: Connection) -> FakeTransport:
        return self.transports[connection.connection_id]


@pytest.fixture
def components(test_settings) -> Components:
    metrics = MetricsCollector()
    registry = ConnectionRegistry()
    broadcaster = EventBroadcaster(registry, send_timeout=test_settings.ws_send_timeout, metrics=metrics)
    location = LocationBroadcast(broadcaster, metrics=metrics)
    provider = MockPushProvider()
    dispatcher = NotificationDispatcher(
        provider,
        history_size=test_settings.notification_history_size,
        metrics=metrics,
    )
    auth = NullAuthStrategy(TOKENS)
    orders = InMemoryOrderRepository([make_order()])
    gateway = ConnectionGateway(
        registry, auth, broadcaster, location, orders,
        settings=test_settings, metrics=metrics,
    )
    broadcaster.set_failure_handler(gateway.close_failed_connection)
    orchestrator = RealtimeOrchestrator(
        gateway, broadcaster, location, dispatcher,
        orders=orders, settings=test_settings, metrics=metrics,
    )
    return Components(
        settings=test_settings,
        metrics=metrics,
        registry=registry,
        broadcaster=broadcaster,
        location=location,
        provider=provider,
        dispatcher=dispatcher,
        auth=auth,
        orders=orders,
        gateway=gateway,
        orchestrator=orchestrator,
    )


# =============================================================================
# Application
# =============================================================================


@pytest.fixture
def app(test_settings):
    """Application with test doubles for every collaborator."""
    return create_app(
        settings=test_settings,
        auth_strategy=NullAuthStrategy(TOKENS),
        push_provider=MockPushProvider(),
        order_repository=InMemoryOrderRepository([make_order()]),
    )


@pytest.fixture
def client(app):
    """Test client sharing one event loop across HTTP calls and WebSocket sessions."""
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
