"""
Tests for the event broadcaster.

Tests verify:
- Delivery to the union of target rooms, once per connection
- Fan-out isolation when one member's send raises or hangs
- Failed connections are handed to the failure handler
- Broadcast metrics accuracy
"""

import asyncio

import pytest

from realtime_gateway.components.auth.identity import Role, SubscriberIdentity
from realtime_gateway.components.broadcast.broadcaster import EventBroadcaster
from realtime_gateway.components.connection.registry import (
    Connection,
    ConnectionRegistry,
    ConnectionState,
    RoomKey,
)
from realtime_gateway.components.core.constants import WSCloseCode
from realtime_gateway.components.events.types import DomainEvent, OrderStatus
from tests.conftest import FakeTransport, make_order


def status_event(order_id: int = 42) -> DomainEvent:
    return DomainEvent.order_status(
        order_id, OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS, make_order(order_id),
    )


class TestPublish:
    """Room targeting and de-duplication."""

    @pytest.mark.asyncio
    async def test_event_reaches_every_room_member(self, components):
        customer = await components.connect("customer-token")
        admin = await components.connect("admin-token")
        courier = await components.connect("courier-token")

        report = await components.broadcaster.publish(status_event())

        assert report.connections_reached == 2
        assert report.connections_failed == 0
        assert components.transport(customer).of_type("order:status")
        assert components.transport(admin).of_type("order:status")
        assert not components.transport(courier).of_type("order:status")

    @pytest.mark.asyncio
    async def test_member_of_several_rooms_gets_one_copy(self, components):
        admin = await components.connect("admin-token")
        await components.gateway.subscribe_to_order(admin.connection_id, 42)

        report = await components.broadcaster.publish(status_event())

        assert report.connections_reached == 1
        assert len(components.transport(admin).of_type("order:status")) == 1

    @pytest.mark.asyncio
    async def test_explicit_rooms_override_routing(self, components):
        courier = await components.connect("courier-token")

        report = await components.broadcaster.publish(status_event(), rooms=[RoomKey.identity("k1")])

        assert report.rooms_targeted == ["identity:k1"]
        assert report.connections_reached == 1
        assert components.transport(courier).of_type("order:status")

    @pytest.mark.asyncio
    async def test_empty_rooms_are_not_an_error(self, components):
        report = await components.broadcaster.publish(status_event())

        assert report.connections_reached == 0
        assert report.failures == []
        broadcasts = components.metrics.get_snapshot()["broadcasts"]
        assert broadcasts["total"] == 1
        assert broadcasts["empty"] == 1

    @pytest.mark.asyncio
    async def test_messages_keep_publish_order(self, components):
        customer = await components.connect("customer-token")

        for order_id in (42, 42, 42):
            await components.broadcaster.publish(status_event(order_id))
        await components.broadcaster.publish(DomainEvent.notification("c1", "t", "b"))

        assert components.transport(customer).types[-4:] == [
            "order:status", "order:status", "order:status", "notification",
        ]


class TestFanOutIsolation:
    """One bad connection never blocks the others."""

    @pytest.mark.asyncio
    async def test_raising_member_does_not_block_healthy_ones(self, components):
        healthy_admin = await components.connect("admin-token")
        customer = await components.connect("customer-token")
        broken = await components.connect("other-customer-token")
        await components.registry.join(broken.connection_id, RoomKey.order(42))
        components.transport(broken).fail = ConnectionError("socket reset")

        report = await components.broadcaster.publish(status_event())

        assert report.connections_reached == 2
        assert [f.connection_id for f in report.failures] == [broken.connection_id]
        assert components.transport(healthy_admin).of_type("order:status")
        assert components.transport(customer).of_type("order:status")
        await components.broadcaster.wait_for_teardowns()

    @pytest.mark.asyncio
    async def test_failed_connection_is_torn_down(self, components):
        customer = await components.connect("customer-token")
        components.transport(customer).fail = ConnectionError("gone")

        await components.broadcaster.publish(status_event())
        await components.broadcaster.wait_for_teardowns()

        assert await components.registry.get(customer.connection_id) is None
        assert components.transport(customer).closed == [(WSCloseCode.DELIVERY_FAILED, "Delivery failed")]

    @pytest.mark.asyncio
    async def test_hanging_member_times_out(self, components):
        admin = await components.connect("admin-token")
        customer = await components.connect("customer-token")
        components.transport(customer).hang = True

        report = await asyncio.wait_for(components.broadcaster.publish(status_event()), timeout=2.0)

        assert report.connections_reached == 1
        assert "timed out" in report.failures[0].reason
        assert components.transport(admin).of_type("order:status")
        await components.broadcaster.wait_for_teardowns()

    @pytest.mark.asyncio
    async def test_closed_connection_counts_as_failure_without_write(self):
        registry = ConnectionRegistry()
        broadcaster = EventBroadcaster(registry, send_timeout=0.1)
        transport = FakeTransport()

        conn = Connection("c-1", SubscriberIdentity("c1", Role.CUSTOMER), transport)
        await registry.add(conn)
        conn.state = ConnectionState.CLOSED

        report = await broadcaster.publish(status_event())

        assert report.connections_failed == 1
        assert transport.sent == []
        assert broadcaster.pending_teardowns == 0

    @pytest.mark.asyncio
    async def test_metrics_count_reached_and_failed(self, components):
        await components.connect("admin-token")
        customer = await components.connect("customer-token")
        components.transport(customer).fail = RuntimeError("boom")

        await components.broadcaster.publish(status_event())
        await components.broadcaster.wait_for_teardowns()

        broadcasts = components.metrics.get_snapshot()["broadcasts"]
        assert broadcasts["recipients_reached"] == 1
        assert broadcasts["recipients_failed"] == 1

    @pytest.mark.asyncio
    async def test_concurrency_cap_still_reaches_every_member(self):
        registry = ConnectionRegistry()
        broadcaster = EventBroadcaster(registry, send_timeout=0.5, max_concurrent_sends=3)

        transports = []
        for i in range(10):
            transport = FakeTransport()
            transports.append(transport)
            await registry.add(Connection(f"c-{i:02d}", SubscriberIdentity(f"a{i}", Role.ADMIN), transport))

        report = await broadcaster.publish(DomainEvent.announcement("t", "m", "info"))

        assert report.connections_reached == 10
        assert all(len(t.sent) == 1 for t in transports)


class TestStuckMember:
    """A member whose write never completes does not hold back the rest."""

    @staticmethod
    async def _admins(registry: ConnectionRegistry, count: int) -> list[FakeTransport]:
        transports = []
        for i in range(count):
            transport = FakeTransport()
            transports.append(transport)
            await registry.add(Connection(f"c-{i:03d}", SubscriberIdentity(f"a{i}", Role.ADMIN), transport))
        return transports

    @pytest.mark.asyncio
    async def test_healthy_members_are_written_before_the_timeout(self):
        registry = ConnectionRegistry()
        broadcaster = EventBroadcaster(registry, send_timeout=1.0)
        transports = await self._admins(registry, 61)
        # c-000 sorts first
        transports[0].hang = True

        publish = asyncio.create_task(broadcaster.publish(DomainEvent.announcement("t", "m", "info")))
        await asyncio.sleep(0.2)

        assert not publish.done()
        assert all(len(t.sent) == 1 for t in transports[1:])

        report = await publish
        assert report.connections_reached == 60
        assert report.connections_failed == 1

    @pytest.mark.asyncio
    async def test_capped_slot_is_handed_on(self):
        registry = ConnectionRegistry()
        broadcaster = EventBroadcaster(registry, send_timeout=1.0, max_concurrent_sends=10)
        transports = await self._admins(registry, 61)
        transports[0].hang = True

        publish = asyncio.create_task(broadcaster.publish(DomainEvent.announcement("t", "m", "info")))
        await asyncio.sleep(0.2)

        assert all(len(t.sent) == 1 for t in transports[1:])
        await publish
