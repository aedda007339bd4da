"""
Tests for the connection registry.

Covers room membership, disconnect cleanup and idempotent removal, plus a
property-based check that base rooms survive any sequence of joins and
leaves.
"""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from realtime_gateway.components.auth.identity import Role, SubscriberIdentity
from realtime_gateway.components.connection.registry import (
    Connection,
    ConnectionRegistry,
    RoomKey,
    RoomKind,
)
from tests.conftest import FakeTransport


def make_connection(cid: str, identity_id: str = "u1", role: Role = Role.CUSTOMER) -> Connection:
    return Connection(
        connection_id=cid,
        identity=SubscriberIdentity(id=identity_id, role=role),
        transport=FakeTransport(),
    )


class TestRoomKey:
    """Room naming and parsing."""

    def test_string_forms(self):
        assert str(RoomKey.identity("42")) == "identity:42"
        assert str(RoomKey.role(Role.COURIER)) == "role:courier"
        assert str(RoomKey.order(7)) == "order:7"

    def test_parse_round_trip(self):
        for raw in ("identity:abc", "role:admin", "order:42"):
            assert str(RoomKey.parse(raw)) == raw

    @pytest.mark.parametrize("raw", ["order", "order:", "planet:earth", "role:chef", "order:abc"])
    def test_parse_rejects_malformed(self, raw):
        with pytest.raises(ValueError):
            RoomKey.parse(raw)

    def test_only_order_rooms_are_leavable(self):
        assert RoomKey.identity("1").is_base_room
        assert RoomKey.role("admin").is_base_room
        assert not RoomKey.order(1).is_base_room


class TestRegistryMembership:
    """Joining, leaving and reading rooms."""

    @pytest.mark.asyncio
    async def test_add_joins_identity_and_role_rooms(self):
        registry = ConnectionRegistry()
        conn = make_connection("c-1", "u1", Role.COURIER)
        await registry.add(conn)

        assert conn in await registry.members_of(RoomKey.identity("u1"))
        assert conn in await registry.members_of(RoomKey.role(Role.COURIER))
        assert conn.joined_rooms == {RoomKey.identity("u1"), RoomKey.role(Role.COURIER)}

    @pytest.mark.asyncio
    async def test_add_duplicate_id_raises(self):
        registry = ConnectionRegistry()
        await registry.add(make_connection("c-1"))
        with pytest.raises(ValueError):
            await registry.add(make_connection("c-1"))

    @pytest.mark.asyncio
    async def test_join_and_leave_order_room(self):
        registry = ConnectionRegistry()
        conn = make_connection("c-1")
        await registry.add(conn)

        assert await registry.join("c-1", RoomKey.order(42)) is True
        assert await registry.join("c-1", RoomKey.order(42)) is False
        assert conn in await registry.members_of(RoomKey.order(42))

        assert await registry.leave("c-1", RoomKey.order(42)) is True
        assert await registry.leave("c-1", RoomKey.order(42)) is False
        assert await registry.members_of(RoomKey.order(42)) == frozenset()

    @pytest.mark.asyncio
    async def test_join_unknown_connection_raises(self):
        registry = ConnectionRegistry()
        with pytest.raises(KeyError):
            await registry.join("missing", RoomKey.order(1))

    @pytest.mark.asyncio
    async def test_leave_base_room_is_refused(self):
        registry = ConnectionRegistry()
        await registry.add(make_connection("c-1", "u1"))
        with pytest.raises(ValueError):
            await registry.leave("c-1", RoomKey.identity("u1"))

    @pytest.mark.asyncio
    async def test_empty_rooms_are_dropped(self):
        registry = ConnectionRegistry()
        await registry.add(make_connection("c-1"))
        await registry.join("c-1", RoomKey.order(5))
        await registry.leave("c-1", RoomKey.order(5))

        assert registry.get_stats()["order_rooms"] == 0

    @pytest.mark.asyncio
    async def test_members_of_returns_snapshot(self):
        registry = ConnectionRegistry()
        conn = make_connection("c-1")
        await registry.add(conn)
        snapshot = await registry.members_of(RoomKey.identity("u1"))

        await registry.remove_connection("c-1")

        assert conn in snapshot
        assert await registry.members_of(RoomKey.identity("u1")) == frozenset()

    @pytest.mark.asyncio
    async def test_members_of_any_is_a_union(self):
        registry = ConnectionRegistry()
        admin = make_connection("c-admin", "a1", Role.ADMIN)
        customer = make_connection("c-cust", "u1", Role.CUSTOMER)
        await registry.add(admin)
        await registry.add(customer)
        await registry.join("c-admin", RoomKey.order(42))
        await registry.join("c-cust", RoomKey.order(42))

        members = await registry.members_of_any([RoomKey.role(Role.ADMIN), RoomKey.order(42)])

        assert members == frozenset({admin, customer})

    @pytest.mark.asyncio
    async def test_multi_device_identity(self):
        registry = ConnectionRegistry()
        await registry.add(make_connection("phone", "u9"))
        await registry.add(make_connection("tablet", "u9"))

        assert await registry.count_for("u9") == 2
        ids = {c.connection_id for c in await registry.connections_for("u9")}
        assert ids == {"phone", "tablet"}


class TestRegistryRemoval:
    """Disconnect cleanup."""

    @pytest.mark.asyncio
    async def test_remove_clears_every_joined_room(self):
        registry = ConnectionRegistry()
        conn = make_connection("c-1", "u1", Role.COURIER)
        await registry.add(conn)
        await registry.join("c-1", RoomKey.order(1))
        await registry.join("c-1", RoomKey.order(2))
        rooms = conn.joined_rooms

        removed = await registry.remove_connection("c-1")

        assert removed is conn
        for room in rooms:
            assert conn not in await registry.members_of(room)
        assert await registry.get("c-1") is None
        assert await registry.count_for("u1") == 0

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self):
        registry = ConnectionRegistry()
        await registry.add(make_connection("c-1"))
        await registry.add(make_connection("c-2", "u2"))
        await registry.join("c-1", RoomKey.order(3))

        await registry.remove_connection("c-1")
        stats_once = registry.get_stats()
        second = await registry.remove_connection("c-1")

        assert second is None
        assert registry.get_stats() == stats_once

    @pytest.mark.asyncio
    async def test_concurrent_removal_frees_once(self):
        registry = ConnectionRegistry()
        await registry.add(make_connection("c-1"))

        results = await asyncio.gather(*[registry.remove_connection("c-1") for _ in range(5)])

        assert sum(1 for r in results if r is not None) == 1
        assert registry.total_connections == 0


class TestRegistryProperties:
    """Property-based checks over random operation sequences."""

    @given(
        operations=st.lists(
            st.tuples(
                st.sampled_from(["join", "leave", "remove"]),
                st.integers(min_value=0, max_value=3),
                st.integers(min_value=1, max_value=4),
            ),
            max_size=40,
        )
    )
    @settings(max_examples=75, deadline=None)
    def test_base_rooms_and_indexes_stay_consistent(self, operations):
        """Property: live connections keep their base rooms; removed ones appear in no room."""

        async def scenario():
            registry = ConnectionRegistry()
            connections = [
                make_connection(f"c-{i}", f"u{i % 2}", Role.COURIER if i % 2 else Role.CUSTOMER)
                for i in range(4)
            ]
            for conn in connections:
                await registry.add(conn)
            removed: set[str] = set()

            for op, index, order_id in operations:
                conn = connections[index]
                if op == "join" and conn.connection_id not in removed:
                    await registry.join(conn.connection_id, RoomKey.order(order_id))
                elif op == "leave":
                    await registry.leave(conn.connection_id, RoomKey.order(order_id))
                elif op == "remove":
                    await registry.remove_connection(conn.connection_id)
                    removed.add(conn.connection_id)

            for conn in connections:
                if conn.connection_id in removed:
                    assert conn.joined_rooms == frozenset()
                    for order_id in range(1, 5):
                        assert conn not in await registry.members_of(RoomKey.order(order_id))
                    assert conn not in await registry.members_of(RoomKey.identity(conn.identity.id))
                else:
                    assert conn.base_rooms <= conn.joined_rooms
                    for room in conn.joined_rooms:
                        assert conn in await registry.members_of(room)

            order_rooms = {
                room for conn in connections for room in conn.joined_rooms
                if room.kind is RoomKind.ORDER
            }
            assert registry.get_stats()["order_rooms"] == len(order_rooms)
            assert registry.total_connections == len(connections) - len(removed)

        asyncio.run(scenario())
