"""
Connection Registry - the live index of connections and room membership.

Indices maintained:
- connections: connection_id -> Connection
- rooms: RoomKey -> set[Connection]
- by_identity: identity id -> set[connection_id]

Reverse mapping for O(rooms joined) disconnect:
- Connection._joined_rooms (owned and mutated only by this class)

Every mutation and every read runs under one asyncio.Lock, so a reader
never observes a half-applied join/leave/remove and a connection can never
be freed twice. Reads return snapshot copies; callers cannot mutate the
index through them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from shared.config.logging import get_logger
from realtime_gateway.components.auth.identity import Role, SubscriberIdentity

logger = get_logger(__name__)


# =============================================================================
# Room keys
# =============================================================================


class RoomKind(str, Enum):
    IDENTITY = "identity"
    ROLE = "role"
    ORDER = "order"


@dataclass(frozen=True, slots=True)
class RoomKey:
    """
    A room name: `identity:<id>`, `role:<role>` or `order:<orderId>`.

    Rooms have no existence of their own; a room with no members is simply
    absent from the index.
    """

    kind: RoomKind
    value: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"

    @classmethod
    def identity(cls, identity_id: str) -> "RoomKey":
        return cls(RoomKind.IDENTITY, str(identity_id))

    @classmethod
    def role(cls, role: Role | str) -> "RoomKey":
        return cls(RoomKind.ROLE, Role(role).value)

    @classmethod
    def order(cls, order_id: int) -> "RoomKey":
        return cls(RoomKind.ORDER, str(int(order_id)))

    @classmethod
    def parse(cls, raw: str) -> "RoomKey":
        """Parse `kind:value`. Raises ValueError on unknown kinds or empty values."""
        kind, sep, value = raw.partition(":")
        if not sep or not value:
            raise ValueError(f"Malformed room key: {raw!r}")
        room_kind = RoomKind(kind)
        if room_kind is RoomKind.ROLE:
            return cls.role(value)
        if room_kind is RoomKind.ORDER:
            return cls.order(int(value))
        return cls.identity(value)

    @property
    def is_base_room(self) -> bool:
        """Identity and role rooms are fixed for a connection's lifetime."""
        return self.kind is not RoomKind.ORDER


# =============================================================================
# Connections
# =============================================================================


class ConnectionState(str, Enum):
    PENDING_AUTH = "pending_auth"
    ADMITTED = "admitted"
    CLOSED = "closed"


class ConnectionTransport(Protocol):
    """What the gateway needs from a transport (Starlette's WebSocket fits)."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass(eq=False)
class Connection:
    """
    One admitted client connection.

    Hashes by identity so it can live in room sets. `joined_rooms` is a
    read-only snapshot; membership changes go through the registry.
    """

    connection_id: str
    identity: SubscriberIdentity
    transport: ConnectionTransport
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: ConnectionState = ConnectionState.ADMITTED
    _joined_rooms: set[RoomKey] = field(default_factory=set, repr=False)

    @property
    def joined_rooms(self) -> frozenset[RoomKey]:
        return frozenset(self._joined_rooms)

    @property
    def base_rooms(self) -> frozenset[RoomKey]:
        return frozenset({RoomKey.identity(self.identity.id), RoomKey.role(self.identity.role)})

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.ADMITTED


# =============================================================================
# Registry
# =============================================================================


class ConnectionRegistry:
    """
    Holds live connections and their room membership.

    Only the Connection Gateway mutates the registry; everything else reads
    through members_of / connections_for.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[RoomKey, set[Connection]] = {}
        self._by_identity: dict[str, set[str]] = {}

    # =========================================================================
    # Mutations
    # =========================================================================

    async def add(self, connection: Connection) -> None:
        """
        Register a connection and join its identity and role rooms atomically.

        Raises:
            ValueError: If the connection id is already registered.
        """
        async with self._lock:
            if connection.connection_id in self._connections:
                raise ValueError(f"Connection {connection.connection_id} already registered")

            self._connections[connection.connection_id] = connection
            self._by_identity.setdefault(connection.identity.id, set()).add(
                connection.connection_id
            )
            for room in connection.base_rooms:
                self._join_locked(connection, room)

        logger.debug(
            "Connection registered",
            connection_id=connection.connection_id,
            role=connection.identity.role.value,
        )

    async def join(self, connection_id: str, room: RoomKey) -> bool:
        """
        Add a connection to a room.

        Returns:
            True if newly joined, False if already a member.

        Raises:
            KeyError: If the connection is not registered.
        """
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise KeyError(connection_id)
            return self._join_locked(connection, room)

    async def leave(self, connection_id: str, room: RoomKey) -> bool:
        """
        Remove a connection from a room.

        Returns:
            True if it was a member, False otherwise (unknown ids included).

        Raises:
            ValueError: For identity/role rooms, which are left only on removal.
        """
        if room.is_base_room:
            raise ValueError(f"Cannot leave base room {room}")

        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return False
            return self._leave_locked(connection, room)

    async def remove_connection(self, connection_id: str) -> Connection | None:
        """
        Remove a connection from every room it joined.

        Idempotent: a second call for the same id is a no-op returning None.
        """
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return None

            for room in list(connection._joined_rooms):
                self._leave_locked(connection, room)

            identity_connections = self._by_identity.get(connection.identity.id)
            if identity_connections is not None:
                identity_connections.discard(connection_id)
                if not identity_connections:
                    del self._by_identity[connection.identity.id]

        logger.debug(
            "Connection removed",
            connection_id=connection_id,
            role=connection.identity.role.value,
        )
        return connection

    # =========================================================================
    # Reads
    # =========================================================================

    async def members_of(self, room: RoomKey) -> frozenset[Connection]:
        """Current members of a room (snapshot copy)."""
        async with self._lock:
            return frozenset(self._rooms.get(room, ()))

    async def members_of_any(self, rooms: list[RoomKey]) -> frozenset[Connection]:
        """Union of several rooms' members, resolved in one critical section."""
        async with self._lock:
            members: set[Connection] = set()
            for room in rooms:
                members.update(self._rooms.get(room, ()))
            return frozenset(members)

    async def get(self, connection_id: str) -> Connection | None:
        async with self._lock:
            return self._connections.get(connection_id)

    async def connections_for(self, identity_id: str) -> frozenset[Connection]:
        """All live connections of an identity (multi-device)."""
        async with self._lock:
            return frozenset(
                self._connections[cid] for cid in self._by_identity.get(str(identity_id), ())
            )

    async def count_for(self, identity_id: str) -> int:
        async with self._lock:
            return len(self._by_identity.get(str(identity_id), ()))

    async def all_connections(self) -> list[Connection]:
        async with self._lock:
            return list(self._connections.values())

    @property
    def total_connections(self) -> int:
        return len(self._connections)

    def get_stats(self) -> dict[str, int]:
        """Index statistics for monitoring."""
        order_rooms = sum(1 for room in self._rooms if room.kind is RoomKind.ORDER)
        return {
            "total_connections": len(self._connections),
            "unique_identities": len(self._by_identity),
            "rooms": len(self._rooms),
            "order_rooms": order_rooms,
            "couriers_online": len(self._rooms.get(RoomKey.role(Role.COURIER), ())),
            "admins_online": len(self._rooms.get(RoomKey.role(Role.ADMIN), ())),
        }

    # =========================================================================
    # Internals (caller holds the lock)
    # =========================================================================

    def _join_locked(self, connection: Connection, room: RoomKey) -> bool:
        members = self._rooms.setdefault(room, set())
        if connection in members:
            return False
        members.add(connection)
        connection._joined_rooms.add(room)
        return True

    def _leave_locked(self, connection: Connection, room: RoomKey) -> bool:
        members = self._rooms.get(room)
        if members is None or connection not in members:
            return False
        members.discard(connection)
        if not members:
            del self._rooms[room]
        connection._joined_rooms.discard(room)
        return True
