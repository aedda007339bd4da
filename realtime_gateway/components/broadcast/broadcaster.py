"""
Event Broadcaster.

Fans a DomainEvent out to every live connection in its target rooms.

Delivery is best-effort and isolated per connection: each write is bounded
by a send timeout, a failing or slow connection never delays or prevents
delivery to the others, and failures are returned in the DeliveryReport
instead of being raised. Connections whose write failed are handed to the
failure handler (the gateway's close) in a background task.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from shared.config.logging import get_logger
from realtime_gateway.components.core.constants import WSConstants
from realtime_gateway.components.core.errors import DeliveryFailure
from realtime_gateway.components.events.routing import rooms_for

if TYPE_CHECKING:
    from realtime_gateway.components.connection.registry import (
        Connection,
        ConnectionRegistry,
        RoomKey,
    )
    from realtime_gateway.components.events.types import DomainEvent
    from realtime_gateway.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)

FailureHandler = Callable[[str, str], Awaitable[Any]]


@dataclass
class DeliveryReport:
    """Outcome of one publish() call."""

    event_type: str
    rooms_targeted: list[str]
    connections_reached: int = 0
    failures: list[DeliveryFailure] = field(default_factory=list)

    @property
    def connections_failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventType": self.event_type,
            "roomsTargeted": list(self.rooms_targeted),
            "connectionsReached": self.connections_reached,
            "connectionsFailed": self.connections_failed,
        }


class EventBroadcaster:
    """
    Publishes domain events to rooms through the ConnectionRegistry.

    Usage:
        broadcaster = EventBroadcaster(registry, send_timeout=5.0)
        broadcaster.set_failure_handler(gateway.close_failed_connection)
        report = await broadcaster.publish(event)
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        send_timeout: float = WSConstants.WS_SEND_TIMEOUT,
        metrics: "MetricsCollector | None" = None,
        max_concurrent_sends: int | None = None,
    ) -> None:
        """
        Args:
            registry: Source of room membership.
            send_timeout: Per-connection write timeout in seconds.
            metrics: Optional collector for broadcast counters.
            max_concurrent_sends: Cap on writes in flight at once. None means
                every member is written at the same time.
        """
        self._registry = registry
        self._send_timeout = send_timeout
        self._metrics = metrics
        self._send_slots = (
            asyncio.Semaphore(max_concurrent_sends) if max_concurrent_sends else None
        )
        self._on_failure: FailureHandler | None = None
        self._teardown_tasks: set[asyncio.Task] = set()

    def set_failure_handler(self, handler: FailureHandler) -> None:
        """Install the callback invoked with (connection_id, reason) on failed writes."""
        self._on_failure = handler

    async def publish(
        self,
        event: "DomainEvent",
        rooms: "list[RoomKey] | None" = None,
    ) -> DeliveryReport:
        """
        Deliver an event to every member of the target rooms, once each.

        Args:
            event: The event to deliver.
            rooms: Target rooms. Defaults to the routing table entry for the event type.

        Returns:
            DeliveryReport with reached and failed counts. Never raises for
            delivery errors.
        """
        target_rooms = list(dict.fromkeys(rooms)) if rooms is not None else rooms_for(event)
        report = DeliveryReport(
            event_type=event.type.value,
            rooms_targeted=[str(room) for room in target_rooms],
        )

        # Union across rooms: a connection in several target rooms is written once
        members = await self._registry.members_of_any(target_rooms)
        if members:
            message = event.to_message()
            connections = sorted(members, key=lambda c: c.connection_id)
            results = await asyncio.gather(
                *[self._deliver_in_slot(connection, message) for connection in connections],
                return_exceptions=True,
            )
            for connection, result in zip(connections, results):
                if result is None:
                    report.connections_reached += 1
                elif isinstance(result, DeliveryFailure):
                    report.failures.append(result)
                else:
                    report.failures.append(
                        DeliveryFailure(connection.connection_id, repr(result))
                    )

        if self._metrics is not None:
            self._metrics.record_broadcast(report.connections_reached, report.connections_failed)

        if report.failures:
            logger.warning(
                "Broadcast had delivery failures",
                event_type=report.event_type,
                reached=report.connections_reached,
                failed=report.connections_failed,
            )
        else:
            logger.debug(
                "Broadcast delivered",
                event_type=report.event_type,
                rooms=report.rooms_targeted,
                reached=report.connections_reached,
            )
        return report

    async def send_to_connection(self, connection: "Connection", message: dict[str, Any]) -> bool:
        """
        Write a single message to one connection under the send timeout.

        Returns:
            True if written. On failure the connection is scheduled for teardown.
        """
        return await self._deliver(connection, message) is None

    async def _deliver_in_slot(
        self,
        connection: "Connection",
        message: dict[str, Any],
    ) -> DeliveryFailure | None:
        if self._send_slots is None:
            return await self._deliver(connection, message)
        async with self._send_slots:
            return await self._deliver(connection, message)

    async def _deliver(
        self,
        connection: "Connection",
        message: dict[str, Any],
    ) -> DeliveryFailure | None:
        if not connection.is_open:
            return DeliveryFailure(connection.connection_id, "connection closed")

        try:
            await asyncio.wait_for(
                connection.transport.send_json(message),
                timeout=self._send_timeout,
            )
            return None
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            failure = DeliveryFailure(
                connection.connection_id,
                f"send timed out after {self._send_timeout}s",
            )
        except Exception as e:
            failure = DeliveryFailure(connection.connection_id, f"{type(e).__name__}: {e}")

        logger.debug(
            "Send failed",
            connection_id=connection.connection_id,
            reason=failure.reason,
        )
        self._schedule_teardown(failure)
        return failure

    def _schedule_teardown(self, failure: DeliveryFailure) -> None:
        if self._on_failure is None:
            return
        task = asyncio.create_task(
            self._on_failure(failure.connection_id, failure.reason),
            name=f"teardown_{failure.connection_id}",
        )
        self._teardown_tasks.add(task)
        task.add_done_callback(self._teardown_done)

    def _teardown_done(self, task: asyncio.Task) -> None:
        self._teardown_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Connection teardown failed", task=task.get_name(), error=str(exc))

    async def wait_for_teardowns(self) -> None:
        """Wait for scheduled teardowns to finish (shutdown and tests)."""
        while self._teardown_tasks:
            await asyncio.gather(*list(self._teardown_tasks), return_exceptions=True)

    @property
    def pending_teardowns(self) -> int:
        return len(self._teardown_tasks)
