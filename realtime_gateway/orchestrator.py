"""
Real-Time Orchestrator.

Facade the rest of the platform calls when something happens to an order,
a courier or a user. Every domain event is broadcast to live connections
first and mirrored to push devices second.

Events for the same order are serialized by a per-order lock held from
transition check through broadcast and push, so subscribers observe them
in acceptance order. When an order reaches a terminal status its room is
released after a grace period and its current status is forgotten.
"""

from __future__ import annotations

import asyncio
from typing import Any, TYPE_CHECKING

from shared.config.logging import get_logger, mask_user_id
from shared.config.settings import Settings, get_settings
from realtime_gateway.components.connection.locks import OrderLockManager
from realtime_gateway.components.core.constants import AnnouncementSeverity, CourierPresence
from realtime_gateway.components.core.errors import (
    InvalidTransitionError,
    OrderLookupError,
    ValidationError,
)
from realtime_gateway.components.events.routing import follow_up_notification, push_recipients_for
from realtime_gateway.components.events.types import DomainEvent, Order, OrderStatus
from realtime_gateway.components.orders.repository import InMemoryOrderRepository
from realtime_gateway.components.orders.state_machine import OrderStateMachine

if TYPE_CHECKING:
    from realtime_gateway.components.auth.identity import SubscriberIdentity
    from realtime_gateway.components.broadcast.broadcaster import DeliveryReport, EventBroadcaster
    from realtime_gateway.components.endpoints.gateway import ConnectionGateway
    from realtime_gateway.components.events.types import LocationReport
    from realtime_gateway.components.location.broadcast import LocationBroadcast
    from realtime_gateway.components.metrics.collector import MetricsCollector
    from realtime_gateway.components.notifications.dispatcher import (
        NotificationDispatcher,
        SendResult,
    )
    from realtime_gateway.components.orders.repository import OrderRepository

logger = get_logger(__name__)


class RealtimeOrchestrator:
    """
    Usage:
        orchestrator = RealtimeOrchestrator(gateway, broadcaster, location, dispatcher, orders)
        await orchestrator.on_status_changed(42, "accepted", "in_progress", order)
    """

    def __init__(
        self,
        gateway: "ConnectionGateway",
        broadcaster: "EventBroadcaster",
        location: "LocationBroadcast",
        dispatcher: "NotificationDispatcher",
        orders: "OrderRepository | None" = None,
        settings: Settings | None = None,
        metrics: "MetricsCollector | None" = None,
        state_machine: OrderStateMachine | None = None,
        lock_manager: OrderLockManager | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._gateway = gateway
        self._broadcaster = broadcaster
        self._location = location
        self._dispatcher = dispatcher
        self._orders = orders
        self._metrics = metrics
        self._state_machine = state_machine or OrderStateMachine()
        self._locks = lock_manager or OrderLockManager()
        self._release_grace = settings.order_room_release_grace_seconds

        self._statuses: dict[int, OrderStatus] = {}
        self._release_tasks: dict[int, asyncio.Task] = {}

    # =========================================================================
    # Order events
    # =========================================================================

    async def on_order_created(self, order: Order) -> "DeliveryReport":
        """Announce a new order to admins, couriers and the customer."""
        async with await self._locks.get_order_lock(order.id):
            self._statuses[order.id] = order.status
            self._store(order)

            event = DomainEvent.order_created(order)
            report = await self._broadcaster.publish(event)
            await self._push(event)

        logger.info("Order created", order_id=order.id, status=order.status.value)
        return report

    async def on_status_changed(
        self,
        order_id: int,
        previous: OrderStatus | str,
        next_status: OrderStatus | str,
        order: Order | None = None,
        actor: "SubscriberIdentity | None" = None,
        courier_id: str | None = None,
    ) -> list["DeliveryReport"]:
        """
        Apply a committed status change.

        Returns:
            One DeliveryReport per emitted event (two when moving to `assigned`).

        Raises:
            InvalidTransitionError: Transition not allowed; nothing is published.
        """
        async with await self._locks.get_order_lock(order_id):
            if order is None:
                order = await self._lookup(order_id)

            known = self._statuses.get(order_id)
            if known is not None and known.value != str(getattr(previous, "value", previous)):
                logger.warning(
                    "Previous status differs from last known status",
                    order_id=order_id,
                    previous=str(getattr(previous, "value", previous)),
                    known=known.value,
                )

            try:
                events = self._state_machine.transition(
                    order_id, previous, next_status,
                    actor=actor, courier_id=courier_id, order=order,
                )
            except InvalidTransitionError:
                if self._metrics is not None:
                    self._metrics.increment_domain("transitions_rejected")
                raise

            if self._metrics is not None:
                self._metrics.increment_domain("transitions_accepted")

            new_status = OrderStatus(next_status)
            self._statuses[order_id] = new_status
            if events[0].order is not None:
                self._store(events[0].order)

            reports = []
            for event in events:
                reports.append(await self._broadcaster.publish(event))
                await self._push(event)

            if new_status.is_terminal:
                self._schedule_room_release(order_id)

        return reports

    async def on_courier_assigned(
        self,
        order_id: int,
        courier_id: str,
        order: Order | None = None,
    ) -> "DeliveryReport":
        """Announce a courier assignment that did not come with a status change."""
        if not courier_id:
            raise ValidationError("courier_id is required")

        async with await self._locks.get_order_lock(order_id):
            if order is None:
                order = await self._lookup(order_id)
            snapshot = order.with_status(order.status, courier_id=str(courier_id)) if order else None
            if snapshot is not None:
                self._store(snapshot)

            event = DomainEvent.order_assigned(order_id, str(courier_id), order=snapshot)
            report = await self._broadcaster.publish(event)
            await self._push(event)

        logger.info(
            "Courier assigned",
            order_id=order_id,
            courier_id=mask_user_id(courier_id),
        )
        return report

    # =========================================================================
    # Courier events
    # =========================================================================

    async def on_courier_location(
        self,
        identity: "SubscriberIdentity",
        report: "LocationReport",
    ) -> "DeliveryReport | None":
        """Forward a courier location report. None when the report was dropped."""
        return await self._location.report_location(identity, report)

    async def on_courier_status_changed(self, courier_id: str, status: str) -> "DeliveryReport":
        if status not in CourierPresence.ALL:
            raise ValidationError(
                f"Invalid courier status {status!r}. Must be one of: "
                + ", ".join(sorted(CourierPresence.ALL))
            )
        event = DomainEvent.courier_status(str(courier_id), status)
        logger.info("Courier status changed", courier_id=mask_user_id(courier_id), status=status)
        return await self._broadcaster.publish(event)

    # =========================================================================
    # System and user events
    # =========================================================================

    async def broadcast_announcement(
        self,
        title: str,
        message: str,
        severity: str = AnnouncementSeverity.INFO,
    ) -> "DeliveryReport":
        if severity not in AnnouncementSeverity.ALL:
            raise ValidationError(
                f"Invalid severity {severity!r}. Must be one of: "
                + ", ".join(sorted(AnnouncementSeverity.ALL))
            )
        event = DomainEvent.announcement(title, message, severity)
        report = await self._broadcaster.publish(event)
        logger.info(
            "Announcement broadcast",
            severity=severity,
            reached=report.connections_reached,
        )
        return report

    async def notify_user(
        self,
        identity_id: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> tuple["DeliveryReport", "SendResult"]:
        """Deliver a free-form notification live and by push."""
        event = DomainEvent.notification(str(identity_id), title, body, data)
        report = await self._broadcaster.publish(event)
        result = await self._dispatcher.dispatch(str(identity_id), event)
        return report, result

    # =========================================================================
    # Queries
    # =========================================================================

    def current_status(self, order_id: int) -> OrderStatus | None:
        return self._statuses.get(order_id)

    def get_statistics(self) -> dict[str, Any]:
        return {
            "gateway": self._gateway.get_stats(),
            "metrics": self._metrics.get_snapshot() if self._metrics is not None else {},
            "dispatcher": self._dispatcher.get_stats(),
            "locations": self._location.get_stats(),
            "orders": {
                "tracked": len(self._statuses),
                "pending_releases": len(self._release_tasks),
                "release_grace_seconds": self._release_grace,
            },
            "locks": self._locks.get_stats(),
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def wait_for_releases(self) -> None:
        """Wait for scheduled order-room releases (tests)."""
        while self._release_tasks:
            await asyncio.gather(*list(self._release_tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel pending releases and let scheduled teardowns finish."""
        tasks = list(self._release_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._release_tasks.clear()

        await self._broadcaster.wait_for_teardowns()
        await self._dispatcher.close()
        logger.info("Orchestrator shut down")

    # =========================================================================
    # Internals
    # =========================================================================

    async def _push(self, event: DomainEvent) -> None:
        # Awaited inline: pushes for one identity leave in publish order
        follow_up = follow_up_notification(event)
        for identity_id in push_recipients_for(event):
            await self._dispatcher.dispatch(identity_id, event)
            if follow_up is not None:
                await self._dispatcher.send_to_user(
                    identity_id, follow_up.title, follow_up.body, follow_up.data,
                )

    async def _lookup(self, order_id: int) -> Order | None:
        if self._orders is None:
            return None
        try:
            return await self._orders.get_order(order_id)
        except OrderLookupError as e:
            logger.warning("Order snapshot unavailable", order_id=order_id, error=e.message)
            return None

    def _store(self, order: Order) -> None:
        if isinstance(self._orders, InMemoryOrderRepository):
            self._orders.upsert(order)

    def _schedule_room_release(self, order_id: int) -> None:
        existing = self._release_tasks.pop(order_id, None)
        if existing is not None:
            existing.cancel()
        task = asyncio.create_task(
            self._release_after_grace(order_id),
            name=f"order_room_release_{order_id}",
        )
        self._release_tasks[order_id] = task
        task.add_done_callback(lambda t, oid=order_id: self._release_done(oid, t))

    def _release_done(self, order_id: int, task: asyncio.Task) -> None:
        if self._release_tasks.get(order_id) is task:
            del self._release_tasks[order_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Order room release failed", order_id=order_id, error=str(task.exception()))

    async def _release_after_grace(self, order_id: int) -> None:
        await asyncio.sleep(self._release_grace)
        await self._gateway.release_order_room(order_id)
        self._statuses.pop(order_id, None)
        if isinstance(self._orders, InMemoryOrderRepository):
            self._orders.discard(order_id)
        await self._locks.release(order_id)
