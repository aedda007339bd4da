"""
Event routing table.

Maps every EventType to the rooms that receive it live and to the push
recipients and title/body templates used by the notification dispatcher.
Adding an event type means adding one EventRoute entry here; the module
refuses to import if any EventType is missing from the table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from realtime_gateway.components.auth.identity import Role
from realtime_gateway.components.connection.registry import RoomKey
from realtime_gateway.components.events.types import DomainEvent, EventType, OrderStatus


@dataclass(frozen=True, slots=True)
class NotificationContent:
    title: str
    body: str
    data: dict[str, Any] | None = None


# =============================================================================
# Templates
# =============================================================================

STATUS_EMOJIS: dict[OrderStatus, str] = {
    OrderStatus.RECEIVED: "⏳",
    OrderStatus.ACCEPTED: "✅",
    OrderStatus.IN_PROGRESS: "👨‍🍳",
    OrderStatus.READY_FOR_PICKUP: "✅",
    OrderStatus.ASSIGNED: "🚚",
    OrderStatus.OUT_FOR_DELIVERY: "🚚",
    OrderStatus.DELIVERED: "🎉",
    OrderStatus.CANCELLED: "❌",
}

STATUS_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.RECEIVED: "Your order has been received and is being processed",
    OrderStatus.ACCEPTED: "Your order has been accepted by the restaurant",
    OrderStatus.IN_PROGRESS: "Your order is being prepared",
    OrderStatus.READY_FOR_PICKUP: "Your order is ready for pickup",
    OrderStatus.ASSIGNED: "A courier has been assigned to your order",
    OrderStatus.OUT_FOR_DELIVERY: "Your order is on the way!",
    OrderStatus.DELIVERED: "Your order has been delivered. Enjoy!",
    OrderStatus.CANCELLED: "Your order has been cancelled",
}


def status_notification(order_id: int | None, status: OrderStatus) -> NotificationContent:
    emoji = STATUS_EMOJIS.get(status, "📦")
    return NotificationContent(
        title=f"{emoji} Order #{order_id}",
        body=STATUS_MESSAGES.get(status, f"Your order is now {status.value}"),
    )


# =============================================================================
# Rooms
# =============================================================================


def _order_rooms(event: DomainEvent) -> list[RoomKey]:
    return [RoomKey.order(event.order_id)] if event.order_id is not None else []


def _customer_rooms(event: DomainEvent) -> list[RoomKey]:
    if event.order is None:
        return []
    return [RoomKey.identity(event.order.customer_id)]


def _courier_rooms(event: DomainEvent) -> list[RoomKey]:
    return [RoomKey.identity(event.courier_id)] if event.courier_id else []


ADMIN_ROOM = RoomKey.role(Role.ADMIN)
COURIER_ROOM = RoomKey.role(Role.COURIER)
ALL_ROLE_ROOMS = [RoomKey.role(role) for role in Role]


def _order_created_rooms(event: DomainEvent) -> list[RoomKey]:
    return [ADMIN_ROOM, COURIER_ROOM, *_customer_rooms(event)]


def _order_status_rooms(event: DomainEvent) -> list[RoomKey]:
    return [*_order_rooms(event), ADMIN_ROOM, *_customer_rooms(event), *_courier_rooms(event)]


def _order_assigned_rooms(event: DomainEvent) -> list[RoomKey]:
    return [*_courier_rooms(event), *_order_rooms(event), ADMIN_ROOM]


def _delivery_location_rooms(event: DomainEvent) -> list[RoomKey]:
    return [ADMIN_ROOM, *_order_rooms(event)]


def _notification_rooms(event: DomainEvent) -> list[RoomKey]:
    return [RoomKey.identity(event.attributes["identityId"])]


# =============================================================================
# Push recipients and content
# =============================================================================


def _customer(event: DomainEvent) -> list[str]:
    return [event.order.customer_id] if event.order is not None else []


def _assignment_recipients(event: DomainEvent) -> list[str]:
    recipients = [event.courier_id] if event.courier_id else []
    return recipients + [c for c in _customer(event) if c not in recipients]


def _nobody(event: DomainEvent) -> list[str]:
    return []


def _order_created_content(event: DomainEvent, identity_id: str) -> NotificationContent | None:
    return status_notification(event.order_id, OrderStatus.RECEIVED)


def _order_status_content(event: DomainEvent, identity_id: str) -> NotificationContent | None:
    if event.new_status is None:
        return None
    return status_notification(event.order_id, event.new_status)


def _order_assigned_content(event: DomainEvent, identity_id: str) -> NotificationContent | None:
    if identity_id == event.courier_id:
        return NotificationContent(
            title="🚚 New Delivery Assigned",
            body=f"You have been assigned order #{event.order_id}",
        )
    return NotificationContent(
        title="🚚 Courier Assigned",
        body="A courier has been assigned to your order",
    )


def _announcement_content(event: DomainEvent, identity_id: str) -> NotificationContent | None:
    return NotificationContent(
        title=str(event.attributes.get("title", "")),
        body=str(event.attributes.get("message", "")),
    )


def _notification_content(event: DomainEvent, identity_id: str) -> NotificationContent | None:
    return NotificationContent(
        title=str(event.attributes.get("title", "")),
        body=str(event.attributes.get("body", "")),
    )


def _no_content(event: DomainEvent, identity_id: str) -> NotificationContent | None:
    return None


# =============================================================================
# Table
# =============================================================================


@dataclass(frozen=True, slots=True)
class EventRoute:
    """
    How one event type travels.

    Attributes:
        rooms: Rooms that receive the event live.
        push_recipients: Identity ids the orchestrator dispatches pushes to.
        content: Title/body for a given recipient, or None for no push.
    """

    rooms: Callable[[DomainEvent], list[RoomKey]]
    push_recipients: Callable[[DomainEvent], list[str]]
    content: Callable[[DomainEvent, str], NotificationContent | None]


EVENT_ROUTES: dict[EventType, EventRoute] = {
    EventType.ORDER_CREATED: EventRoute(_order_created_rooms, _customer, _order_created_content),
    EventType.ORDER_STATUS: EventRoute(_order_status_rooms, _customer, _order_status_content),
    EventType.ORDER_ASSIGNED: EventRoute(
        _order_assigned_rooms, _assignment_recipients, _order_assigned_content
    ),
    EventType.DELIVERY_LOCATION: EventRoute(_delivery_location_rooms, _nobody, _no_content),
    EventType.COURIER_STATUS: EventRoute(lambda e: [ADMIN_ROOM], _nobody, _no_content),
    EventType.SYSTEM_ANNOUNCEMENT: EventRoute(
        lambda e: list(ALL_ROLE_ROOMS), _nobody, _announcement_content
    ),
    EventType.NOTIFICATION: EventRoute(
        _notification_rooms,
        lambda e: [str(e.attributes["identityId"])],
        _notification_content,
    ),
}

_missing = set(EventType) - set(EVENT_ROUTES)
if _missing:
    raise RuntimeError(f"Event types without a route: {sorted(t.value for t in _missing)}")


def route_for(event: DomainEvent) -> EventRoute:
    return EVENT_ROUTES[event.type]


def rooms_for(event: DomainEvent) -> list[RoomKey]:
    """Target rooms for an event, duplicates removed, order kept."""
    return list(dict.fromkeys(route_for(event).rooms(event)))


def push_recipients_for(event: DomainEvent) -> list[str]:
    return list(dict.fromkeys(route_for(event).push_recipients(event)))


def notification_content(event: DomainEvent, identity_id: str) -> NotificationContent | None:
    return route_for(event).content(event, str(identity_id))


def follow_up_notification(event: DomainEvent) -> NotificationContent | None:
    """Second push sent to the same recipients after the templated one, if any."""
    if event.type is EventType.ORDER_STATUS and event.new_status is OrderStatus.DELIVERED:
        return NotificationContent(
            title="🎉 Delivery Completed!",
            body=f"Your order #{event.order_id} has been delivered. Enjoy your meal!",
            data={"type": "delivery_completed", "orderId": event.order_id},
        )
    return None
