"""
Domain events: value objects and the routing table.
"""

from realtime_gateway.components.events.types import (
    DomainEvent,
    EventType,
    LocationReport,
    Order,
    OrderStatus,
)
from realtime_gateway.components.events.routing import (
    EVENT_ROUTES,
    EventRoute,
    NotificationContent,
    notification_content,
    push_recipients_for,
    rooms_for,
)

__all__ = [
    "DomainEvent",
    "EVENT_ROUTES",
    "EventRoute",
    "EventType",
    "LocationReport",
    "NotificationContent",
    "Order",
    "OrderStatus",
    "notification_content",
    "push_recipients_for",
    "rooms_for",
]
