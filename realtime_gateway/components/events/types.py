"""
Event Value Objects.

Domain objects moved from the state machine and location broadcast to the
broadcaster and notification dispatcher. All are immutable once built.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Self


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class EventType(str, Enum):
    """Closed set of domain event types. The value is the wire message name."""

    ORDER_CREATED = "order:created"
    ORDER_STATUS = "order:status"
    ORDER_ASSIGNED = "order:assigned"
    DELIVERY_LOCATION = "delivery:location"
    COURIER_STATUS = "courier:status"
    SYSTEM_ANNOUNCEMENT = "system:announcement"
    NOTIFICATION = "notification"


class OrderStatus(str, Enum):
    RECEIVED = "received"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    READY_FOR_PICKUP = "ready_for_pickup"
    ASSIGNED = "assigned"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


# =============================================================================
# Order (external entity, referenced not owned)
# =============================================================================


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


@dataclass(frozen=True, slots=True)
class Order:
    """
    Snapshot of an order as supplied by the order service.

    Attributes:
        id: Order id.
        status: Current status.
        customer_id: Identity id of the customer who placed it.
        courier_id: Identity id of the assigned courier, if any.
        restaurant_slug: Restaurant that fulfils the order.
        details: Display fields passed through untouched (total, address...).
    """

    id: int
    status: OrderStatus
    customer_id: str
    courier_id: str | None = None
    restaurant_slug: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "details", MappingProxyType(dict(self.details)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        """
        Build an Order from an order-service payload (camelCase or snake_case).

        Raises:
            ValueError: If id, status or customer are missing or invalid.
        """
        if not isinstance(data, Mapping):
            raise ValueError("Order must be an object")

        raw_id = _first(data, "id", "orderId", "order_id")
        if raw_id is None or isinstance(raw_id, bool):
            raise ValueError("Order id is required")
        try:
            order_id = int(raw_id)
        except (TypeError, ValueError):
            raise ValueError(f"Order id must be an integer, got {raw_id!r}")

        raw_status = data.get("status")
        try:
            status = OrderStatus(raw_status)
        except ValueError:
            raise ValueError(f"Unknown order status: {raw_status!r}")

        customer_id = _first(data, "customerId", "customer_id", "userId", "user_id")
        if customer_id is None:
            raise ValueError("Order customer is required")

        courier_id = _first(data, "courierId", "courier_id")
        known = {
            "id", "orderId", "order_id", "status", "customerId", "customer_id",
            "userId", "user_id", "courierId", "courier_id", "restaurantSlug",
            "restaurant_slug",
        }
        return cls(
            id=order_id,
            status=status,
            customer_id=str(customer_id),
            courier_id=str(courier_id) if courier_id is not None else None,
            restaurant_slug=_first(data, "restaurantSlug", "restaurant_slug"),
            details={k: v for k, v in data.items() if k not in known},
        )

    def with_status(self, status: OrderStatus, courier_id: str | None = None) -> "Order":
        return Order(
            id=self.id,
            status=status,
            customer_id=self.customer_id,
            courier_id=courier_id if courier_id is not None else self.courier_id,
            restaurant_slug=self.restaurant_slug,
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **dict(self.details),
            "id": self.id,
            "status": self.status.value,
            "customerId": self.customer_id,
            "courierId": self.courier_id,
            "restaurantSlug": self.restaurant_slug,
        }


# =============================================================================
# Location report
# =============================================================================


@dataclass(frozen=True, slots=True)
class LocationReport:
    """A single GPS fix from a courier. Only the latest per courier is kept."""

    courier_id: str
    latitude: float
    longitude: float
    accuracy: float | None = None
    order_id: int | None = None
    reported_at: datetime = field(default_factory=utcnow)

    @property
    def in_range(self) -> bool:
        return (
            -90.0 <= self.latitude <= 90.0
            and -180.0 <= self.longitude <= 180.0
            and (self.accuracy is None or self.accuracy >= 0)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "courierId": self.courier_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "orderId": self.order_id,
            "timestamp": isoformat(self.reported_at),
        }


# =============================================================================
# Domain event
# =============================================================================


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """
    Immutable unit of information fanned out to rooms and push devices.

    Construct through the classmethod factories so each type carries the
    fields its payload needs. `attributes` holds type-specific extras
    (announcement text, notification title/body, courier presence).
    """

    type: EventType
    order_id: int | None = None
    previous_status: OrderStatus | None = None
    new_status: OrderStatus | None = None
    courier_id: str | None = None
    location: LocationReport | None = None
    order: Order | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def order_created(cls, order: Order) -> Self:
        return cls(
            type=EventType.ORDER_CREATED,
            order_id=order.id,
            new_status=order.status,
            courier_id=order.courier_id,
            order=order,
        )

    @classmethod
    def order_status(
        cls,
        order_id: int,
        previous_status: OrderStatus,
        new_status: OrderStatus,
        order: Order | None = None,
        courier_id: str | None = None,
    ) -> Self:
        return cls(
            type=EventType.ORDER_STATUS,
            order_id=order_id,
            previous_status=previous_status,
            new_status=new_status,
            courier_id=courier_id if courier_id is not None else (order.courier_id if order else None),
            order=order,
        )

    @classmethod
    def order_assigned(cls, order_id: int, courier_id: str, order: Order | None = None) -> Self:
        return cls(
            type=EventType.ORDER_ASSIGNED,
            order_id=order_id,
            new_status=order.status if order else None,
            courier_id=courier_id,
            order=order,
        )

    @classmethod
    def delivery_location(cls, report: LocationReport) -> Self:
        return cls(
            type=EventType.DELIVERY_LOCATION,
            order_id=report.order_id,
            courier_id=report.courier_id,
            location=report,
            timestamp=report.reported_at,
        )

    @classmethod
    def courier_status(cls, courier_id: str, status: str) -> Self:
        return cls(
            type=EventType.COURIER_STATUS,
            courier_id=courier_id,
            attributes={"status": status},
        )

    @classmethod
    def announcement(cls, title: str, message: str, severity: str) -> Self:
        return cls(
            type=EventType.SYSTEM_ANNOUNCEMENT,
            attributes={"title": title, "message": message, "severity": severity},
        )

    @classmethod
    def notification(
        cls,
        identity_id: str,
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> Self:
        return cls(
            type=EventType.NOTIFICATION,
            attributes={
                "identityId": str(identity_id),
                "title": title,
                "body": body,
                "data": dict(data or {}),
            },
        )

    # -------------------------------------------------------------------------
    # Wire format
    # -------------------------------------------------------------------------

    def to_payload(self) -> dict[str, Any]:
        """The `data` part of the wire message for this event."""
        return _PAYLOAD_BUILDERS[self.type](self)

    def to_message(self) -> dict[str, Any]:
        """Full wire message: {"type": ..., "data": {...}}."""
        return {"type": self.type.value, "data": self.to_payload()}


def _order_dict(event: DomainEvent) -> dict[str, Any] | None:
    return event.order.to_dict() if event.order is not None else None


def _status_value(status: OrderStatus | None) -> str | None:
    return status.value if status is not None else None


def _location_payload(event: DomainEvent) -> dict[str, Any]:
    if event.location is None:
        return {"courierId": event.courier_id, "timestamp": isoformat(event.timestamp)}
    return event.location.to_dict()


_PAYLOAD_BUILDERS: dict[EventType, Callable[[DomainEvent], dict[str, Any]]] = {
    EventType.ORDER_CREATED: lambda e: {
        "orderId": e.order_id,
        "status": _status_value(e.new_status),
        "order": _order_dict(e),
        "timestamp": isoformat(e.timestamp),
    },
    EventType.ORDER_STATUS: lambda e: {
        "orderId": e.order_id,
        "previousStatus": _status_value(e.previous_status),
        "newStatus": _status_value(e.new_status),
        "order": _order_dict(e),
        "timestamp": isoformat(e.timestamp),
    },
    EventType.ORDER_ASSIGNED: lambda e: {
        "orderId": e.order_id,
        "courierId": e.courier_id,
        "order": _order_dict(e),
        "timestamp": isoformat(e.timestamp),
    },
    EventType.DELIVERY_LOCATION: _location_payload,
    EventType.COURIER_STATUS: lambda e: {
        "courierId": e.courier_id,
        "status": e.attributes.get("status"),
        "timestamp": isoformat(e.timestamp),
    },
    EventType.SYSTEM_ANNOUNCEMENT: lambda e: {
        "title": e.attributes.get("title"),
        "message": e.attributes.get("message"),
        "severity": e.attributes.get("severity"),
        "timestamp": isoformat(e.timestamp),
    },
    EventType.NOTIFICATION: lambda e: {
        "title": e.attributes.get("title"),
        "body": e.attributes.get("body"),
        "data": dict(e.attributes.get("data") or {}),
        "timestamp": isoformat(e.timestamp),
    },
}
