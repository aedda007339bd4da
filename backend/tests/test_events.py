"""
Tests for domain event value objects and the routing table.
"""

import pytest

from realtime_gateway.components.auth.identity import Role
from realtime_gateway.components.connection.registry import RoomKey
from realtime_gateway.components.events.routing import (
    EVENT_ROUTES,
    follow_up_notification,
    notification_content,
    push_recipients_for,
    rooms_for,
)
from realtime_gateway.components.events.schemas import StatusChangedEvent, parse_order
from realtime_gateway.components.events.types import (
    DomainEvent,
    EventType,
    LocationReport,
    Order,
    OrderStatus,
)
from tests.conftest import make_order


class TestOrderParsing:
    """Order.from_dict accepts order-service payloads."""

    def test_camel_case_payload(self):
        order = Order.from_dict({
            "id": "42",
            "status": "accepted",
            "customerId": 7,
            "courierId": 9,
            "restaurantSlug": "pizza-place",
            "total": 2590,
        })

        assert order.id == 42
        assert order.status is OrderStatus.ACCEPTED
        assert order.customer_id == "7"
        assert order.courier_id == "9"
        assert order.details == {"total": 2590}

    def test_snake_case_and_user_id(self):
        order = Order.from_dict({"order_id": 5, "status": "received", "user_id": "u1"})
        assert order.id == 5
        assert order.customer_id == "u1"
        assert order.courier_id is None

    @pytest.mark.parametrize("payload", [
        {"status": "received", "customerId": "c1"},
        {"id": True, "status": "received", "customerId": "c1"},
        {"id": "x", "status": "received", "customerId": "c1"},
        {"id": 1, "status": "lost", "customerId": "c1"},
        {"id": 1, "status": "received"},
    ])
    def test_invalid_payloads(self, payload):
        with pytest.raises(ValueError):
            Order.from_dict(payload)

    def test_details_are_read_only(self):
        order = make_order()
        with pytest.raises(TypeError):
            order.details["total"] = 0

    def test_parse_order_none(self):
        assert parse_order(None) is None

    def test_status_changed_schema_accepts_aliases(self):
        event = StatusChangedEvent.model_validate({
            "orderId": 42, "previousStatus": "accepted", "newStatus": "in_progress", "courierId": 9,
        })
        assert event.order_id == 42
        assert event.courier == "9"


class TestWireMessages:
    """Every event serializes to {type, data}."""

    def test_order_status_message(self):
        event = DomainEvent.order_status(42, OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS, make_order())
        message = event.to_message()

        assert message["type"] == "order:status"
        assert message["data"]["orderId"] == 42
        assert message["data"]["previousStatus"] == "accepted"
        assert message["data"]["newStatus"] == "in_progress"
        assert message["data"]["order"]["customerId"] == "c1"

    def test_delivery_location_message(self):
        report = LocationReport(courier_id="k1", latitude=59.33, longitude=18.06, accuracy=5, order_id=42)
        data = DomainEvent.delivery_location(report).to_message()["data"]

        assert data["courierId"] == "k1"
        assert data["latitude"] == 59.33
        assert data["longitude"] == 18.06
        assert data["timestamp"]

    def test_announcement_message(self):
        data = DomainEvent.announcement("Maintenance", "Back soon", "warning").to_payload()
        assert data["title"] == "Maintenance"
        assert data["message"] == "Back soon"
        assert data["severity"] == "warning"

    def test_events_are_immutable(self):
        event = DomainEvent.courier_status("k1", "busy")
        with pytest.raises(AttributeError):
            event.courier_id = "k2"

    def test_location_range_check(self):
        assert LocationReport("k1", 90.0, -180.0).in_range
        assert not LocationReport("k1", 91.0, 0.0).in_range
        assert not LocationReport("k1", 0.0, 181.0).in_range
        assert not LocationReport("k1", 0.0, 0.0, accuracy=-1).in_range


class TestRouting:
    """Routing table coverage and targets."""

    def test_every_event_type_is_routed(self):
        assert set(EVENT_ROUTES) == set(EventType)

    def test_order_status_rooms(self):
        event = DomainEvent.order_status(
            42, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, make_order(courier_id="k1"),
        )
        assert rooms_for(event) == [
            RoomKey.order(42),
            RoomKey.role(Role.ADMIN),
            RoomKey.identity("c1"),
            RoomKey.identity("k1"),
        ]

    def test_location_goes_to_admins_and_order_room(self):
        report = LocationReport("k1", 1.0, 2.0, order_id=42)
        assert rooms_for(DomainEvent.delivery_location(report)) == [
            RoomKey.role(Role.ADMIN),
            RoomKey.order(42),
        ]

    def test_location_without_order_goes_to_admins_only(self):
        report = LocationReport("k1", 1.0, 2.0)
        assert rooms_for(DomainEvent.delivery_location(report)) == [RoomKey.role(Role.ADMIN)]

    def test_announcement_reaches_every_role(self):
        rooms = rooms_for(DomainEvent.announcement("t", "m", "info"))
        assert set(rooms) == {RoomKey.role(role) for role in Role}

    def test_assignment_pushes_courier_then_customer(self):
        event = DomainEvent.order_assigned(42, "k1", make_order(courier_id="k1"))
        assert push_recipients_for(event) == ["k1", "c1"]

    def test_location_has_no_push(self):
        event = DomainEvent.delivery_location(LocationReport("k1", 1.0, 2.0))
        assert push_recipients_for(event) == []
        assert notification_content(event, "k1") is None

    def test_status_template(self):
        event = DomainEvent.order_status(42, OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS, make_order())
        content = notification_content(event, "c1")
        assert content.body == "Your order is being prepared"
        assert "#42" in content.title

    def test_assignment_templates_differ_by_recipient(self):
        event = DomainEvent.order_assigned(42, "k1", make_order(courier_id="k1"))
        assert notification_content(event, "k1").body == "You have been assigned order #42"
        assert notification_content(event, "c1").body == "A courier has been assigned to your order"

    def test_only_delivered_has_a_follow_up(self):
        delivered = DomainEvent.order_status(
            42, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, make_order(),
        )
        accepted = DomainEvent.order_status(42, OrderStatus.RECEIVED, OrderStatus.ACCEPTED, make_order())

        follow_up = follow_up_notification(delivered)

        assert follow_up.title == "🎉 Delivery Completed!"
        assert follow_up.data == {"type": "delivery_completed", "orderId": 42}
        assert follow_up_notification(accepted) is None
