"""Live fan-out of domain events to rooms."""

from realtime_gateway.components.broadcast.broadcaster import (
    DeliveryReport,
    EventBroadcaster,
    FailureHandler,
)

__all__ = ["DeliveryReport", "EventBroadcaster", "FailureHandler"]
