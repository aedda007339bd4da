"""Connection admission, order-room membership and the WebSocket session."""

from realtime_gateway.components.endpoints.gateway import ConnectionGateway, can_access_order
from realtime_gateway.components.endpoints.session import (
    ClientMessage,
    GatewaySession,
    LocationReportMessage,
    OrderSubscriptionMessage,
    StatusReportMessage,
)

__all__ = [
    "ConnectionGateway",
    "can_access_order",
    "ClientMessage",
    "GatewaySession",
    "LocationReportMessage",
    "OrderSubscriptionMessage",
    "StatusReportMessage",
]
