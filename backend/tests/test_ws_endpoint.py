"""
Tests for the /ws endpoint over the wire.

Tests verify:
- Handshake acknowledgement and rejection close codes
- Heartbeat (plain and JSON ping)
- Error frames for malformed, unknown and forbidden client frames
- Order subscription round trip
- Courier frames reaching admin sockets
"""

from unittest.mock import MagicMock

import pytest
from starlette.websockets import WebSocketDisconnect

from shared.config.settings import Settings
from realtime_gateway.components.core.constants import WSCloseCode
from realtime_gateway.components.core.errors import RealtimeError
from realtime_gateway.components.endpoints.session import GatewaySession


def connect(client, token: str):
    return client.websocket_connect(f"/ws?token={token}")


class TestHandshake:
    """Admission over a real WebSocket session."""

    def test_connected_frame(self, client):
        with connect(client, "customer-token") as ws:
            frame = ws.receive_json()

        assert frame["type"] == "connected"
        assert frame["data"]["userId"] == "c1"
        assert frame["data"]["role"] == "customer"
        assert frame["data"]["connectionId"]

    def test_invalid_token_closes_with_auth_code(self, client):
        with connect(client, "bogus") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == WSCloseCode.AUTH_FAILED

    def test_missing_token(self, client):
        with client.websocket_connect("/ws") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == WSCloseCode.AUTH_FAILED

    def test_bearer_header_is_accepted(self, client):
        with client.websocket_connect("/ws", headers={"Authorization": "Bearer admin-token"}) as ws:
            assert ws.receive_json()["data"]["role"] == "admin"


class TestClientFrames:
    """Frames a connected client may send."""

    def test_plain_ping(self, client):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_text("ping")
            frame = ws.receive_json()

        assert frame["type"] == "pong"
        assert frame["data"]["timestamp"]

    def test_json_ping(self, client):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_malformed_frame(self, client):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_text("{not json")
            frame = ws.receive_json()

        assert frame["type"] == "error"
        assert frame["data"]["code"] == "VALIDATION_ERROR"

    def test_unknown_message_type(self, client):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_json({"type": "dance", "data": {}})
            frame = ws.receive_json()

        assert frame["data"]["code"] == "VALIDATION_ERROR"
        assert "dance" in frame["data"]["message"]

    def test_connection_survives_bad_frames(self, client):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_text("[]")
            assert ws.receive_json()["type"] == "error"
            ws.send_text("ping")
            assert ws.receive_json()["type"] == "pong"

    def test_subscribe_to_own_order(self, client):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_json({"type": "order:subscribe", "data": {"orderId": 42}})
            frame = ws.receive_json()

        assert frame["type"] == "order:subscribed"
        assert frame["data"]["orderId"] == 42

    def test_subscribe_to_foreign_order_is_forbidden(self, client):
        with connect(client, "other-customer-token") as ws:
            ws.receive_json()
            ws.send_json({"type": "order:subscribe", "data": {"orderId": 42}})
            frame = ws.receive_json()

        assert frame["type"] == "error"
        assert frame["data"]["code"] == "FORBIDDEN"

    def test_subscribe_to_unknown_order(self, client):
        with connect(client, "admin-token") as ws:
            ws.receive_json()
            ws.send_json({"type": "order:subscribe", "data": {"orderId": 999}})
            assert ws.receive_json()["data"]["code"] == "ORDER_NOT_FOUND"

    def test_subscribe_requires_order_id(self, client):
        with connect(client, "admin-token") as ws:
            ws.receive_json()
            ws.send_json({"type": "order:subscribe", "data": {}})
            assert ws.receive_json()["data"]["code"] == "VALIDATION_ERROR"

    def test_unsubscribe(self, client):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_json({"type": "order:subscribe", "data": {"orderId": 42}})
            ws.receive_json()
            ws.send_json({"type": "order:unsubscribe", "data": {"orderId": 42}})
            frame = ws.receive_json()

        assert frame == {"type": "order:unsubscribed", "data": {"orderId": 42}}

    def test_status_report_requires_courier(self, client):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_json({"type": "status:report", "data": {"status": "busy"}})
            assert ws.receive_json()["data"]["code"] == "FORBIDDEN"

    def test_location_report_from_customer_is_forbidden(self, client):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_json({"type": "location:report", "data": {"latitude": 1.0, "longitude": 2.0}})
            assert ws.receive_json()["data"]["code"] == "FORBIDDEN"

    def test_oversized_frame_closes_connection(self, client, test_settings):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_text("x" * (test_settings.ws_max_message_size + 1))
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == WSCloseCode.MESSAGE_TOO_BIG


class TestCourierFrames:
    """Courier frames fan out to admin sockets."""

    def test_location_report_reaches_admin(self, client):
        with connect(client, "admin-token") as admin, connect(client, "courier-token") as courier:
            admin.receive_json()
            courier.receive_json()

            courier.send_json({
                "type": "location:report",
                "data": {"latitude": 59.3293, "longitude": 18.0686, "accuracy": 8},
            })
            frame = admin.receive_json()

        assert frame["type"] == "delivery:location"
        assert frame["data"]["courierId"] == "k1"
        assert frame["data"]["latitude"] == 59.3293

    def test_status_report_reaches_admin(self, client):
        with connect(client, "admin-token") as admin, connect(client, "courier-token") as courier:
            admin.receive_json()
            courier.receive_json()

            courier.send_json({"type": "status:report", "data": {"status": "available"}})
            frame = admin.receive_json()

        assert frame["type"] == "courier:status"
        assert frame["data"]["courierId"] == "k1"
        assert frame["data"]["status"] == "available"

    def test_invalid_courier_status(self, client):
        with connect(client, "courier-token") as courier:
            courier.receive_json()
            courier.send_json({"type": "status:report", "data": {"status": "napping"}})
            assert courier.receive_json()["data"]["code"] == "VALIDATION_ERROR"

    def test_status_change_reaches_subscribed_socket(self, client):
        with connect(client, "customer-token") as ws:
            ws.receive_json()
            ws.send_json({"type": "order:subscribe", "data": {"orderId": 42}})
            ws.receive_json()

            response = client.post(
                "/api/mobile/events/status-changed",
                json={"orderId": 42, "previousStatus": "received", "newStatus": "accepted"},
                headers={"Authorization": "Bearer service-token"},
            )
            frame = ws.receive_json()

        assert response.status_code == 200
        assert frame["type"] == "order:status"
        assert frame["data"]["newStatus"] == "accepted"


class TestSessionBeforeAdmission:
    """A session that was never admitted refuses to handle frames."""

    def _session(self) -> GatewaySession:
        return GatewaySession(MagicMock(), MagicMock(), MagicMock(), settings=Settings())

    def test_admitted_raises(self):
        with pytest.raises(RealtimeError):
            self._session().admitted

    @pytest.mark.asyncio
    async def test_handle_message_raises(self):
        with pytest.raises(RealtimeError):
            await self._session().handle_message('{"type": "ping"}')
