"""
WebSocket session.

Runs one admitted connection: the handshake, then the message loop
(receive timeout, size limit, rate limit, heartbeat, dispatch of client
frames), then the mandatory teardown through the gateway.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Literal, TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from shared.config.logging import audit_rate_limit_event, get_logger, mask_user_id
from shared.config.settings import Settings, get_settings
from realtime_gateway.components.core.constants import MSG_PING_PLAIN, MessageType, WSCloseCode
from realtime_gateway.components.core.context import Handshake, sanitize_log_data
from realtime_gateway.components.core.errors import (
    AuthError,
    AuthorizationError,
    RealtimeError,
    ValidationError,
)
from realtime_gateway.components.events.types import LocationReport, isoformat, utcnow

if TYPE_CHECKING:
    from realtime_gateway.components.connection.registry import Connection
    from realtime_gateway.components.endpoints.gateway import ConnectionGateway
    from realtime_gateway.orchestrator import RealtimeOrchestrator

logger = get_logger(__name__)


# =============================================================================
# Client frames
# =============================================================================


class ClientMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    data: dict[str, Any] = Field(default_factory=dict)


class LocationReportMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    latitude: float
    longitude: float
    accuracy: float | None = None
    order_id: int | None = Field(default=None, alias="orderId")


class OrderSubscriptionMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order_id: int = Field(alias="orderId", gt=0)


class StatusReportMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: Literal["available", "busy", "offline"]


def _validation_message(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


# =============================================================================
# Session
# =============================================================================


class GatewaySession:
    """
    One client connection from handshake to teardown.

    Usage:
        session = GatewaySession(websocket, gateway, orchestrator)
        await session.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        gateway: "ConnectionGateway",
        orchestrator: "RealtimeOrchestrator",
        settings: Settings | None = None,
        endpoint: str = "/ws",
    ) -> None:
        self.websocket = websocket
        self.gateway = gateway
        self.orchestrator = orchestrator
        self.endpoint = endpoint
        self.connection: "Connection | None" = None

        settings = settings or get_settings()
        self.receive_timeout = settings.ws_receive_timeout
        self.max_message_size = settings.ws_max_message_size
        self._rate_limit = settings.ws_message_rate_limit
        self._rate_window = settings.ws_message_rate_window

        self._handlers = {
            MessageType.LOCATION_REPORT: self._on_location_report,
            MessageType.ORDER_SUBSCRIBE: self._on_subscribe,
            MessageType.ORDER_UNSUBSCRIBE: self._on_unsubscribe,
            MessageType.STATUS_REPORT: self._on_status_report,
            MessageType.PING: self._on_ping,
        }

    @property
    def admitted(self) -> "Connection":
        """The admitted connection. Raises RealtimeError before admission."""
        if self.connection is None:
            raise RealtimeError("Session has no admitted connection")
        return self.connection

    async def run(self) -> None:
        """
        Handles the complete lifecycle:
        1. Accept the transport and verify the handshake
        2. Message loop
        3. Teardown (always)
        """
        handshake = Handshake.from_websocket(self.websocket, self.endpoint)
        await self.websocket.accept()

        try:
            self.connection = await self.gateway.admit(handshake, self.websocket)
        except AuthError as e:
            logger.warning(
                "Handshake rejected",
                endpoint=self.endpoint,
                code=e.code,
                reason=e.context.get("audit_reason"),
            )
            await self.websocket.close(code=e.close_code, reason=e.message)
            return

        connection_id = self.connection.connection_id
        close_code, close_reason = WSCloseCode.NORMAL, ""
        try:
            close_code, close_reason = await self._message_loop()
        except WebSocketDisconnect as e:
            logger.info(
                "Client disconnected",
                connection_id=connection_id,
                user_id=mask_user_id(self.connection.identity.id),
                code=e.code,
            )
        except Exception as e:
            logger.error(
                "Session failed",
                connection_id=connection_id,
                error=str(e),
                exc_info=True,
            )
            close_code, close_reason = WSCloseCode.SERVER_ERROR, "Internal error"
        finally:
            await self.gateway.close(connection_id, close_code, close_reason)

    async def _message_loop(self) -> tuple[int, str]:
        """Process frames until the connection should close. Returns the close code and reason."""
        connection = self.admitted

        while connection.is_open:
            try:
                data = await asyncio.wait_for(
                    self.websocket.receive_text(),
                    timeout=self.receive_timeout,
                )
            except asyncio.TimeoutError:
                logger.info(
                    "Connection timed out (no messages)",
                    connection_id=connection.connection_id,
                    timeout=self.receive_timeout,
                )
                return WSCloseCode.NORMAL, "Connection timeout"
            except RuntimeError:
                if not connection.is_open:
                    # Closed by the gateway from another task
                    break
                raise

            if len(data.encode("utf-8")) > self.max_message_size:
                logger.warning(
                    "Message size exceeded limit",
                    connection_id=connection.connection_id,
                    size=len(data),
                    max_size=self.max_message_size,
                )
                return WSCloseCode.MESSAGE_TOO_BIG, "Message too large"

            if not await self.gateway.check_rate_limit(connection.connection_id):
                audit_rate_limit_event(
                    "ws_messages",
                    mask_user_id(connection.identity.id),
                    limit=self._rate_limit,
                    window=self._rate_window,
                    connection_id=connection.connection_id,
                )
                return WSCloseCode.RATE_LIMITED, "Rate limit exceeded"

            self.gateway.record_activity(connection.connection_id)

            if data == MSG_PING_PLAIN:
                await self._on_ping({})
                continue

            await self.handle_message(data)

        return WSCloseCode.NORMAL, ""

    async def handle_message(self, raw: str) -> None:
        """Parse and dispatch one client frame. Failures become error frames."""
        connection = self.admitted

        try:
            message = ClientMessage.model_validate(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError, TypeError):
            logger.debug(
                "Malformed client frame",
                connection_id=connection.connection_id,
                message=sanitize_log_data(raw),
            )
            await self._send_error(ValidationError("Malformed message"))
            return

        handler = self._handlers.get(message.type)
        if handler is None:
            logger.debug(
                "Unknown message type",
                connection_id=connection.connection_id,
                message_type=sanitize_log_data(message.type),
            )
            await self._send_error(ValidationError(f"Unknown message type: {message.type}"))
            return

        try:
            await handler(message.data)
        except PydanticValidationError as e:
            await self._send_error(ValidationError(_validation_message(e)))
        except RealtimeError as e:
            await self._send_error(e)
        except Exception as e:
            logger.error(
                "Message handler failed",
                connection_id=connection.connection_id,
                message_type=message.type,
                error=str(e),
                exc_info=True,
            )
            await self._send_error(RealtimeError("Internal error"))

    async def _send_error(self, error: RealtimeError) -> None:
        await self.gateway.send(self.admitted, MessageType.ERROR, error.to_payload())

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _on_location_report(self, data: dict[str, Any]) -> None:
        connection = self.admitted
        payload = LocationReportMessage.model_validate(data)
        report = LocationReport(
            courier_id=connection.identity.id,
            latitude=payload.latitude,
            longitude=payload.longitude,
            accuracy=payload.accuracy,
            order_id=payload.order_id,
        )
        await self.orchestrator.on_courier_location(connection.identity, report)

    async def _on_subscribe(self, data: dict[str, Any]) -> None:
        connection = self.admitted
        payload = OrderSubscriptionMessage.model_validate(data)
        await self.gateway.subscribe_to_order(connection.connection_id, payload.order_id)
        status = self.orchestrator.current_status(payload.order_id)
        await self.gateway.send(connection, MessageType.ORDER_SUBSCRIBED, {
            "orderId": payload.order_id,
            "currentStatus": status.value if status is not None else None,
        })

    async def _on_unsubscribe(self, data: dict[str, Any]) -> None:
        connection = self.admitted
        payload = OrderSubscriptionMessage.model_validate(data)
        await self.gateway.unsubscribe_from_order(connection.connection_id, payload.order_id)
        await self.gateway.send(connection, MessageType.ORDER_UNSUBSCRIBED, {
            "orderId": payload.order_id,
        })

    async def _on_status_report(self, data: dict[str, Any]) -> None:
        connection = self.admitted
        identity = connection.identity
        if not identity.is_courier:
            raise AuthorizationError("Only couriers can report status")
        payload = StatusReportMessage.model_validate(data)
        await self.orchestrator.on_courier_status_changed(identity.id, payload.status)

    async def _on_ping(self, data: dict[str, Any]) -> None:
        await self.gateway.send(self.admitted, MessageType.PONG, {"timestamp": isoformat(utcnow())})
