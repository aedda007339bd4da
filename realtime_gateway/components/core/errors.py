"""
Error taxonomy for the realtime gateway.

Every error carries a machine-readable `code` that is sent to clients in
`error` frames and used as the audit reason.
"""

from __future__ import annotations

from typing import Any

from realtime_gateway.components.core.constants import WSCloseCode


class RealtimeError(Exception):
    """Base class for gateway errors."""

    code: str = "REALTIME_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict[str, Any]:
        """Error frame payload sent to the client."""
        return {"code": self.code, "message": self.message}


class AuthError(RealtimeError):
    """Handshake rejected. The connection is never admitted."""

    code = "AUTH_FAILED"
    default_close_code: int = WSCloseCode.AUTH_FAILED

    def __init__(self, message: str, close_code: int | None = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.close_code = close_code if close_code is not None else self.default_close_code


class ConnectionLimitError(AuthError):
    """Handshake verified but a connection limit is reached."""

    code = "CONNECTION_LIMIT"
    default_close_code = WSCloseCode.RATE_LIMITED


class AuthorizationError(RealtimeError):
    """Authenticated, but not permitted to perform the requested operation."""

    code = "FORBIDDEN"


class OrderNotFoundError(RealtimeError):
    """The referenced order is unknown to the order service."""

    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: int) -> None:
        super().__init__(f"Order {order_id} not found", order_id=order_id)
        self.order_id = order_id


class InvalidTransitionError(RealtimeError):
    """Status change rejected. No event is emitted."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        order_id: int,
        current_status: str,
        requested_status: str,
        allowed: list[str],
        reason: str | None = None,
    ) -> None:
        message = reason or (
            f"Cannot transition order {order_id} from '{current_status}' "
            f"to '{requested_status}'"
        )
        super().__init__(message, order_id=order_id)
        self.order_id = order_id
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed = allowed

    def to_payload(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "currentStatus": self.current_status,
            "requestedStatus": self.requested_status,
            "allowed": list(self.allowed),
        }


class ValidationError(RealtimeError):
    """Malformed inbound payload."""

    code = "VALIDATION_ERROR"


class DeliveryFailure(RealtimeError):
    """
    A single connection's send failed or timed out.

    Recorded in DeliveryReport.failures, never raised out of publish().
    """

    code = "DELIVERY_FAILED"

    def __init__(self, connection_id: str, reason: str) -> None:
        super().__init__(f"Delivery to {connection_id} failed: {reason}")
        self.connection_id = connection_id
        self.reason = reason


class OrderLookupError(RealtimeError):
    """The order service could not be reached or returned garbage."""

    code = "ORDER_LOOKUP_FAILED"
