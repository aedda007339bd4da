"""
HTTP exceptions for the gateway's REST surface.

Each class fixes the status code and log level; raising one logs it once
with the keyword context given to the constructor:

    raise NotFoundError("Order", order_id)
    raise ForbiddenError("track this order", order_id=order_id)
    raise ConflictError(error.to_payload(), order_id=order_id)

FastAPI renders them as {"detail": ...}. `detail` may be a mapping.
"""

from typing import Any

from fastapi import HTTPException, status

from shared.config.logging import get_logger

logger = get_logger(__name__)


class AppException(HTTPException):
    """Base class. Subclasses override `status_code` and `log_level`."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    log_level: str = "warning"

    def __init__(
        self,
        detail: Any,
        headers: dict[str, str] | None = None,
        status_code: int | None = None,
        **log_context: Any,
    ) -> None:
        code = status_code if status_code is not None else type(self).status_code
        getattr(logger, self.log_level)(
            f"HTTP {code}: {detail}" if isinstance(detail, str) else f"HTTP {code}",
            **log_context,
        )
        super().__init__(status_code=code, detail=detail, headers=headers)


class ValidationError(AppException):
    """400. The request is well-formed JSON but semantically invalid."""

    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, detail: str = "Authentication required", **log_context: Any) -> None:
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"}, **log_context)


class ForbiddenError(AppException):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, action: str | None = None, **log_context: Any) -> None:
        detail = f"Not authorized to {action}" if action else "Access denied"
        super().__init__(detail, **log_context)


class InsufficientRoleError(ForbiddenError):
    def __init__(self, required_roles: list[str], **log_context: Any) -> None:
        super().__init__(
            f"perform this action (requires role: {', '.join(required_roles)})",
            **log_context,
        )


class NotFoundError(AppException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: int | str | None = None, **log_context: Any) -> None:
        detail = f"{entity} {entity_id} not found" if entity_id is not None else f"{entity} not found"
        super().__init__(detail, **log_context)


class ConflictError(AppException):
    """409. Used for rejected order transitions; `detail` carries the allowed statuses."""

    status_code = status.HTTP_409_CONFLICT


class ExternalServiceError(AppException):
    """
    502 when a dependency answered badly, 503 when it could not be reached.

        raise ExternalServiceError("order-service", is_unavailable=True, retry_after=5)
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    log_level = "error"

    def __init__(
        self,
        service: str,
        is_unavailable: bool = False,
        retry_after: int | None = None,
        **log_context: Any,
    ) -> None:
        if is_unavailable:
            code, detail = status.HTTP_503_SERVICE_UNAVAILABLE, f"Service {service} temporarily unavailable"
        else:
            code, detail = status.HTTP_502_BAD_GATEWAY, f"Error communicating with {service}"
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(detail, headers=headers, status_code=code, service=service, **log_context)
