"""
Mobile API router.

HTTP surface for the apps and for the order service:
device registration, tracking lookups, notification tooling, and the
orchestrator ingress (`/events/*`) the order service calls after it has
committed a change.

Components are read from app.state, wired by create_app().
"""

from typing import Any, Literal

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from shared.config.logging import get_logger, mask_user_id
from shared.config.settings import get_settings
from shared.security.auth import get_bearer_token
from shared.security.rate_limit import limiter
from shared.utils.exceptions import (
    ConflictError,
    ExternalServiceError,
    ForbiddenError,
    InsufficientRoleError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from realtime_gateway.components.auth.identity import Permission, SubscriberIdentity
from realtime_gateway.components.core.constants import MessageType
from realtime_gateway.components.core.errors import (
    InvalidTransitionError,
    OrderLookupError,
    ValidationError as RealtimeValidationError,
)
from realtime_gateway.components.endpoints.gateway import can_access_order
from realtime_gateway.components.events.schemas import (
    CourierAssignedEvent,
    OrderCreatedEvent,
    StatusChangedEvent,
    parse_order,
)
from realtime_gateway.components.events.types import EventType, Order
from realtime_gateway.orchestrator import RealtimeOrchestrator

logger = get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/api/mobile", tags=["mobile"])


# =============================================================================
# Dependencies
# =============================================================================


def get_orchestrator(request: Request) -> RealtimeOrchestrator:
    return request.app.state.orchestrator


async def current_identity(
    request: Request,
    authorization: str | None = Header(default=None),
) -> SubscriberIdentity:
    """Verify the bearer token with the same strategy the WebSocket uses."""
    token = get_bearer_token(authorization)
    result = await request.app.state.auth_strategy.authenticate(token)
    if not result.success or result.identity is None:
        raise UnauthorizedError(result.error_message or "Authentication failed")
    return result.identity


def require_admin(identity: SubscriberIdentity = Depends(current_identity)) -> SubscriberIdentity:
    if not identity.is_admin:
        raise InsufficientRoleError(["admin"], user_id=mask_user_id(identity.id))
    return identity


def require_publisher(identity: SubscriberIdentity = Depends(current_identity)) -> SubscriberIdentity:
    if not identity.has_permission(Permission.PUBLISH_EVENTS):
        raise ForbiddenError("publish order events", user_id=mask_user_id(identity.id))
    return identity


def _ok(data: Any, **extra: Any) -> dict[str, Any]:
    return {"success": True, "data": data, **extra}


def _parse_order_or_400(data: dict[str, Any] | None) -> Order | None:
    try:
        return parse_order(data)
    except ValueError as e:
        raise ValidationError(f"Invalid order: {e}")


# =============================================================================
# Request schemas
# =============================================================================


class RegisterDeviceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    push_token: str = Field(alias="pushToken", min_length=1)
    platform: str


class TestNotificationRequest(BaseModel):
    title: str = "Test Notification"
    body: str = "This is a test notification"
    data: dict[str, Any] = Field(default_factory=lambda: {"type": "test"})


class AnnouncementRequest(BaseModel):
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    severity: Literal["info", "warning", "critical"] = "info"


# =============================================================================
# Devices
# =============================================================================


@router.post("/device/register")
@limiter.limit(settings.mobile_rate_limit)
async def register_device(
    request: Request,
    body: RegisterDeviceRequest,
    identity: SubscriberIdentity = Depends(current_identity),
) -> dict[str, Any]:
    dispatcher = request.app.state.dispatcher
    try:
        registration = dispatcher.register_device(identity.id, body.push_token, body.platform)
    except RealtimeValidationError as e:
        raise ValidationError(e.message, platform=body.platform)
    return _ok(registration.to_dict())


@router.delete("/device/unregister")
@limiter.limit(settings.mobile_rate_limit)
async def unregister_device(
    request: Request,
    identity: SubscriberIdentity = Depends(current_identity),
) -> dict[str, Any]:
    existed = request.app.state.dispatcher.unregister_device(identity.id)
    return _ok({"unregistered": existed})


# =============================================================================
# WebSocket and tracking
# =============================================================================


@router.get("/websocket/info")
async def websocket_info(
    request: Request,
    identity: SubscriberIdentity = Depends(current_identity),
) -> dict[str, Any]:
    registry = request.app.state.registry
    return _ok({
        "url": settings.public_ws_url,
        "connected": await registry.count_for(identity.id) > 0,
        "auth": {
            "method": "token",
            "description": "Pass the JWT as ?token=, an Authorization: Bearer header, or a token cookie",
        },
        "events": [event_type.value for event_type in EventType],
        "clientMessages": [
            MessageType.LOCATION_REPORT,
            MessageType.ORDER_SUBSCRIBE,
            MessageType.ORDER_UNSUBSCRIBE,
            MessageType.STATUS_REPORT,
            MessageType.PING,
        ],
    })


@router.get("/courier/location/{courier_id}")
async def courier_location(
    request: Request,
    courier_id: str,
    identity: SubscriberIdentity = Depends(current_identity),
) -> dict[str, Any]:
    if not identity.is_admin and identity.id != courier_id:
        raise ForbiddenError("view this courier's location", user_id=mask_user_id(identity.id))

    location = request.app.state.location.get_location(courier_id)
    if location is None:
        raise NotFoundError("Courier location", courier_id)
    return _ok(location.to_dict())


@router.get("/couriers/locations")
async def all_courier_locations(
    request: Request,
    identity: SubscriberIdentity = Depends(require_admin),
) -> dict[str, Any]:
    locations = [report.to_dict() for report in request.app.state.location.all_locations().values()]
    return _ok(locations, count=len(locations))


@router.get("/order/{order_id}/tracking")
async def order_tracking(
    request: Request,
    order_id: int,
    identity: SubscriberIdentity = Depends(current_identity),
    orchestrator: RealtimeOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    try:
        order = await request.app.state.orders.get_order(order_id)
    except OrderLookupError:
        raise ExternalServiceError("order-service", is_unavailable=True, retry_after=5)

    if order is None:
        raise NotFoundError("Order", order_id)
    if not can_access_order(identity, order):
        raise ForbiddenError("track this order", user_id=mask_user_id(identity.id), order_id=order_id)

    status = orchestrator.current_status(order_id) or order.status
    courier_location = None
    if order.courier_id:
        report = request.app.state.location.get_location(order.courier_id)
        courier_location = report.to_dict() if report is not None else None

    return _ok({
        "order": order.to_dict(),
        "currentStatus": status.value,
        "courierLocation": courier_location,
        "webSocketSubscription": f"order:{order_id}",
        "tracking": {
            "canTrack": order.courier_id is not None,
            "status": status.value,
        },
    })


@router.get("/realtime/stats")
async def realtime_stats(
    identity: SubscriberIdentity = Depends(require_admin),
    orchestrator: RealtimeOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return _ok(orchestrator.get_statistics())


# =============================================================================
# Notifications and announcements
# =============================================================================


@router.post("/notification/test")
@limiter.limit(settings.mobile_rate_limit)
async def send_test_notification(
    request: Request,
    body: TestNotificationRequest,
    identity: SubscriberIdentity = Depends(current_identity),
    orchestrator: RealtimeOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    report, result = await orchestrator.notify_user(identity.id, body.title, body.body, body.data)
    return _ok({"push": result.to_dict(), "live": report.to_dict()})


@router.get("/notifications/history")
async def notification_history(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    identity: SubscriberIdentity = Depends(require_admin),
) -> dict[str, Any]:
    history = [entry.to_dict() for entry in request.app.state.dispatcher.history(limit)]
    return _ok(history, count=len(history))


@router.post("/announcement")
@limiter.limit(settings.mobile_rate_limit)
async def broadcast_announcement(
    request: Request,
    body: AnnouncementRequest,
    identity: SubscriberIdentity = Depends(require_admin),
    orchestrator: RealtimeOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    report = await orchestrator.broadcast_announcement(body.title, body.message, body.severity)
    logger.info("Announcement sent via API", admin_id=mask_user_id(identity.id))
    return _ok(report.to_dict())


# =============================================================================
# Orchestrator ingress (order service)
# =============================================================================


@router.post("/events/order-created")
async def order_created(
    body: OrderCreatedEvent,
    identity: SubscriberIdentity = Depends(require_publisher),
    orchestrator: RealtimeOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    try:
        order = Order.from_dict(body.order)
    except ValueError as e:
        raise ValidationError(f"Invalid order: {e}")
    report = await orchestrator.on_order_created(order)
    return _ok(report.to_dict())


@router.post("/events/status-changed")
async def status_changed(
    body: StatusChangedEvent,
    identity: SubscriberIdentity = Depends(require_publisher),
    orchestrator: RealtimeOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    order = _parse_order_or_400(body.order)
    try:
        reports = await orchestrator.on_status_changed(
            body.order_id,
            body.previous_status,
            body.new_status,
            order=order,
            actor=identity,
            courier_id=body.courier,
        )
    except InvalidTransitionError as e:
        raise ConflictError(e.to_payload(), order_id=body.order_id)
    return _ok([report.to_dict() for report in reports])


@router.post("/events/courier-assigned")
async def courier_assigned(
    body: CourierAssignedEvent,
    identity: SubscriberIdentity = Depends(require_publisher),
    orchestrator: RealtimeOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    order = _parse_order_or_400(body.order)
    try:
        report = await orchestrator.on_courier_assigned(body.order_id, body.courier, order=order)
    except RealtimeValidationError as e:
        raise ValidationError(e.message)
    return _ok(report.to_dict())
