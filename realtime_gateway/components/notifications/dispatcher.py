"""
Notification Dispatcher.

Mirrors selected domain events to a per-identity push channel, independent
of whether the identity currently holds a live connection. Owns the device
registry (one device per identity, re-registering replaces) and a bounded
history of recent attempts.

The dispatcher never raises for delivery problems: every outcome is a
SendResult.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, TYPE_CHECKING

from shared.config.logging import get_logger, mask_token, mask_user_id
from realtime_gateway.components.core.constants import WSConstants
from realtime_gateway.components.core.errors import ValidationError
from realtime_gateway.components.events.routing import notification_content
from realtime_gateway.components.events.types import EventType, isoformat, utcnow
from realtime_gateway.components.notifications.providers import PushProvider

if TYPE_CHECKING:
    from realtime_gateway.components.events.types import DomainEvent
    from realtime_gateway.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


class Platform(str, Enum):
    ANDROID = "android"
    IOS = "ios"


class SendReason:
    """Reasons attached to an unsent SendResult."""

    NO_DEVICE = "NO_DEVICE"
    NO_TEMPLATE = "NO_TEMPLATE"
    PROVIDER_ERROR = "PROVIDER_ERROR"


@dataclass(frozen=True, slots=True)
class DeviceRegistration:
    identity_id: str
    push_token: str
    platform: Platform
    registered_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.identity_id,
            "platform": self.platform.value,
            "registeredAt": isoformat(self.registered_at),
        }


@dataclass(frozen=True, slots=True)
class SendResult:
    sent: bool
    reason: str | None = None
    message_id: str | None = None
    provider: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent": self.sent,
            "reason": self.reason,
            "messageId": self.message_id,
            "provider": self.provider,
        }


@dataclass(frozen=True, slots=True)
class PushNotification:
    """One history entry."""

    identity_id: str
    platform: Platform
    title: str
    body: str
    data: dict[str, Any]
    result: SendResult
    sent_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.identity_id,
            "platform": self.platform.value,
            "title": self.title,
            "body": self.body,
            "data": dict(self.data),
            "sent": self.result.sent,
            "reason": self.result.reason,
            "sentAt": isoformat(self.sent_at),
        }


def _event_data(event: "DomainEvent") -> dict[str, Any]:
    """Push data payload: enough for the app to deep-link."""
    if event.type is EventType.NOTIFICATION:
        return dict(event.attributes.get("data") or {})

    data: dict[str, Any] = {"type": event.type.value}
    if event.order_id is not None:
        data["orderId"] = event.order_id
    if event.new_status is not None:
        data["status"] = event.new_status.value
    if event.courier_id is not None and event.type is EventType.ORDER_ASSIGNED:
        data["courierId"] = event.courier_id
    return data


class NotificationDispatcher:
    """
    Usage:
        dispatcher = NotificationDispatcher(MockPushProvider())
        dispatcher.register_device("42", "fcm-token", "android")
        result = await dispatcher.dispatch("42", event)
    """

    def __init__(
        self,
        provider: PushProvider,
        history_size: int = WSConstants.NOTIFICATION_HISTORY_SIZE,
        metrics: "MetricsCollector | None" = None,
    ) -> None:
        self._provider = provider
        self._metrics = metrics
        self._devices: dict[str, DeviceRegistration] = {}
        self._history: deque[PushNotification] = deque(maxlen=history_size)

    @property
    def provider(self) -> PushProvider:
        return self._provider

    # =========================================================================
    # Device registry
    # =========================================================================

    def register_device(
        self,
        identity_id: str,
        push_token: str,
        platform: str | Platform,
    ) -> DeviceRegistration:
        """
        Register (or replace) the device of an identity.

        Raises:
            ValidationError: Unknown platform or empty token.
        """
        try:
            parsed_platform = Platform(platform)
        except ValueError:
            raise ValidationError(
                f"Invalid platform {platform!r}. Must be one of: "
                + ", ".join(p.value for p in Platform)
            )
        if not push_token or not str(push_token).strip():
            raise ValidationError("Push token is required")

        registration = DeviceRegistration(
            identity_id=str(identity_id),
            push_token=str(push_token).strip(),
            platform=parsed_platform,
        )
        replaced = str(identity_id) in self._devices
        self._devices[registration.identity_id] = registration

        logger.info(
            "Device registered",
            identity_id=mask_user_id(identity_id),
            platform=parsed_platform.value,
            push_token=mask_token(registration.push_token),
            replaced=replaced,
        )
        return registration

    def unregister_device(self, identity_id: str) -> bool:
        """Returns True if a registration existed."""
        existed = self._devices.pop(str(identity_id), None) is not None
        if existed:
            logger.info("Device unregistered", identity_id=mask_user_id(identity_id))
        return existed

    def get_registration(self, identity_id: str) -> DeviceRegistration | None:
        return self._devices.get(str(identity_id))

    def device_count(self) -> int:
        return len(self._devices)

    # =========================================================================
    # Sending
    # =========================================================================

    async def dispatch(self, identity_id: str, event: "DomainEvent") -> SendResult:
        """Push the templated form of an event to an identity's device."""
        identity_id = str(identity_id)
        registration = self._devices.get(identity_id)
        if registration is None:
            return self._no_device(identity_id)

        content = notification_content(event, identity_id)
        if content is None:
            if self._metrics is not None:
                self._metrics.increment_push("no_template")
            logger.debug("No push template for event", event_type=event.type.value)
            return SendResult(sent=False, reason=SendReason.NO_TEMPLATE)

        return await self._send(registration, content.title, content.body, _event_data(event))

    async def send_to_user(
        self,
        identity_id: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> SendResult:
        """Push a free-form notification to an identity's device."""
        identity_id = str(identity_id)
        registration = self._devices.get(identity_id)
        if registration is None:
            return self._no_device(identity_id)
        return await self._send(registration, title, body, dict(data or {}))

    async def _send(
        self,
        registration: DeviceRegistration,
        title: str,
        body: str,
        data: dict[str, Any],
    ) -> SendResult:
        try:
            message_id = await self._provider.send(
                registration.identity_id,
                registration.push_token,
                registration.platform.value,
                title,
                body,
                data,
            )
            result = SendResult(sent=True, message_id=message_id, provider=self._provider.name)
            if self._metrics is not None:
                self._metrics.increment_push("sent")
        except Exception as e:
            logger.error(
                "Push provider failed",
                identity_id=mask_user_id(registration.identity_id),
                provider=self._provider.name,
                error=str(e),
            )
            result = SendResult(
                sent=False,
                reason=SendReason.PROVIDER_ERROR,
                provider=self._provider.name,
            )
            if self._metrics is not None:
                self._metrics.increment_push("failed")

        self._history.append(PushNotification(
            identity_id=registration.identity_id,
            platform=registration.platform,
            title=title,
            body=body,
            data=data,
            result=result,
        ))
        return result

    def _no_device(self, identity_id: str) -> SendResult:
        if self._metrics is not None:
            self._metrics.increment_push("no_device")
        logger.debug("No device registered", identity_id=mask_user_id(identity_id))
        return SendResult(sent=False, reason=SendReason.NO_DEVICE)

    # =========================================================================
    # Introspection
    # =========================================================================

    def history(self, limit: int = 50) -> list[PushNotification]:
        """Most recent attempts, newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._history))[:limit]

    def get_stats(self) -> dict[str, Any]:
        return {
            "provider": self._provider.name,
            "devices_registered": len(self._devices),
            "history_size": len(self._history),
            "history_capacity": self._history.maxlen,
        }

    async def close(self) -> None:
        await self._provider.close()
