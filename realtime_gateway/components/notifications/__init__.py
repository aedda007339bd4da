"""Push notification dispatch and providers."""

from realtime_gateway.components.notifications.dispatcher import (
    DeviceRegistration,
    NotificationDispatcher,
    Platform,
    PushNotification,
    SendReason,
    SendResult,
)
from realtime_gateway.components.notifications.providers import (
    FcmPushProvider,
    MockPushProvider,
    PushProvider,
    PushProviderError,
    create_push_provider,
)

__all__ = [
    "DeviceRegistration",
    "NotificationDispatcher",
    "Platform",
    "PushNotification",
    "SendReason",
    "SendResult",
    "FcmPushProvider",
    "MockPushProvider",
    "PushProvider",
    "PushProviderError",
    "create_push_provider",
]
