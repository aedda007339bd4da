"""
Push providers.

A PushProvider delivers one notification to one device token. Providers
raise PushProviderError on failure; the dispatcher turns that into a
PROVIDER_ERROR SendResult.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, TYPE_CHECKING

import httpx

from shared.config.logging import get_logger, mask_token, mask_user_id
from realtime_gateway.components.core.constants import WSConstants

if TYPE_CHECKING:
    from shared.config.settings import Settings

logger = get_logger(__name__)


class PushProviderError(Exception):
    """The provider could not deliver the notification."""


class PushProvider(ABC):
    """Abstract push transport."""

    name: str = "abstract"

    @abstractmethod
    async def send(
        self,
        identity_id: str,
        push_token: str,
        platform: str,
        title: str,
        body: str,
        data: dict[str, Any],
    ) -> str:
        """
        Deliver a notification.

        Returns:
            Provider message id.

        Raises:
            PushProviderError: On any delivery failure.
        """

    async def close(self) -> None:
        """Release provider resources."""
        return None


class MockPushProvider(PushProvider):
    """Development provider: logs the notification and keeps the most recent ones in memory."""

    name = "mock"

    def __init__(self, max_recorded: int = WSConstants.NOTIFICATION_HISTORY_SIZE) -> None:
        self.sent: deque[dict[str, Any]] = deque(maxlen=max_recorded)

    async def send(
        self,
        identity_id: str,
        push_token: str,
        platform: str,
        title: str,
        body: str,
        data: dict[str, Any],
    ) -> str:
        message_id = f"mock-{uuid.uuid4().hex[:12]}"
        self.sent.append({
            "messageId": message_id,
            "identityId": identity_id,
            "platform": platform,
            "title": title,
            "body": body,
            "data": dict(data),
        })
        logger.info(
            "Mock push notification",
            identity_id=mask_user_id(identity_id),
            platform=platform,
            title=title,
            body=body,
        )
        return message_id


class FcmPushProvider(PushProvider):
    """Firebase Cloud Messaging over the legacy HTTP endpoint."""

    name = "fcm"

    def __init__(
        self,
        server_key: str,
        endpoint: str = "https://fcm.googleapis.com/fcm/send",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not server_key:
            raise ValueError("FCM server key is required")
        self._server_key = server_key
        self._endpoint = endpoint
        self._timeout = timeout
        self._client = client
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None and not self._client.is_closed:
            return self._client

        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=self._timeout,
                    limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                )
        return self._client

    async def send(
        self,
        identity_id: str,
        push_token: str,
        platform: str,
        title: str,
        body: str,
        data: dict[str, Any],
    ) -> str:
        payload = {
            "to": push_token,
            "notification": {"title": title, "body": body, "sound": "default"},
            # FCM data values must be strings
            "data": {key: str(value) for key, value in data.items()},
            "priority": "high",
        }
        headers = {"Authorization": f"key={self._server_key}"}

        client = await self._get_client()
        try:
            response = await client.post(self._endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise PushProviderError(f"FCM request failed: {e}") from e

        if response.status_code != 200:
            raise PushProviderError(f"FCM returned HTTP {response.status_code}")

        try:
            result = response.json()
        except ValueError as e:
            raise PushProviderError("FCM returned a non-JSON body") from e

        if result.get("failure"):
            errors = [r.get("error") for r in result.get("results", []) if r.get("error")]
            raise PushProviderError(f"FCM rejected token {mask_token(push_token)}: {errors}")

        results = result.get("results") or [{}]
        return str(results[0].get("message_id") or result.get("multicast_id") or "")

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


def create_push_provider(settings: "Settings") -> PushProvider:
    """
    Build the provider selected by `push_mode`.

    `fcm` without a server key degrades to the mock provider with a warning.
    """
    mode = settings.push_mode.lower()
    if mode == "fcm":
        if settings.fcm_server_key:
            logger.info("Push provider initialized", mode="fcm")
            return FcmPushProvider(
                server_key=settings.fcm_server_key,
                endpoint=settings.fcm_endpoint,
                timeout=settings.push_timeout,
            )
        logger.warning("PUSH_MODE is fcm but FCM_SERVER_KEY is empty, using mock provider")
    elif mode != "mock":
        logger.warning("Unknown PUSH_MODE, using mock provider", push_mode=settings.push_mode)

    logger.info("Push provider initialized", mode="mock")
    return MockPushProvider(max_recorded=settings.notification_history_size)
