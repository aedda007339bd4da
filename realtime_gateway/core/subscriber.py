"""
Redis inbound event channel.

Optional. When `redis_events_enabled` is set, the gateway subscribes to
`redis_events_channel` and turns order-service events into orchestrator
calls:

    {"event": "order.created", "order": {...}}
    {"event": "order.status_changed", "orderId": 42, "previousStatus": "accepted",
     "newStatus": "in_progress", "order": {...}}
    {"event": "order.courier_assigned", "orderId": 42, "courierId": "7"}

Malformed messages and rejected transitions are logged and skipped. The
subscriber reconnects with exponential backoff and jitter, and gives up
after `redis_max_reconnect_attempts` consecutive failures.
"""

from __future__ import annotations

import asyncio
import json
import random
from typing import Any, Callable, TYPE_CHECKING

import redis.asyncio as redis
import redis.exceptions
from pydantic import ValidationError as PydanticValidationError

from shared.config.logging import get_logger
from shared.config.settings import Settings, get_settings
from shared.infrastructure.correlation import bind_request_id
from realtime_gateway.components.core.context import sanitize_log_data
from realtime_gateway.components.core.errors import RealtimeError
from realtime_gateway.components.events.schemas import (
    CourierAssignedEvent,
    OrderCreatedEvent,
    StatusChangedEvent,
    parse_order,
)
from realtime_gateway.components.events.types import Order

if TYPE_CHECKING:
    from realtime_gateway.orchestrator import RealtimeOrchestrator

logger = get_logger(__name__)


def calculate_delay_with_jitter(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter_factor: float = 0.25,
) -> float:
    """
    Exponential backoff with jitter.

        delay = min(base_delay * 2 ** attempt, max_delay) * (1 +/- jitter_factor)

    Args:
        attempt: Attempt number (0-indexed).
    """
    delay = min(base_delay * (2 ** attempt), max_delay)
    jitter = delay * jitter_factor
    return max(0.0, delay + random.uniform(-jitter, jitter))


class OrderEventSubscriber:
    """
    Usage:
        subscriber = OrderEventSubscriber(orchestrator)
        task = asyncio.create_task(subscriber.run(), name="redis_subscriber")
    """

    def __init__(
        self,
        orchestrator: "RealtimeOrchestrator",
        settings: Settings | None = None,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._orchestrator = orchestrator
        self._channel = settings.redis_events_channel
        self._max_attempts = settings.redis_max_reconnect_attempts
        self._base_delay = settings.redis_reconnect_base_delay
        self._max_delay = settings.redis_reconnect_max_delay
        self._max_message_size = settings.ws_max_message_size
        self._client_factory = client_factory or (
            lambda: redis.from_url(settings.redis_url, decode_responses=True)
        )

        self._handlers = {
            "order.created": self._on_order_created,
            "order.status_changed": self._on_status_changed,
            "order.courier_assigned": self._on_courier_assigned,
        }
        self._processed = 0
        self._invalid = 0
        self._rejected = 0
        self._reconnects = 0

    # =========================================================================
    # Message handling
    # =========================================================================

    async def handle_message(self, raw: str | bytes) -> bool:
        """
        Process one channel message.

        Returns:
            True if it reached the orchestrator successfully.
        """
        bind_request_id(prefix="redis-")
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")

        if len(raw) > self._max_message_size:
            self._invalid += 1
            logger.warning("Inbound event too large", size=len(raw))
            return False

        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            self._invalid += 1
            logger.warning("Inbound event is not JSON", message=sanitize_log_data(raw))
            return False

        event_name = message.get("event") if isinstance(message, dict) else None
        handler = self._handlers.get(event_name) if isinstance(event_name, str) else None
        if handler is None:
            self._invalid += 1
            logger.warning("Unknown inbound event", event=sanitize_log_data(str(event_name)))
            return False

        try:
            await handler(message)
        except (PydanticValidationError, ValueError) as e:
            self._invalid += 1
            logger.warning("Malformed inbound event", event=event_name, error=str(e))
            return False
        except RealtimeError as e:
            self._rejected += 1
            logger.warning("Inbound event rejected", event=event_name, code=e.code, error=e.message)
            return False

        self._processed += 1
        return True

    async def _on_order_created(self, message: dict[str, Any]) -> None:
        payload = OrderCreatedEvent.model_validate(message)
        await self._orchestrator.on_order_created(Order.from_dict(payload.order))

    async def _on_status_changed(self, message: dict[str, Any]) -> None:
        payload = StatusChangedEvent.model_validate(message)
        await self._orchestrator.on_status_changed(
            payload.order_id,
            payload.previous_status,
            payload.new_status,
            order=parse_order(payload.order),
            courier_id=payload.courier,
        )

    async def _on_courier_assigned(self, message: dict[str, Any]) -> None:
        payload = CourierAssignedEvent.model_validate(message)
        await self._orchestrator.on_courier_assigned(
            payload.order_id,
            payload.courier,
            order=parse_order(payload.order),
        )

    # =========================================================================
    # Subscription loop
    # =========================================================================

    async def run(self) -> None:
        """
        Listen until cancelled.

        Raises:
            RuntimeError: If the reconnect attempts are exhausted.
        """
        attempts = 0
        client = self._client_factory()
        pubsub = client.pubsub()

        try:
            while True:
                try:
                    if not pubsub.subscribed:
                        await pubsub.subscribe(self._channel)
                        logger.info("Redis subscriber started", channel=self._channel)

                    msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if msg is None:
                        continue

                    attempts = 0
                    if msg.get("type") == "message":
                        await self.handle_message(msg["data"])

                except redis.exceptions.TimeoutError:
                    continue

                except redis.exceptions.ConnectionError as e:
                    attempts += 1
                    if attempts > self._max_attempts:
                        logger.error(
                            "Max reconnection attempts exceeded, subscriber giving up",
                            attempts=attempts,
                            max_attempts=self._max_attempts,
                        )
                        raise RuntimeError(
                            f"Redis subscriber failed after {attempts} reconnection attempts"
                        ) from e

                    delay = calculate_delay_with_jitter(attempts - 1, self._base_delay, self._max_delay)
                    logger.warning(
                        "Redis connection error, reconnecting",
                        error=str(e),
                        attempt=attempts,
                        delay=round(delay, 2),
                    )
                    await asyncio.sleep(delay)

                    self._reconnects += 1
                    await self._close(client, pubsub)
                    client = self._client_factory()
                    pubsub = client.pubsub()

        except asyncio.CancelledError:
            logger.info("Redis subscriber cancelled", processed=self._processed)
            raise
        finally:
            await self._close(client, pubsub)

    async def _close(self, client: Any, pubsub: Any) -> None:
        try:
            await pubsub.aclose()
            await client.aclose()
        except (redis.exceptions.RedisError, OSError) as e:
            logger.debug("Error closing Redis subscriber", error=str(e))

    def get_stats(self) -> dict[str, Any]:
        return {
            "channel": self._channel,
            "processed": self._processed,
            "invalid": self._invalid,
            "rejected": self._rejected,
            "reconnects": self._reconnects,
        }
