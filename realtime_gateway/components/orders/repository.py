"""
Order lookup.

The gateway never owns orders. It asks the order service for a snapshot when
it needs to authorize an order-room subscription or answer a tracking query.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import httpx

from shared.config.logging import get_logger
from realtime_gateway.components.core.errors import OrderLookupError
from realtime_gateway.components.events.types import Order

logger = get_logger(__name__)


class OrderRepository(Protocol):
    """Read access to orders owned by the order service."""

    async def get_order(self, order_id: int) -> Order | None: ...


class InMemoryOrderRepository:
    """
    Process-local order snapshots.

    Used when no order service URL is configured: the orchestrator records
    every order snapshot it is handed, which is enough to authorize
    subscriptions for orders announced through it.
    """

    def __init__(self, orders: list[Order] | None = None) -> None:
        self._orders: dict[int, Order] = {order.id: order for order in orders or []}

    async def get_order(self, order_id: int) -> Order | None:
        return self._orders.get(order_id)

    def upsert(self, order: Order) -> None:
        self._orders[order.id] = order

    def discard(self, order_id: int) -> None:
        self._orders.pop(order_id, None)

    def __len__(self) -> int:
        return len(self._orders)


class HttpOrderRepository:
    """
    Order lookup over HTTP: GET {base_url}/orders/{order_id}.

    404 maps to None; transport errors and other statuses raise
    OrderLookupError so callers fail closed.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 3.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None and not self._client.is_closed:
            return self._client

        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=self.timeout,
                    limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                )
        return self._client

    async def get_order(self, order_id: int) -> Order | None:
        client = await self._get_client()
        try:
            response = await client.get(f"{self.base_url}/orders/{order_id}")
        except httpx.HTTPError as e:
            logger.error("Order service request failed", order_id=order_id, error=str(e))
            raise OrderLookupError(f"Order service unavailable: {e}", order_id=order_id) from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.error(
                "Order service returned unexpected status",
                order_id=order_id,
                status_code=response.status_code,
            )
            raise OrderLookupError(
                f"Order service returned {response.status_code}", order_id=order_id
            )

        try:
            return Order.from_dict(response.json())
        except ValueError as e:
            logger.error("Order service returned malformed order", order_id=order_id, error=str(e))
            raise OrderLookupError(f"Malformed order payload: {e}", order_id=order_id) from e

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
