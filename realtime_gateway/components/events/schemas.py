"""
Inbound event payloads.

Pydantic models for the order-service events accepted over HTTP
(`/api/mobile/events/*`) and the Redis inbound channel. Field names are
camelCase on the wire; snake_case is accepted too.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from realtime_gateway.components.events.types import Order


class _IngressModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def parse_order(data: dict[str, Any] | None) -> Order | None:
    """Order snapshot from an event payload. Raises ValueError when malformed."""
    if data is None:
        return None
    return Order.from_dict(data)


class OrderCreatedEvent(_IngressModel):
    order: dict[str, Any]


class StatusChangedEvent(_IngressModel):
    order_id: int = Field(alias="orderId", gt=0)
    previous_status: str = Field(alias="previousStatus")
    new_status: str = Field(alias="newStatus")
    order: dict[str, Any] | None = None
    courier_id: int | str | None = Field(default=None, alias="courierId")

    @property
    def courier(self) -> str | None:
        return str(self.courier_id) if self.courier_id is not None else None


class CourierAssignedEvent(_IngressModel):
    order_id: int = Field(alias="orderId", gt=0)
    courier_id: int | str = Field(alias="courierId")
    order: dict[str, Any] | None = None

    @property
    def courier(self) -> str:
        return str(self.courier_id)
