"""
Order Lifecycle State Machine.

Validates status transitions and emits the domain events for each accepted
one. It persists nothing: the order service commits the new status before
calling in, and passes the current status explicitly.

Main path:
    received -> accepted -> in_progress -> out_for_delivery -> delivered

Optional pickup steps:
    in_progress -> ready_for_pickup -> assigned -> out_for_delivery
    ready_for_pickup -> out_for_delivery

Any non-terminal status may move to cancelled. delivered and cancelled are
terminal.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from shared.config.logging import get_logger
from realtime_gateway.components.auth.identity import SubscriberIdentity
from realtime_gateway.components.core.errors import InvalidTransitionError
from realtime_gateway.components.events.types import DomainEvent, Order, OrderStatus

logger = get_logger(__name__)


ALLOWED_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = MappingProxyType({
    OrderStatus.RECEIVED: frozenset({OrderStatus.ACCEPTED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.IN_PROGRESS}),
    OrderStatus.IN_PROGRESS: frozenset({
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.OUT_FOR_DELIVERY,
    }),
    OrderStatus.READY_FOR_PICKUP: frozenset({
        OrderStatus.ASSIGNED,
        OrderStatus.OUT_FOR_DELIVERY,
    }),
    OrderStatus.ASSIGNED: frozenset({OrderStatus.OUT_FOR_DELIVERY}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
})

# Declaration order of the enum, used to list allowed states deterministically
_STATUS_ORDER = {status: index for index, status in enumerate(OrderStatus)}


def allowed_transitions(status: OrderStatus) -> list[OrderStatus]:
    """Forward states reachable from `status` (cancellation is implicit and not listed)."""
    return sorted(ALLOWED_TRANSITIONS[status], key=_STATUS_ORDER.__getitem__)


def is_terminal(status: OrderStatus) -> bool:
    return status.is_terminal


def is_valid_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    if current.is_terminal:
        return False
    if requested is OrderStatus.CANCELLED:
        return True
    return requested in ALLOWED_TRANSITIONS[current]


def _parse_status(value: OrderStatus | str) -> OrderStatus | None:
    try:
        return OrderStatus(value)
    except ValueError:
        return None


class OrderStateMachine:
    """
    Stateless transition validator.

    Usage:
        events = machine.transition(42, "accepted", "in_progress", actor)
    """

    def transition(
        self,
        order_id: int,
        current_status: OrderStatus | str,
        requested_status: OrderStatus | str,
        actor: SubscriberIdentity | None = None,
        courier_id: str | None = None,
        order: Order | None = None,
    ) -> list[DomainEvent]:
        """
        Validate a transition and build its events.

        Returns:
            [order:status] for ordinary transitions, or
            [order:status, order:assigned] when moving to `assigned`.

        Raises:
            InvalidTransitionError: If the transition is not allowed, a
                status is unknown, or `assigned` is requested without a courier.
        """
        current = _parse_status(current_status)
        requested = _parse_status(requested_status)

        if current is None or requested is None:
            allowed = [s.value for s in allowed_transitions(current)] if current else []
            raise self._reject(
                order_id, str(current_status), str(requested_status), allowed,
                reason="Unknown order status",
            )

        if not is_valid_transition(current, requested):
            raise self._reject(
                order_id, current.value, requested.value,
                [s.value for s in allowed_transitions(current)],
            )

        assigned_courier = courier_id or (order.courier_id if order else None)
        if requested is OrderStatus.ASSIGNED and not assigned_courier:
            raise self._reject(
                order_id, current.value, requested.value,
                [s.value for s in allowed_transitions(current)],
                reason="Transition to 'assigned' requires a courier",
            )

        snapshot = order.with_status(requested, courier_id=assigned_courier) if order else None
        events = [
            DomainEvent.order_status(
                order_id,
                previous_status=current,
                new_status=requested,
                order=snapshot,
                courier_id=assigned_courier,
            )
        ]
        if requested is OrderStatus.ASSIGNED:
            events.append(DomainEvent.order_assigned(order_id, assigned_courier, order=snapshot))

        logger.info(
            "Order transition accepted",
            order_id=order_id,
            previous_status=current.value,
            new_status=requested.value,
            actor_id=actor.id if actor else None,
        )
        return events

    def _reject(
        self,
        order_id: int,
        current: str,
        requested: str,
        allowed: list[str],
        reason: str | None = None,
    ) -> InvalidTransitionError:
        logger.warning(
            "Order transition rejected",
            order_id=order_id,
            current_status=current,
            requested_status=requested,
            allowed=allowed,
            reason=reason,
        )
        return InvalidTransitionError(order_id, current, requested, allowed, reason=reason)
