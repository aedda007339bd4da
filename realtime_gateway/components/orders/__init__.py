"""
Order lifecycle: state machine and order lookup.
"""

from realtime_gateway.components.orders.state_machine import (
    ALLOWED_TRANSITIONS,
    OrderStateMachine,
    allowed_transitions,
    is_terminal,
    is_valid_transition,
)
from realtime_gateway.components.orders.repository import (
    HttpOrderRepository,
    InMemoryOrderRepository,
    OrderRepository,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "HttpOrderRepository",
    "InMemoryOrderRepository",
    "OrderRepository",
    "OrderStateMachine",
    "allowed_transitions",
    "is_terminal",
    "is_valid_transition",
]
