"""Gateway infrastructure: the Redis inbound event channel."""

from realtime_gateway.core.subscriber import OrderEventSubscriber, calculate_delay_with_jitter

__all__ = ["OrderEventSubscriber", "calculate_delay_with_jitter"]
