"""Courier location tracking and republishing."""

from realtime_gateway.components.location.broadcast import LocationBroadcast

__all__ = ["LocationBroadcast"]
