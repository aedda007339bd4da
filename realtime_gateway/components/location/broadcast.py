"""
Location Broadcast.

Accepts courier location reports, keeps the last-known location per
courier and republishes each accepted report as a `delivery:location`
event. The location table is owned here; entries are overwritten, never
appended, and forgotten when the courier's last connection closes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shared.config.logging import get_logger, mask_user_id
from realtime_gateway.components.core.errors import AuthorizationError
from realtime_gateway.components.events.types import DomainEvent, LocationReport

if TYPE_CHECKING:
    from realtime_gateway.components.auth.identity import SubscriberIdentity
    from realtime_gateway.components.broadcast.broadcaster import DeliveryReport, EventBroadcaster
    from realtime_gateway.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


class LocationBroadcast:
    def __init__(
        self,
        broadcaster: "EventBroadcaster",
        metrics: "MetricsCollector | None" = None,
    ) -> None:
        self._broadcaster = broadcaster
        self._metrics = metrics
        self._locations: dict[str, LocationReport] = {}

    async def report_location(
        self,
        identity: "SubscriberIdentity",
        report: LocationReport,
    ) -> "DeliveryReport | None":
        """
        Record and publish a courier location.

        The report's courier id is always the reporting identity's id.

        Returns:
            The broadcast DeliveryReport, or None if the report was dropped.

        Raises:
            AuthorizationError: If the identity is not a courier.
        """
        if not identity.is_courier:
            raise AuthorizationError(
                "Only couriers can report locations",
                identity_id=identity.id,
                role=identity.role.value,
            )

        if report.courier_id != identity.id:
            report = LocationReport(
                courier_id=identity.id,
                latitude=report.latitude,
                longitude=report.longitude,
                accuracy=report.accuracy,
                order_id=report.order_id,
                reported_at=report.reported_at,
            )

        if not report.in_range:
            logger.warning(
                "Dropping out-of-range location report",
                courier_id=mask_user_id(identity.id),
                latitude=report.latitude,
                longitude=report.longitude,
                accuracy=report.accuracy,
            )
            if self._metrics is not None:
                self._metrics.increment_domain("locations_dropped")
            return None

        self._locations[identity.id] = report
        if self._metrics is not None:
            self._metrics.increment_domain("locations_accepted")

        return await self._broadcaster.publish(DomainEvent.delivery_location(report))

    def get_location(self, courier_id: str) -> LocationReport | None:
        return self._locations.get(str(courier_id))

    def all_locations(self) -> dict[str, LocationReport]:
        """Snapshot of every courier's last-known location."""
        return dict(self._locations)

    def forget(self, courier_id: str) -> bool:
        """Drop a courier's last-known location. Returns True if one was stored."""
        removed = self._locations.pop(str(courier_id), None) is not None
        if removed:
            logger.debug("Forgot courier location", courier_id=mask_user_id(courier_id))
        return removed

    def get_stats(self) -> dict[str, int]:
        return {"couriers_tracked": len(self._locations)}
