"""
Tests for courier location tracking.
"""

import pytest

from realtime_gateway.components.core.errors import AuthorizationError
from realtime_gateway.components.events.types import LocationReport
from tests.conftest import COURIER, CUSTOMER


class TestLocationBroadcast:
    """report_location() storage and fan-out."""

    @pytest.mark.asyncio
    async def test_report_updates_last_known_location_and_reaches_admins(self, components):
        admin = await components.connect("admin-token")
        report = LocationReport("k1", 59.33, 18.06, accuracy=5)

        delivery = await components.location.report_location(COURIER, report)

        assert delivery.connections_reached == 1
        assert components.location.get_location("k1") == report
        frame = components.transport(admin).of_type("delivery:location")[0]
        assert frame["data"]["courierId"] == "k1"
        assert frame["data"]["latitude"] == 59.33

    @pytest.mark.asyncio
    async def test_latest_report_overwrites(self, components):
        await components.location.report_location(COURIER, LocationReport("k1", 1.0, 1.0))
        await components.location.report_location(COURIER, LocationReport("k1", 2.0, 2.0))

        assert components.location.get_location("k1").latitude == 2.0
        assert components.location.get_stats() == {"couriers_tracked": 1}

    @pytest.mark.asyncio
    async def test_only_couriers_may_report(self, components):
        with pytest.raises(AuthorizationError):
            await components.location.report_location(CUSTOMER, LocationReport("c1", 1.0, 1.0))
        assert components.location.all_locations() == {}

    @pytest.mark.asyncio
    async def test_courier_id_is_forced_to_reporter(self, components):
        await components.location.report_location(COURIER, LocationReport("k2", 1.0, 1.0))

        assert components.location.get_location("k2") is None
        assert components.location.get_location("k1").courier_id == "k1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("latitude, longitude, accuracy", [
        (95.0, 0.0, None),
        (0.0, -190.0, None),
        (10.0, 10.0, -3.0),
    ])
    async def test_out_of_range_reports_are_dropped(self, components, latitude, longitude, accuracy):
        admin = await components.connect("admin-token")

        result = await components.location.report_location(
            COURIER, LocationReport("k1", latitude, longitude, accuracy=accuracy),
        )

        assert result is None
        assert components.location.get_location("k1") is None
        assert components.transport(admin).of_type("delivery:location") == []
        assert components.metrics.get_snapshot()["domain"]["locations_dropped"] == 1

    def test_forget(self, components):
        assert components.location.forget("k1") is False
