"""
Prometheus Metrics Export for the realtime gateway.

Formats internal metrics in Prometheus text exposition format.
No external dependencies required.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any


class MetricType(str, Enum):
    """Prometheus metric types."""

    COUNTER = "counter"
    GAUGE = "gauge"


# (metric name, gateway stats key, help text)
_GATEWAY_GAUGES: list[tuple[str, str, str]] = [
    ("realtime_connections_total", "total_connections", "Current number of live connections"),
    ("realtime_connections_max", "max_connections", "Maximum allowed connections"),
    ("realtime_identities_connected", "unique_identities", "Unique identities connected"),
    ("realtime_rooms", "rooms", "Rooms with at least one member"),
    ("realtime_order_rooms", "order_rooms", "Order rooms with at least one member"),
    ("realtime_couriers_online", "couriers_online", "Courier connections"),
    ("realtime_admins_online", "admins_online", "Admin connections"),
]

_COUNTER_SECTIONS: dict[str, str] = {
    "connections": "realtime_connections",
    "broadcasts": "realtime_broadcasts",
    "push": "realtime_push",
    "domain": "realtime",
}


class PrometheusFormatter:
    """
    Formats metrics in Prometheus text exposition format.

    Reference: https://prometheus.io/docs/instrumenting/exposition_formats/

    Usage:
        formatter = PrometheusFormatter()
        output = formatter.format_all_metrics(orchestrator.get_statistics())
    """

    def format_metric(
        self,
        name: str,
        value: float | int,
        help_text: str,
        metric_type: MetricType,
        labels: dict[str, str] | None = None,
    ) -> str:
        """Format a single metric with its HELP and TYPE lines."""
        lines = [
            f"# HELP {name} {help_text}",
            f"# TYPE {name} {metric_type.value}",
        ]
        if labels:
            label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
            lines.append(f"{name}{{{label_str}}} {value}")
        else:
            lines.append(f"{name} {value}")
        return "\n".join(lines)

    def format_all_metrics(self, stats: dict[str, Any]) -> str:
        """
        Format all metrics from RealtimeOrchestrator.get_statistics().

        Returns:
            Complete Prometheus exposition format string.
        """
        lines: list[str] = []
        gateway = stats.get("gateway", {})

        for name, key, help_text in _GATEWAY_GAUGES:
            lines.append(self.format_metric(name, gateway.get(key, 0), help_text, MetricType.GAUGE))

        # Counters from the MetricsCollector snapshot
        snapshot = stats.get("metrics", {})
        for section, prefix in _COUNTER_SECTIONS.items():
            for key, value in snapshot.get(section, {}).items():
                lines.append(self.format_metric(
                    f"{prefix}_{key}_total",
                    value,
                    f"{section.capitalize()} counter: {key.replace('_', ' ')}",
                    MetricType.COUNTER,
                ))

        lines.append(self.format_metric(
            "realtime_devices_registered",
            stats.get("dispatcher", {}).get("devices_registered", 0),
            "Registered push devices",
            MetricType.GAUGE,
        ))

        lines.append(self.format_metric(
            "realtime_couriers_tracked",
            stats.get("locations", {}).get("couriers_tracked", 0),
            "Couriers with a last-known location",
            MetricType.GAUGE,
        ))

        lines.append(self.format_metric(
            "realtime_orders_tracked",
            stats.get("orders", {}).get("tracked", 0),
            "Orders with a known current status",
            MetricType.GAUGE,
        ))

        lines.append(self.format_metric(
            "realtime_order_locks",
            stats.get("locks", {}).get("order_locks", 0),
            "Current number of per-order locks",
            MetricType.GAUGE,
        ))

        heartbeat = gateway.get("heartbeat", {})
        lines.append(self.format_metric(
            "realtime_heartbeat_tracked_connections",
            heartbeat.get("tracked_connections", 0),
            "Connections tracked by heartbeat",
            MetricType.GAUGE,
        ))
        lines.append(self.format_metric(
            "realtime_heartbeat_oldest_age_seconds",
            round(heartbeat.get("oldest_heartbeat_age", 0), 3),
            "Oldest heartbeat age in seconds",
            MetricType.GAUGE,
        ))

        lines.append(self.format_metric(
            "realtime_rate_limiter_tracked",
            gateway.get("rate_limiter", {}).get("tracked_connections", 0),
            "Connections tracked by rate limiter",
            MetricType.GAUGE,
        ))

        lines.append(self.format_metric(
            "realtime_scrape_timestamp",
            int(time.time()),
            "Timestamp of metrics scrape",
            MetricType.GAUGE,
        ))

        return "\n".join(lines) + "\n"
