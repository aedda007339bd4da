"""Metrics collection and Prometheus export."""

from realtime_gateway.components.metrics.collector import (
    BroadcastMetrics,
    ConnectionMetrics,
    DomainMetrics,
    MetricsCollector,
    PushMetrics,
)
from realtime_gateway.components.metrics.prometheus import MetricType, PrometheusFormatter

__all__ = [
    "BroadcastMetrics",
    "ConnectionMetrics",
    "DomainMetrics",
    "MetricsCollector",
    "PushMetrics",
    "MetricType",
    "PrometheusFormatter",
]
