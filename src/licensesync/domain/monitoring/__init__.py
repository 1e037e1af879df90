"""Monitoring: metrics, alerts and health for the sync pipeline."""

from __future__ import annotations

from .alerts import ALERT_FEED_CAPACITY, Alert, AlertFeed, AlertSeverity, AlertType
from .buffers import RingBuffer
from .health import ComponentHealth, HealthLevel, HealthReport
from .metrics import (
    HISTOGRAM_SAMPLE_CAPACITY,
    CounterMetric,
    GaugeMetric,
    HistogramMetric,
    MetricsRegistry,
)
from .monitor import Monitor, PerformanceSummary, RunStats, SyncContext, current_rss_bytes

__all__ = [
    "ALERT_FEED_CAPACITY",
    "HISTOGRAM_SAMPLE_CAPACITY",
    "Alert",
    "AlertFeed",
    "AlertSeverity",
    "AlertType",
    "ComponentHealth",
    "CounterMetric",
    "GaugeMetric",
    "HealthLevel",
    "HealthReport",
    "HistogramMetric",
    "MetricsRegistry",
    "Monitor",
    "PerformanceSummary",
    "RingBuffer",
    "RunStats",
    "SyncContext",
    "current_rss_bytes",
]
