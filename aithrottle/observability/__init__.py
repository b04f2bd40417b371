"""
Observability components for aithrottle.

Standard Metrics:
    Scheduler:
    - aithrottle.scheduler.submitted / admitted / completed / failed / cancelled
    - aithrottle.scheduler.queue_length, aithrottle.scheduler.active (gauges)
    - aithrottle.scheduler.wait_ms, aithrottle.scheduler.latency_ms (timings)

    Cache (tagged with store="responses" or store="embeddings"):
    - aithrottle.cache.hits / misses / evictions / expirations
"""

from aithrottle.observability.hooks import (
    METRIC_CACHE_EVICTIONS,
    METRIC_CACHE_EXPIRATIONS,
    METRIC_CACHE_HITS,
    METRIC_CACHE_MISSES,
    METRIC_SCHEDULER_ACTIVE,
    METRIC_SCHEDULER_ADMITTED,
    METRIC_SCHEDULER_CANCELLED,
    METRIC_SCHEDULER_COMPLETED,
    METRIC_SCHEDULER_FAILED,
    METRIC_SCHEDULER_LATENCY,
    METRIC_SCHEDULER_QUEUE_LENGTH,
    METRIC_SCHEDULER_SUBMITTED,
    METRIC_SCHEDULER_WAIT,
    HistogramStats,
    InMemoryMetricHook,
    LoggingMetricHook,
    MetricHook,
    MetricType,
    ObservabilityHooks,
)

__all__ = [
    "MetricType",
    "MetricHook",
    "LoggingMetricHook",
    "InMemoryMetricHook",
    "HistogramStats",
    "ObservabilityHooks",
    # Scheduler metric names
    "METRIC_SCHEDULER_SUBMITTED",
    "METRIC_SCHEDULER_ADMITTED",
    "METRIC_SCHEDULER_COMPLETED",
    "METRIC_SCHEDULER_FAILED",
    "METRIC_SCHEDULER_CANCELLED",
    "METRIC_SCHEDULER_QUEUE_LENGTH",
    "METRIC_SCHEDULER_ACTIVE",
    "METRIC_SCHEDULER_WAIT",
    "METRIC_SCHEDULER_LATENCY",
    # Cache metric names
    "METRIC_CACHE_HITS",
    "METRIC_CACHE_MISSES",
    "METRIC_CACHE_EVICTIONS",
    "METRIC_CACHE_EXPIRATIONS",
]
