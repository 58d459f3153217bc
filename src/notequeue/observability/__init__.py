"""Audit log and performance metric recorders."""

from notequeue.observability.audit import AuditLogger, LogQueryFilters, LogStatistics
from notequeue.observability.metrics import (
    MetricQueryFilters,
    MetricsRecorder,
    MetricStatistics,
    PerformanceSummary,
)

__all__ = [
    "AuditLogger",
    "LogQueryFilters",
    "LogStatistics",
    "MetricsRecorder",
    "MetricQueryFilters",
    "MetricStatistics",
    "PerformanceSummary",
]
