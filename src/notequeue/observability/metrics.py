"""Performance metric recorder.

Samples are appended to performance_metrics and mirrored into the audit
log under the performance category. Like the audit logger, a failed write
is logged and swallowed so metric bookkeeping never fails a task.

Statistics and summaries are computed with numpy over the samples in the
requested window.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import numpy as np
import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from notequeue.database.models.base import utcnow
from notequeue.database.models.metric import MetricType, MetricUnit, PerformanceMetric
from notequeue.database.queries import metric as metric_queries
from notequeue.observability.audit import AuditLogger

logger = structlog.get_logger(__name__)

_MS_PER_HOUR = 60 * 60 * 1000


class MetricQueryFilters(BaseModel):
    """Filters for MetricsRecorder.query_metrics()."""

    metric_type: MetricType | None = Field(default=None)
    task_id: str | None = Field(default=None)
    article_id: int | None = Field(default=None)
    operation_id: str | None = Field(default=None)
    start_time: datetime | None = Field(default=None)
    end_time: datetime | None = Field(default=None)
    limit: int = Field(default=1000, ge=1, le=100_000)
    offset: int = Field(default=0, ge=0)


class MetricStatistics(BaseModel):
    """Distribution of one metric type over a window."""

    metric_type: MetricType
    count: int = Field(default=0)
    average: float = Field(default=0.0)
    min: float = Field(default=0.0)
    max: float = Field(default=0.0)
    median: float = Field(default=0.0)
    p95: float = Field(default=0.0)
    p99: float = Field(default=0.0)
    unit: str = Field(default="")


class TaskMetricsSummary(BaseModel):
    total_processed: int = Field(default=0)
    average_processing_time: float = Field(default=0.0)
    success_rate: float = Field(default=0.0)
    throughput_per_hour: float = Field(default=0.0)


class QueueMetricsSummary(BaseModel):
    average_depth: float = Field(default=0.0)
    max_depth: float = Field(default=0.0)
    average_wait_time: float = Field(default=0.0)


class WorkerMetricsSummary(BaseModel):
    utilization: float = Field(default=0.0)
    average_tasks_per_hour: float = Field(default=0.0)
    error_rate: float = Field(default=0.0)


class SystemMetricsSummary(BaseModel):
    average_database_query_time: float = Field(default=0.0)
    average_embedding_time: float = Field(default=0.0)


class PerformanceSummary(BaseModel):
    """Composite report over a time range."""

    start_time: datetime
    end_time: datetime
    task_metrics: TaskMetricsSummary = Field(default_factory=TaskMetricsSummary)
    queue_metrics: QueueMetricsSummary = Field(default_factory=QueueMetricsSummary)
    worker_metrics: WorkerMetricsSummary = Field(default_factory=WorkerMetricsSummary)
    system_metrics: SystemMetricsSummary = Field(default_factory=SystemMetricsSummary)


def _mean(values: list[float]) -> float:
    return float(np.mean(values)) if values else 0.0


class MetricsRecorder:
    """Records and queries performance metric samples.

    Attributes:
        session_factory: Callable producing AsyncSession instances.
        audit: Audit logger receiving a mirror of every sample.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        audit: AuditLogger,
    ) -> None:
        self.session_factory = session_factory
        self.audit = audit
        self._logger = logger.bind(component="MetricsRecorder")

    async def record_metric(
        self,
        metric_type: MetricType,
        value: float,
        unit: MetricUnit,
        *,
        task_id: str | None = None,
        article_id: int | None = None,
        operation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append one sample and mirror it into the audit log."""
        payload = (
            {k: v for k, v in metadata.items() if v is not None} if metadata else None
        )
        try:
            async with self.session_factory() as session:
                await metric_queries.insert_metric(
                    session,
                    metric_type,
                    float(value),
                    unit.value,
                    timestamp=utcnow(),
                    task_id=task_id,
                    article_id=article_id,
                    operation_id=operation_id,
                    metadata=payload,
                )
        except Exception as e:
            self._logger.error(
                "metric_write_failed",
                metric_type=metric_type.value,
                value=value,
                error=str(e),
            )
            return

        await self.audit.log_performance_metric(
            metric_type.value,
            float(value),
            unit=unit.value,
            task_id=task_id,
            article_id=article_id,
            operation_id=operation_id,
            metadata=payload,
        )

    async def record_task_processing_time(
        self,
        task_id: str,
        processing_time_ms: float,
        *,
        article_id: int | None = None,
        operation: str | None = None,
        success: bool | None = None,
        wait_time_ms: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.record_metric(
            MetricType.task_processing_time,
            processing_time_ms,
            MetricUnit.ms,
            task_id=task_id,
            article_id=article_id,
            metadata={
                "operation": operation,
                "success": success,
                "wait_time_ms": wait_time_ms,
                **(metadata or {}),
            },
        )

    async def record_queue_throughput(
        self,
        tasks_processed: int,
        time_period_ms: float,
        *,
        operation_id: str | None = None,
    ) -> None:
        """Record throughput in tasks/hour for the given period."""
        throughput = (tasks_processed / time_period_ms) * _MS_PER_HOUR if time_period_ms else 0.0
        await self.record_metric(
            MetricType.queue_throughput,
            throughput,
            MetricUnit.tasks_per_hour,
            operation_id=operation_id,
            metadata={"tasks_processed": tasks_processed, "time_period_ms": time_period_ms},
        )

    async def record_worker_utilization(
        self, utilization_percent: float, metadata: dict[str, Any] | None = None
    ) -> None:
        await self.record_metric(
            MetricType.worker_utilization,
            utilization_percent,
            MetricUnit.percent,
            metadata=metadata,
        )

    async def record_error_rate(
        self,
        error_rate: float,
        *,
        operation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.record_metric(
            MetricType.error_rate,
            error_rate,
            MetricUnit.percent,
            operation_id=operation_id,
            metadata=metadata,
        )

    async def record_queue_depth(
        self, queue_depth: int, metadata: dict[str, Any] | None = None
    ) -> None:
        await self.record_metric(
            MetricType.queue_depth,
            queue_depth,
            MetricUnit.tasks,
            metadata=metadata,
        )

    async def record_embedding_generation_time(
        self,
        generation_time_ms: float,
        *,
        task_id: str | None = None,
        article_id: int | None = None,
        chunk_count: int | None = None,
    ) -> None:
        await self.record_metric(
            MetricType.embedding_generation_time,
            generation_time_ms,
            MetricUnit.ms,
            task_id=task_id,
            article_id=article_id,
            metadata={"chunk_count": chunk_count},
        )

    async def record_database_query_time(
        self,
        query_time_ms: float,
        *,
        query_type: str | None = None,
        task_id: str | None = None,
    ) -> None:
        await self.record_metric(
            MetricType.database_query_time,
            query_time_ms,
            MetricUnit.ms,
            task_id=task_id,
            metadata={"query_type": query_type},
        )

    async def record_bulk_operation_time(
        self,
        operation_time_ms: float,
        operation_id: str,
        *,
        total_tasks: int | None = None,
        successful_tasks: int | None = None,
    ) -> None:
        await self.record_metric(
            MetricType.bulk_operation_time,
            operation_time_ms,
            MetricUnit.ms,
            operation_id=operation_id,
            metadata={"total_tasks": total_tasks, "successful_tasks": successful_tasks},
        )

    async def query_metrics(
        self, filters: MetricQueryFilters | None = None
    ) -> list[PerformanceMetric]:
        """Return samples matching the filters, newest first."""
        filters = filters or MetricQueryFilters()
        async with self.session_factory() as session:
            return await metric_queries.query_metrics(
                session,
                metric_type=filters.metric_type,
                task_id=filters.task_id,
                article_id=filters.article_id,
                operation_id=filters.operation_id,
                start_time=filters.start_time,
                end_time=filters.end_time,
                limit=filters.limit,
                offset=filters.offset,
            )

    async def get_metric_statistics(
        self,
        metric_type: MetricType,
        start_time: datetime,
        end_time: datetime,
    ) -> MetricStatistics:
        """count/min/max/average/median/p95/p99 of one metric type in a window."""
        async with self.session_factory() as session:
            samples = await metric_queries.query_metrics(
                session,
                metric_type=metric_type,
                start_time=start_time,
                end_time=end_time,
                limit=None,
            )

        if not samples:
            return MetricStatistics(metric_type=metric_type)

        values = np.array([s.value for s in samples], dtype=float)
        median, p95, p99 = np.percentile(values, [50, 95, 99])
        return MetricStatistics(
            metric_type=metric_type,
            count=len(values),
            average=float(values.mean()),
            min=float(values.min()),
            max=float(values.max()),
            median=float(median),
            p95=float(p95),
            p99=float(p99),
            unit=samples[0].unit,
        )

    async def get_performance_summary(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> PerformanceSummary:
        """Compose task, queue, worker and system figures for a time range.

        Defaults to the last 24 hours.
        """
        end_time = end_time or utcnow()
        start_time = start_time or end_time - timedelta(hours=24)

        async with self.session_factory() as session:
            samples = await metric_queries.query_metrics(
                session,
                start_time=start_time,
                end_time=end_time,
                limit=None,
            )

        by_type: dict[MetricType, list[PerformanceMetric]] = {}
        for sample in samples:
            by_type.setdefault(sample.metric_type, []).append(sample)

        def values(metric_type: MetricType) -> list[float]:
            return [s.value for s in by_type.get(metric_type, [])]

        processing = by_type.get(MetricType.task_processing_time, [])
        with_outcome = [
            s for s in processing
            if s.metric_metadata and s.metric_metadata.get("success") is not None
        ]
        succeeded = sum(1 for s in with_outcome if s.metric_metadata["success"])
        wait_times = [
            float(s.metric_metadata["wait_time_ms"])
            for s in processing
            if s.metric_metadata and s.metric_metadata.get("wait_time_ms") is not None
        ]
        hours = (end_time - start_time).total_seconds() / 3600
        depths = values(MetricType.queue_depth)

        return PerformanceSummary(
            start_time=start_time,
            end_time=end_time,
            task_metrics=TaskMetricsSummary(
                total_processed=len(processing),
                average_processing_time=_mean([s.value for s in processing]),
                success_rate=(succeeded / len(with_outcome) * 100) if with_outcome else 0.0,
                throughput_per_hour=len(processing) / hours if hours > 0 else 0.0,
            ),
            queue_metrics=QueueMetricsSummary(
                average_depth=_mean(depths),
                max_depth=max(depths) if depths else 0.0,
                average_wait_time=_mean(wait_times),
            ),
            worker_metrics=WorkerMetricsSummary(
                utilization=_mean(values(MetricType.worker_utilization)),
                average_tasks_per_hour=_mean(values(MetricType.queue_throughput)),
                error_rate=_mean(values(MetricType.error_rate)),
            ),
            system_metrics=SystemMetricsSummary(
                average_database_query_time=_mean(values(MetricType.database_query_time)),
                average_embedding_time=_mean(values(MetricType.embedding_generation_time)),
            ),
        )

    async def cleanup_old_metrics(self, retention_days: int = 30) -> int:
        """Delete samples older than ``retention_days``."""
        cutoff = utcnow() - timedelta(days=retention_days)
        async with self.session_factory() as session:
            return await metric_queries.delete_metrics_before(session, cutoff)
