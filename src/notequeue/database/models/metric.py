"""Performance metric model.

Append-only numeric samples (durations, throughput, utilisation, depth).
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from notequeue.database.models.base import Base, utcnow


class MetricType(enum.Enum):
    task_processing_time = "task_processing_time"
    queue_throughput = "queue_throughput"
    worker_utilization = "worker_utilization"
    error_rate = "error_rate"
    queue_depth = "queue_depth"
    embedding_generation_time = "embedding_generation_time"
    database_query_time = "database_query_time"
    bulk_operation_time = "bulk_operation_time"


class MetricUnit(enum.Enum):
    ms = "ms"
    tasks_per_hour = "tasks/hour"
    percent = "percent"
    tasks = "tasks"


class PerformanceMetric(Base):
    """One metric sample.

    Attributes:
        id: UUID primary key.
        timestamp: Sample time.
        metric_type: What was measured.
        value: Measured value.
        unit: Unit of value.
        task_id: Related task, if any.
        article_id: Related article, if any.
        operation_id: Related bulk operation, if any.
        metric_metadata: Free-form JSON payload (e.g. {"success": true}).
    """

    __tablename__ = "performance_metrics"
    __table_args__ = (
        Index("ix_performance_metrics_type_timestamp", "metric_type", "timestamp"),
        Index("ix_performance_metrics_task_id", "task_id"),
        Index("ix_performance_metrics_operation_id", "operation_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    metric_type: Mapped[MetricType] = mapped_column(nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(Text, nullable=False)
    task_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    article_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    operation_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    metric_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        nullable=True,
    )
