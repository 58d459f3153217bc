"""Performance metric query functions."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from notequeue.database.models.metric import MetricType, PerformanceMetric

logger = structlog.get_logger(__name__)


async def insert_metric(
    session: AsyncSession,
    metric_type: MetricType,
    value: float,
    unit: str,
    *,
    timestamp: datetime,
    task_id: str | None = None,
    article_id: int | None = None,
    operation_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> PerformanceMetric:
    metric = PerformanceMetric(
        timestamp=timestamp,
        metric_type=metric_type,
        value=value,
        unit=unit,
        task_id=task_id,
        article_id=article_id,
        operation_id=operation_id,
        metric_metadata=metadata,
    )
    session.add(metric)
    await session.commit()
    return metric


async def query_metrics(
    session: AsyncSession,
    *,
    metric_type: MetricType | None = None,
    task_id: str | None = None,
    article_id: int | None = None,
    operation_id: str | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    limit: int | None = 1000,
    offset: int = 0,
) -> list[PerformanceMetric]:
    """Filter metric samples, newest first. limit=None returns every match."""
    stmt = select(PerformanceMetric)
    if metric_type is not None:
        stmt = stmt.where(PerformanceMetric.metric_type == metric_type)
    if task_id is not None:
        stmt = stmt.where(PerformanceMetric.task_id == task_id)
    if article_id is not None:
        stmt = stmt.where(PerformanceMetric.article_id == article_id)
    if operation_id is not None:
        stmt = stmt.where(PerformanceMetric.operation_id == operation_id)
    if start_time is not None:
        stmt = stmt.where(PerformanceMetric.timestamp >= start_time)
    if end_time is not None:
        stmt = stmt.where(PerformanceMetric.timestamp <= end_time)

    stmt = stmt.order_by(PerformanceMetric.timestamp.desc()).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def delete_metrics_before(session: AsyncSession, cutoff: datetime) -> int:
    stmt = delete(PerformanceMetric).where(PerformanceMetric.timestamp < cutoff)
    result = await session.execute(stmt)
    await session.commit()

    count = result.rowcount or 0
    logger.info("metrics_cleared", count=count, cutoff=cutoff.isoformat())
    return count
