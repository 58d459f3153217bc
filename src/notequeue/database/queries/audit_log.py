"""Audit log query functions.

Entries are append-only; the only deletion path is the retention sweep.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from notequeue.database.models.audit_log import AuditLogEntry, LogCategory, LogLevel

logger = structlog.get_logger(__name__)


async def insert_log_entry(
    session: AsyncSession,
    level: LogLevel,
    category: LogCategory,
    message: str,
    *,
    timestamp: datetime,
    task_id: str | None = None,
    article_id: int | None = None,
    operation_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    duration: float | None = None,
    error: str | None = None,
    stack_trace: str | None = None,
) -> AuditLogEntry:
    entry = AuditLogEntry(
        timestamp=timestamp,
        level=level,
        category=category,
        message=message,
        task_id=task_id,
        article_id=article_id,
        operation_id=operation_id,
        entry_metadata=metadata,
        duration=duration,
        error=error,
        stack_trace=stack_trace,
    )
    session.add(entry)
    await session.commit()
    return entry


async def query_log_entries(
    session: AsyncSession,
    *,
    level: LogLevel | None = None,
    category: LogCategory | None = None,
    task_id: str | None = None,
    article_id: int | None = None,
    operation_id: str | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[AuditLogEntry]:
    """Filter audit entries, newest first."""
    stmt = select(AuditLogEntry)
    if level is not None:
        stmt = stmt.where(AuditLogEntry.level == level)
    if category is not None:
        stmt = stmt.where(AuditLogEntry.category == category)
    if task_id is not None:
        stmt = stmt.where(AuditLogEntry.task_id == task_id)
    if article_id is not None:
        stmt = stmt.where(AuditLogEntry.article_id == article_id)
    if operation_id is not None:
        stmt = stmt.where(AuditLogEntry.operation_id == operation_id)
    if start_time is not None:
        stmt = stmt.where(AuditLogEntry.timestamp >= start_time)
    if end_time is not None:
        stmt = stmt.where(AuditLogEntry.timestamp <= end_time)

    stmt = stmt.order_by(AuditLogEntry.timestamp.desc()).limit(limit).offset(offset)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_log_entries_by(
    session: AsyncSession, since: datetime
) -> list[tuple[LogLevel, LogCategory, int]]:
    """Entry counts grouped by level and category since a point in time."""
    stmt = (
        select(AuditLogEntry.level, AuditLogEntry.category, func.count(AuditLogEntry.id))
        .where(AuditLogEntry.timestamp >= since)
        .group_by(AuditLogEntry.level, AuditLogEntry.category)
    )
    result = await session.execute(stmt)
    return [(level, category, count) for level, category, count in result.all()]


async def get_log_time_range(
    session: AsyncSession,
) -> tuple[datetime | None, datetime | None]:
    """Oldest and newest entry timestamps."""
    stmt = select(func.min(AuditLogEntry.timestamp), func.max(AuditLogEntry.timestamp))
    result = await session.execute(stmt)
    oldest, newest = result.one()
    return oldest, newest


async def delete_log_entries_before(session: AsyncSession, cutoff: datetime) -> int:
    stmt = delete(AuditLogEntry).where(AuditLogEntry.timestamp < cutoff)
    result = await session.execute(stmt)
    await session.commit()

    count = result.rowcount or 0
    logger.info("audit_logs_cleared", count=count, cutoff=cutoff.isoformat())
    return count
