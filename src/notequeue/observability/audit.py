"""Audit logger for queue and worker events.

Every event goes through AuditLogger.log(): it is emitted to structlog
first and then appended to the embedding_audit_logs table. Failing to
append never fails the caller; the failure is reported on structlog
instead, so an unreachable database cannot take the worker loop down with
its own bookkeeping.

Example usage:
    >>> audit = AuditLogger(session_factory)
    >>> await audit.log_task_event(task_id, "started", article_id=42)
    >>> entries = await audit.query_logs(LogQueryFilters(category=LogCategory.task_lifecycle))
"""

from __future__ import annotations

import traceback
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from notequeue.database.models.audit_log import AuditLogEntry, LogCategory, LogLevel
from notequeue.database.models.base import as_utc, utcnow
from notequeue.database.queries import audit_log as audit_queries

logger = structlog.get_logger(__name__)

_STRUCTLOG_METHOD = {
    LogLevel.debug: "debug",
    LogLevel.info: "info",
    LogLevel.warn: "warning",
    LogLevel.error: "error",
}


class LogQueryFilters(BaseModel):
    """Filters for AuditLogger.query_logs(). Unset fields do not filter."""

    level: LogLevel | None = Field(default=None)
    category: LogCategory | None = Field(default=None)
    task_id: str | None = Field(default=None)
    article_id: int | None = Field(default=None)
    operation_id: str | None = Field(default=None)
    start_time: datetime | None = Field(default=None)
    end_time: datetime | None = Field(default=None)
    limit: int = Field(default=100, ge=1, le=10_000)
    offset: int = Field(default=0, ge=0)


class LogStatistics(BaseModel):
    """Audit log volume over a window.

    Attributes:
        total_entries: Entries in the window.
        entries_by_level: level -> count, zero-filled.
        entries_by_category: category -> count, zero-filled.
        recent_errors: error-level entries in the window.
        oldest_entry: Oldest timestamp in the whole table.
        newest_entry: Newest timestamp in the whole table.
    """

    total_entries: int = Field(default=0)
    entries_by_level: dict[str, int] = Field(default_factory=dict)
    entries_by_category: dict[str, int] = Field(default_factory=dict)
    recent_errors: int = Field(default=0)
    oldest_entry: datetime | None = Field(default=None)
    newest_entry: datetime | None = Field(default=None)


def _message(subject: str, event: str, error: BaseException | str | None) -> str:
    if error is None:
        return f"{subject} {event}"
    return f"{subject} {event} failed: {error}"


class AuditLogger:
    """Single write path for audit events, plus read-side queries.

    Attributes:
        session_factory: Callable producing AsyncSession instances.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self.session_factory = session_factory
        self._logger = logger.bind(component="AuditLogger")

    async def log(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        *,
        task_id: str | None = None,
        article_id: int | None = None,
        operation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        duration: float | None = None,
        error: BaseException | str | None = None,
    ) -> None:
        """Emit an event to structlog and append it to the audit table.

        Args:
            level: Severity.
            category: Subsystem the event belongs to.
            message: Human-readable message.
            task_id: Related task id.
            article_id: Related article id.
            operation_id: Related bulk operation id.
            metadata: JSON-serialisable payload.
            duration: Duration in milliseconds.
            error: Exception or message describing a failure.
        """
        error_text: str | None = None
        stack_trace: str | None = None
        if isinstance(error, BaseException):
            error_text = str(error) or type(error).__name__
            if error.__traceback__ is not None:
                stack_trace = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
        elif error is not None:
            error_text = error

        emit = getattr(self._logger, _STRUCTLOG_METHOD[level])
        emit(
            "audit_event",
            message=message,
            category=category.value,
            task_id=task_id,
            article_id=article_id,
            operation_id=operation_id,
            duration=duration,
            error=error_text,
            metadata=_clean(metadata),
        )

        try:
            async with self.session_factory() as session:
                await audit_queries.insert_log_entry(
                    session,
                    level,
                    category,
                    message,
                    timestamp=utcnow(),
                    task_id=task_id,
                    article_id=article_id,
                    operation_id=operation_id,
                    metadata=_clean(metadata),
                    duration=duration,
                    error=error_text,
                    stack_trace=stack_trace,
                )
        except Exception as e:
            self._logger.error(
                "audit_log_write_failed",
                error=str(e),
                original_message=message,
                category=category.value,
            )

    async def log_task_event(
        self,
        task_id: str,
        event: str,
        *,
        article_id: int | None = None,
        operation: str | None = None,
        attempt: int | None = None,
        duration: float | None = None,
        error: BaseException | str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            LogLevel.error if error is not None else LogLevel.info,
            LogCategory.task_lifecycle,
            _message("Task", event, error),
            task_id=task_id,
            article_id=article_id,
            duration=duration,
            error=error,
            metadata={
                "event": event,
                "operation": operation,
                "attempt": attempt,
                **(metadata or {}),
            },
        )

    async def log_worker_event(
        self,
        event: str,
        *,
        is_running: bool | None = None,
        tasks_processed: int | None = None,
        error: BaseException | str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            LogLevel.error if error is not None else LogLevel.info,
            LogCategory.worker_status,
            _message("Worker", event, error),
            error=error,
            metadata={
                "event": event,
                "is_running": is_running,
                "tasks_processed": tasks_processed,
                **(metadata or {}),
            },
        )

    async def log_queue_operation(
        self,
        operation: str,
        *,
        task_id: str | None = None,
        article_id: int | None = None,
        queue_stats: dict[str, int] | None = None,
        duration: float | None = None,
        error: BaseException | str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            LogLevel.error if error is not None else LogLevel.info,
            LogCategory.queue_operations,
            _message("Queue", operation, error),
            task_id=task_id,
            article_id=article_id,
            duration=duration,
            error=error,
            metadata={
                "operation": operation,
                "queue_stats": queue_stats,
                **(metadata or {}),
            },
        )

    async def log_performance_metric(
        self,
        metric: str,
        value: float,
        *,
        unit: str | None = None,
        task_id: str | None = None,
        article_id: int | None = None,
        operation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            LogLevel.info,
            LogCategory.performance,
            f"Performance metric: {metric} = {value}{unit or ''}",
            task_id=task_id,
            article_id=article_id,
            operation_id=operation_id,
            duration=value,
            metadata={"metric": metric, "value": value, "unit": unit, **(metadata or {})},
        )

    async def log_bulk_operation(
        self,
        event: str,
        operation_id: str,
        *,
        total_tasks: int | None = None,
        completed_tasks: int | None = None,
        failed_tasks: int | None = None,
        duration: float | None = None,
        error: BaseException | str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.log(
            LogLevel.error if error is not None else LogLevel.info,
            LogCategory.bulk_operations,
            _message("Bulk operation", event, error),
            operation_id=operation_id,
            duration=duration,
            error=error,
            metadata={
                "event": event,
                "total_tasks": total_tasks,
                "completed_tasks": completed_tasks,
                "failed_tasks": failed_tasks,
                **(metadata or {}),
            },
        )

    async def query_logs(self, filters: LogQueryFilters | None = None) -> list[AuditLogEntry]:
        """Return audit entries matching the filters, newest first."""
        filters = filters or LogQueryFilters()
        async with self.session_factory() as session:
            return await audit_queries.query_log_entries(
                session,
                level=filters.level,
                category=filters.category,
                task_id=filters.task_id,
                article_id=filters.article_id,
                operation_id=filters.operation_id,
                start_time=filters.start_time,
                end_time=filters.end_time,
                limit=filters.limit,
                offset=filters.offset,
            )

    async def get_log_statistics(self, days: int = 7) -> LogStatistics:
        """Summarise audit volume over the last ``days`` days."""
        since = utcnow() - timedelta(days=days)
        async with self.session_factory() as session:
            grouped = await audit_queries.count_log_entries_by(session, since)
            oldest, newest = await audit_queries.get_log_time_range(session)

        by_level = {level.value: 0 for level in LogLevel}
        by_category = {category.value: 0 for category in LogCategory}
        for level, category, count in grouped:
            by_level[level.value] += count
            by_category[category.value] += count

        return LogStatistics(
            total_entries=sum(by_level.values()),
            entries_by_level=by_level,
            entries_by_category=by_category,
            recent_errors=by_level[LogLevel.error.value],
            oldest_entry=as_utc(oldest),
            newest_entry=as_utc(newest),
        )

    async def cleanup_old_logs(self, retention_days: int = 90) -> int:
        """Delete audit entries older than ``retention_days``."""
        cutoff = utcnow() - timedelta(days=retention_days)
        async with self.session_factory() as session:
            return await audit_queries.delete_log_entries_before(session, cutoff)


def _clean(metadata: dict[str, Any] | None) -> dict[str, Any] | None:
    """Drop None values so stored payloads only carry what was provided."""
    if metadata is None:
        return None
    return {key: value for key, value in metadata.items() if value is not None}
