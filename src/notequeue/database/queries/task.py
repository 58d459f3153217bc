"""Embedding task query functions.

Every state transition is a single guarded UPDATE followed by a commit, so
no transition is ever split across a read and a write. The claim in
dequeue_task() is a conditional UPDATE whose target is chosen by a
``FOR UPDATE SKIP LOCKED`` subquery on PostgreSQL; the ``status = pending``
guard on the outer UPDATE keeps it single-winner on backends that ignore
row locks (SQLite serialises writers instead).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import DateTime, case, delete, func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from notequeue.database.models.base import as_utc, utcnow
from notequeue.database.models.task import (
    EmbeddingTask,
    TaskOperation,
    TaskPriority,
    TaskStatus,
)
from notequeue.errors import TaskNotFoundError
from notequeue.schemas import QueueStats, StuckTaskReport

logger = structlog.get_logger(__name__)

STUCK_TASK_MESSAGE = "Task exceeded maximum processing time and was reclaimed"

ACTIVE_STATUSES = (TaskStatus.pending, TaskStatus.processing)


def _priority_rank() -> Any:
    """SQL expression ranking high=0, normal=1, low=2."""
    return case(
        (EmbeddingTask.priority == TaskPriority.high, 0),
        (EmbeddingTask.priority == TaskPriority.normal, 1),
        else_=2,
    )


def _timestamp(value: datetime) -> Any:
    return literal(value, type_=DateTime(timezone=True))


async def enqueue_task(
    session: AsyncSession,
    article_id: int,
    slug: str,
    operation: TaskOperation,
    priority: TaskPriority = TaskPriority.normal,
    max_attempts: int = 3,
    scheduled_at: datetime | None = None,
    metadata: dict[str, Any] | None = None,
) -> EmbeddingTask:
    """Insert a new pending task.

    No deduplication happens here. Callers that must not stack work for
    the same article check has_active_task() first.

    Args:
        session: Active async database session.
        article_id: Article the task operates on.
        slug: Article slug.
        operation: create, update or delete.
        priority: Dequeue priority.
        max_attempts: Claim budget for the task.
        scheduled_at: Earliest claim time. Defaults to now.
        metadata: Free-form JSON payload.

    Returns:
        The newly created EmbeddingTask.
    """
    now = utcnow()
    task = EmbeddingTask(
        article_id=article_id,
        slug=slug,
        operation=operation,
        priority=priority,
        status=TaskStatus.pending,
        attempts=0,
        max_attempts=max_attempts,
        created_at=now,
        scheduled_at=scheduled_at or now,
        task_metadata=metadata,
    )
    session.add(task)
    await session.commit()

    logger.info(
        "task_enqueued",
        task_id=str(task.id),
        article_id=article_id,
        operation=operation.value,
        priority=priority.value,
    )

    return task


async def enqueue_tasks(
    session: AsyncSession,
    items: list[dict[str, Any]],
    max_attempts: int = 3,
) -> list[EmbeddingTask]:
    """Insert several pending tasks in one transaction.

    Each item carries the enqueue_task() keyword arguments article_id, slug,
    operation, priority and optionally metadata.
    """
    now = utcnow()
    tasks = [
        EmbeddingTask(
            article_id=item["article_id"],
            slug=item["slug"],
            operation=item["operation"],
            priority=item.get("priority", TaskPriority.normal),
            status=TaskStatus.pending,
            attempts=0,
            max_attempts=max_attempts,
            created_at=now,
            scheduled_at=now,
            task_metadata=item.get("metadata"),
        )
        for item in items
    ]
    session.add_all(tasks)
    await session.commit()

    logger.info("tasks_enqueued", count=len(tasks))
    return tasks


async def dequeue_task(session: AsyncSession) -> EmbeddingTask | None:
    """Atomically claim the next eligible task.

    Selection order is priority (high first), then scheduled_at, then
    created_at. The claimed row moves to processing with attempts
    incremented and processed_at stamped.

    Returns:
        The claimed task, or None if nothing is eligible.
    """
    now = utcnow()
    candidate = (
        select(EmbeddingTask.id)
        .where(EmbeddingTask.status == TaskStatus.pending)
        .where(EmbeddingTask.scheduled_at <= now)
        .order_by(
            _priority_rank(),
            EmbeddingTask.scheduled_at.asc(),
            EmbeddingTask.created_at.asc(),
        )
        .limit(1)
        .with_for_update(skip_locked=True)
        .scalar_subquery()
    )
    stmt = (
        update(EmbeddingTask)
        .where(EmbeddingTask.id == candidate)
        .where(EmbeddingTask.status == TaskStatus.pending)
        .values(
            status=TaskStatus.processing,
            attempts=EmbeddingTask.attempts + 1,
            processed_at=now,
        )
        .returning(EmbeddingTask.id)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    task_id = result.scalar_one_or_none()
    await session.commit()

    if task_id is None:
        return None

    task = await session.get(EmbeddingTask, task_id, populate_existing=True)
    logger.debug(
        "task_claimed",
        task_id=str(task_id),
        article_id=task.article_id if task else None,
        attempts=task.attempts if task else None,
    )
    return task


async def update_task_status(
    session: AsyncSession,
    task_id: UUID,
    status: TaskStatus,
    error_message: str | None = None,
    terminal: bool = False,
) -> None:
    """Record the outcome of an attempt.

    completed clears error_message and stamps completed_at. failed records
    the error and stamps completed_at; terminal=True also spends the rest
    of the attempt budget so retry_failed_tasks() leaves the row alone.
    Rescheduling never happens here.

    Raises:
        TaskNotFoundError: If no task has this id.
    """
    now = utcnow()
    values: dict[str, Any] = {"status": status}

    if status == TaskStatus.completed:
        values["error_message"] = None
        values["completed_at"] = now
    elif status == TaskStatus.failed:
        values["error_message"] = error_message
        values["completed_at"] = now
        if terminal:
            values["attempts"] = EmbeddingTask.max_attempts
    elif error_message is not None:
        values["error_message"] = error_message

    stmt = (
        update(EmbeddingTask)
        .where(EmbeddingTask.id == task_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    if result.rowcount == 0:
        raise TaskNotFoundError(str(task_id))

    logger.info(
        "task_status_updated",
        task_id=str(task_id),
        status=status.value,
        terminal=terminal,
    )


async def retry_failed_tasks(session: AsyncSession, backoff_base: timedelta) -> int:
    """Move retryable failed tasks back to pending with exponential backoff.

    scheduled_at becomes now + backoff_base * 2^(attempts - 1), with a task
    that failed before its first claim treated as attempt 1. Tasks with
    attempts >= max_attempts are terminal and are not touched.

    The distinct attempt counts are read first so the delay table covers
    every retryable row. The UPDATE is limited to those counts; a row that
    fails with a new count in between waits for the next sweep.

    Returns:
        Number of tasks moved back to pending.
    """
    retryable = (
        (EmbeddingTask.status == TaskStatus.failed)
        & (EmbeddingTask.attempts < EmbeddingTask.max_attempts)
    )
    result = await session.execute(
        select(EmbeddingTask.attempts).where(retryable).distinct()
    )
    attempt_counts = sorted(result.scalars().all())
    if not attempt_counts:
        await session.commit()
        return 0

    now = utcnow()
    next_run = case(
        *[
            (
                EmbeddingTask.attempts == attempts,
                _timestamp(now + backoff_base * (2 ** max(attempts - 1, 0))),
            )
            for attempts in attempt_counts
        ],
        else_=EmbeddingTask.scheduled_at,
    )

    stmt = (
        update(EmbeddingTask)
        .where(retryable)
        .where(EmbeddingTask.attempts.in_(attempt_counts))
        .values(
            status=TaskStatus.pending,
            scheduled_at=next_run,
            processed_at=None,
            completed_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    count = result.rowcount or 0
    if count:
        logger.info("failed_tasks_rescheduled", count=count)
    return count


async def clear_completed_tasks(session: AsyncSession, retention: timedelta) -> int:
    """Delete completed tasks whose completed_at is older than now - retention.

    Returns:
        Number of deleted rows.
    """
    cutoff = utcnow() - retention
    stmt = (
        delete(EmbeddingTask)
        .where(EmbeddingTask.status == TaskStatus.completed)
        .where(EmbeddingTask.completed_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    count = result.rowcount or 0
    logger.info("completed_tasks_cleared", count=count, cutoff=cutoff.isoformat())
    return count


async def reset_stuck_tasks(
    session: AsyncSession, max_processing_time: timedelta
) -> StuckTaskReport:
    """Reclaim tasks left in processing longer than max_processing_time.

    Tasks with budget left go back to pending; the rest fail terminally.
    """
    now = utcnow()
    cutoff = now - max_processing_time

    to_pending = (
        update(EmbeddingTask)
        .where(EmbeddingTask.status == TaskStatus.processing)
        .where(EmbeddingTask.processed_at < cutoff)
        .where(EmbeddingTask.attempts < EmbeddingTask.max_attempts)
        .values(
            status=TaskStatus.pending,
            processed_at=None,
            error_message=STUCK_TASK_MESSAGE,
        )
        .execution_options(synchronize_session=False)
    )
    to_failed = (
        update(EmbeddingTask)
        .where(EmbeddingTask.status == TaskStatus.processing)
        .where(EmbeddingTask.processed_at < cutoff)
        .where(EmbeddingTask.attempts >= EmbeddingTask.max_attempts)
        .values(
            status=TaskStatus.failed,
            completed_at=now,
            error_message=STUCK_TASK_MESSAGE,
        )
        .execution_options(synchronize_session=False)
    )

    pending_result = await session.execute(to_pending)
    failed_result = await session.execute(to_failed)
    await session.commit()

    report = StuckTaskReport(
        reset_to_pending=pending_result.rowcount or 0,
        marked_failed=failed_result.rowcount or 0,
    )
    if report.total:
        logger.warning(
            "stuck_tasks_reclaimed",
            reset_to_pending=report.reset_to_pending,
            marked_failed=report.marked_failed,
        )
    return report


async def get_queue_stats(session: AsyncSession) -> QueueStats:
    """Count tasks by status and priority in one grouped query."""
    stmt = select(
        EmbeddingTask.status,
        EmbeddingTask.priority,
        func.count(EmbeddingTask.id),
    ).group_by(EmbeddingTask.status, EmbeddingTask.priority)
    result = await session.execute(stmt)

    by_priority = {s.value: {p.value: 0 for p in TaskPriority} for s in TaskStatus}
    totals = {s.value: 0 for s in TaskStatus}
    for status, priority, count in result.all():
        by_priority[status.value][priority.value] = count
        totals[status.value] += count

    return QueueStats(
        **totals,
        total=sum(totals.values()),
        by_priority=by_priority,
    )


async def get_task(session: AsyncSession, task_id: UUID) -> EmbeddingTask | None:
    return await session.get(EmbeddingTask, task_id)


async def list_tasks_by_status(
    session: AsyncSession,
    status: TaskStatus,
    limit: int = 50,
    offset: int = 0,
) -> list[EmbeddingTask]:
    """List tasks in one status, newest first."""
    stmt = (
        select(EmbeddingTask)
        .where(EmbeddingTask.status == status)
        .order_by(EmbeddingTask.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_tasks_for_article(
    session: AsyncSession, article_id: int
) -> list[EmbeddingTask]:
    """All tasks of one article, newest first."""
    stmt = (
        select(EmbeddingTask)
        .where(EmbeddingTask.article_id == article_id)
        .order_by(EmbeddingTask.created_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def has_active_task(session: AsyncSession, article_id: int) -> bool:
    stmt = (
        select(EmbeddingTask.id)
        .where(EmbeddingTask.article_id == article_id)
        .where(EmbeddingTask.status.in_(ACTIVE_STATUSES))
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.first() is not None


async def get_articles_with_active_tasks(session: AsyncSession) -> set[int]:
    stmt = (
        select(EmbeddingTask.article_id)
        .where(EmbeddingTask.status.in_(ACTIVE_STATUSES))
        .distinct()
    )
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def get_latest_tasks_by_article(
    session: AsyncSession,
) -> dict[int, EmbeddingTask]:
    """Most recently created task per article."""
    ranked = (
        select(
            EmbeddingTask.id,
            func.row_number()
            .over(
                partition_by=EmbeddingTask.article_id,
                order_by=EmbeddingTask.created_at.desc(),
            )
            .label("rank"),
        )
    ).subquery()
    stmt = select(EmbeddingTask).join(ranked, ranked.c.id == EmbeddingTask.id).where(
        ranked.c.rank == 1
    )
    result = await session.execute(stmt)
    return {task.article_id: task for task in result.scalars().all()}


async def get_articles_with_completed_tasks(session: AsyncSession) -> set[int]:
    stmt = (
        select(EmbeddingTask.article_id)
        .where(EmbeddingTask.status == TaskStatus.completed)
        .distinct()
    )
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def get_tasks_for_operation(
    session: AsyncSession, operation_id: str
) -> list[EmbeddingTask]:
    """Tasks whose metadata carries the given bulk operation_id."""
    stmt = (
        select(EmbeddingTask)
        .where(EmbeddingTask.task_metadata["operation_id"].as_string() == operation_id)
        .order_by(EmbeddingTask.created_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_recent_operation_ids(session: AsyncSession, limit: int = 10) -> list[str]:
    """Distinct bulk operation ids, most recently started first."""
    operation_id = EmbeddingTask.task_metadata["operation_id"].as_string()
    stmt = (
        select(operation_id, func.min(EmbeddingTask.created_at).label("started_at"))
        .where(operation_id.is_not(None))
        .group_by(operation_id)
        .order_by(func.min(EmbeddingTask.created_at).desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [row[0] for row in result.all()]


async def get_oldest_pending_created_at(session: AsyncSession) -> datetime | None:
    stmt = select(func.min(EmbeddingTask.created_at)).where(
        EmbeddingTask.status == TaskStatus.pending
    )
    result = await session.execute(stmt)
    return as_utc(result.scalar_one_or_none())


async def count_failures_since(session: AsyncSession, since: datetime) -> int:
    stmt = (
        select(func.count(EmbeddingTask.id))
        .where(EmbeddingTask.status == TaskStatus.failed)
        .where(EmbeddingTask.completed_at >= since)
    )
    result = await session.execute(stmt)
    return result.scalar_one()


async def count_finished_since(session: AsyncSession, since: datetime) -> dict[str, int]:
    """Completed and failed task counts with completed_at >= since."""
    stmt = (
        select(EmbeddingTask.status, func.count(EmbeddingTask.id))
        .where(EmbeddingTask.status.in_([TaskStatus.completed, TaskStatus.failed]))
        .where(EmbeddingTask.completed_at >= since)
        .group_by(EmbeddingTask.status)
    )
    result = await session.execute(stmt)
    counts = {TaskStatus.completed.value: 0, TaskStatus.failed.value: 0}
    for status, count in result.all():
        counts[status.value] = count
    return counts


async def average_processing_time_ms(
    session: AsyncSession, since: datetime
) -> float | None:
    """Mean completed_at - processed_at of tasks completed since the given time."""
    stmt = (
        select(EmbeddingTask.processed_at, EmbeddingTask.completed_at)
        .where(EmbeddingTask.status == TaskStatus.completed)
        .where(EmbeddingTask.completed_at >= since)
        .where(EmbeddingTask.processed_at.is_not(None))
    )
    result = await session.execute(stmt)
    durations = [
        (as_utc(completed) - as_utc(processed)).total_seconds() * 1000
        for processed, completed in result.all()
    ]
    if not durations:
        return None
    return sum(durations) / len(durations)
