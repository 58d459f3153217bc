"""Queue service: the public contract of the embedding task queue.

QueueService wraps the task query functions with configuration defaults,
audit logging and metrics. Each method opens its own short-lived session
so a failure in one call never leaves a half-open transaction behind for
the next one.

The service does not deduplicate enqueues. Callers that must not stack
work for one article check has_active_task() first; bulk enqueue does this
itself.

Example usage:
    >>> service = QueueService(config.queue, session_factory, audit, metrics,
    ...                        article_store=store, vector_index=index)
    >>> task_id = await service.enqueue(42, "my-note", TaskOperation.update)
    >>> async for progress in service.queue_bulk_embedding_update():
    ...     print(progress.processed_articles, progress.total_articles)
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from notequeue.collaborators import ArticleStore, VectorIndex
from notequeue.config import QueueConfig
from notequeue.database.models.base import utcnow
from notequeue.database.models.task import (
    EmbeddingTask,
    TaskOperation,
    TaskPriority,
    TaskStatus,
)
from notequeue.database.queries import task as task_queries
from notequeue.errors import QueueError
from notequeue.observability.audit import AuditLogger
from notequeue.observability.metrics import MetricsRecorder
from notequeue.queue.bulk import OPERATION_ID_KEY, new_operation_id, summarize_operation
from notequeue.schemas import (
    ArticleNeedingEmbedding,
    BulkEnqueueResult,
    BulkOperationSummary,
    BulkProgress,
    EmbeddingReason,
    QueueHealth,
    QueueStats,
    StuckTaskReport,
)

logger = structlog.get_logger(__name__)

# Health thresholds
MAX_HEALTHY_PENDING = 100
MAX_HEALTHY_PROCESSING = 10
MAX_HEALTHY_RECENT_FAILURES = 10
MAX_PENDING_AGE = timedelta(hours=24)


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


class QueueService:
    """Enqueue, claim, retry and report on embedding tasks.

    Attributes:
        config: Immutable queue configuration.
        session_factory: Callable producing AsyncSession instances.
        audit: Audit logger for queue and bulk events.
        metrics: Metrics recorder.
        article_store: Article listing, required for identification and bulk enqueue.
        vector_index: Vector presence lookup, required for identification.
    """

    def __init__(
        self,
        config: QueueConfig,
        session_factory: Callable[[], AsyncSession],
        audit: AuditLogger,
        metrics: MetricsRecorder,
        article_store: ArticleStore | None = None,
        vector_index: VectorIndex | None = None,
    ) -> None:
        self.config = config
        self.session_factory = session_factory
        self.audit = audit
        self.metrics = metrics
        self.article_store = article_store
        self.vector_index = vector_index
        self._logger = logger.bind(component="QueueService")

    # ------------------------------------------------------------------
    # Core queue operations
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        article_id: int,
        slug: str,
        operation: TaskOperation,
        priority: TaskPriority = TaskPriority.normal,
        max_attempts: int | None = None,
        scheduled_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Create a pending task and return its id.

        Args:
            article_id: Article the task operates on.
            slug: Article slug.
            operation: create, update or delete.
            priority: Dequeue priority.
            max_attempts: Claim budget. Defaults to config.max_retries.
            scheduled_at: Earliest claim time. Defaults to now.
            metadata: Free-form JSON payload.
        """
        async with self.session_factory() as session:
            task = await task_queries.enqueue_task(
                session,
                article_id=article_id,
                slug=slug,
                operation=operation,
                priority=priority,
                max_attempts=max_attempts or self.config.max_retries,
                scheduled_at=scheduled_at,
                metadata=metadata,
            )

        task_id = str(task.id)
        await self.audit.log_queue_operation(
            "enqueue",
            task_id=task_id,
            article_id=article_id,
            metadata={"operation": operation.value, "priority": priority.value},
        )
        return task_id

    async def dequeue(self) -> EmbeddingTask | None:
        """Atomically claim the next eligible task, or return None."""
        async with self.session_factory() as session:
            task = await task_queries.dequeue_task(session)

        if task is not None:
            await self.audit.log_queue_operation(
                "dequeue",
                task_id=str(task.id),
                article_id=task.article_id,
                metadata={"attempt": task.attempts, "priority": task.priority.value},
            )
        return task

    async def update_status(
        self,
        task_id: str | UUID,
        status: TaskStatus,
        error_message: str | None = None,
        terminal: bool = False,
    ) -> None:
        """Record an attempt outcome. Never reschedules.

        Raises:
            TaskNotFoundError: If no task has this id.
        """
        async with self.session_factory() as session:
            await task_queries.update_task_status(
                session, _as_uuid(task_id), status, error_message, terminal
            )

    async def retry_failed_tasks(self) -> int:
        """Reschedule retryable failed tasks with exponential backoff."""
        async with self.session_factory() as session:
            count = await task_queries.retry_failed_tasks(
                session, self.config.retry_backoff_base
            )

        if count:
            await self.audit.log_queue_operation("retry_failed", metadata={"count": count})
        return count

    async def clear_completed_tasks(self, retention: timedelta | None = None) -> int:
        """Delete completed tasks older than the retention window.

        Args:
            retention: Age cutoff. Defaults to config.cleanup_retention_days.
        """
        retention = retention if retention is not None else self.config.cleanup_retention
        async with self.session_factory() as session:
            count = await task_queries.clear_completed_tasks(session, retention)

        await self.audit.log_queue_operation(
            "cleanup",
            metadata={"count": count, "retention_days": retention.total_seconds() / 86400},
        )
        return count

    async def reset_stuck_tasks(
        self, max_processing_time: timedelta | None = None
    ) -> StuckTaskReport:
        """Reclaim tasks stuck in processing.

        Args:
            max_processing_time: Age threshold. Defaults to config.max_processing_time_ms.
        """
        threshold = (
            max_processing_time
            if max_processing_time is not None
            else self.config.max_processing_time
        )
        async with self.session_factory() as session:
            report = await task_queries.reset_stuck_tasks(session, threshold)

        if report.total:
            await self.audit.log_queue_operation(
                "stuck_task_cleanup",
                metadata=report.model_dump(),
            )
        return report

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get_queue_stats(self) -> QueueStats:
        async with self.session_factory() as session:
            return await task_queries.get_queue_stats(session)

    async def get_queue_health(self) -> QueueHealth:
        """Queue counts plus detected operational issues."""
        now = utcnow()
        since = now - timedelta(hours=24)
        async with self.session_factory() as session:
            stats = await task_queries.get_queue_stats(session)
            oldest_pending = await task_queries.get_oldest_pending_created_at(session)
            recent_failures = await task_queries.count_failures_since(session, since)
            average_ms = await task_queries.average_processing_time_ms(session, since)

        issues: list[str] = []
        if stats.pending > MAX_HEALTHY_PENDING:
            issues.append(f"High number of pending tasks: {stats.pending}")
        if stats.processing > MAX_HEALTHY_PROCESSING:
            issues.append(f"High number of processing tasks: {stats.processing}")
        if recent_failures > MAX_HEALTHY_RECENT_FAILURES:
            issues.append(f"High failure rate: {recent_failures} failures in the last 24 hours")
        if oldest_pending is not None and now - oldest_pending > MAX_PENDING_AGE:
            hours = (now - oldest_pending).total_seconds() / 3600
            issues.append(f"Oldest pending task is {hours:.1f} hours old")

        return QueueHealth(
            is_healthy=not issues,
            stats=stats,
            oldest_pending_task=oldest_pending,
            recent_failures=recent_failures,
            average_processing_time_ms=average_ms,
            issues=issues,
        )

    async def get_task(self, task_id: str | UUID) -> EmbeddingTask | None:
        async with self.session_factory() as session:
            return await task_queries.get_task(session, _as_uuid(task_id))

    async def list_tasks_by_status(
        self, status: TaskStatus, limit: int = 50, offset: int = 0
    ) -> list[EmbeddingTask]:
        async with self.session_factory() as session:
            return await task_queries.list_tasks_by_status(session, status, limit, offset)

    async def get_tasks_for_article(self, article_id: int) -> list[EmbeddingTask]:
        async with self.session_factory() as session:
            return await task_queries.get_tasks_for_article(session, article_id)

    async def has_active_task(self, article_id: int) -> bool:
        """True if the article has a pending or processing task."""
        async with self.session_factory() as session:
            return await task_queries.has_active_task(session, article_id)

    async def get_average_processing_time_ms(self, since: datetime) -> float | None:
        async with self.session_factory() as session:
            return await task_queries.average_processing_time_ms(session, since)

    async def count_finished_since(self, since: datetime) -> dict[str, int]:
        async with self.session_factory() as session:
            return await task_queries.count_finished_since(session, since)

    # ------------------------------------------------------------------
    # Identification and bulk operations
    # ------------------------------------------------------------------

    def _require_collaborators(self) -> tuple[ArticleStore, VectorIndex]:
        if self.article_store is None or self.vector_index is None:
            raise RuntimeError(
                "QueueService needs an article_store and a vector_index for this operation"
            )
        return self.article_store, self.vector_index

    async def identify_articles_needing_embedding(self) -> list[ArticleNeedingEmbedding]:
        """Diff the live article set against task history and stored vectors.

        For each article, in this order:
        - failed_embedding: the latest task failed terminally.
        - no_completed_task: no completed task and no stored vectors.
        - missing_embedding: a completed task exists but no vectors are stored.

        Articles with vectors and no terminal failure are up to date.
        """
        article_store, vector_index = self._require_collaborators()

        articles = await article_store.list_articles()
        with_vectors = await vector_index.articles_with_vectors()
        async with self.session_factory() as session:
            latest = await task_queries.get_latest_tasks_by_article(session)
            completed = await task_queries.get_articles_with_completed_tasks(session)

        result: list[ArticleNeedingEmbedding] = []
        for article in articles:
            last_task = latest.get(article.article_id)
            has_vectors = article.article_id in with_vectors

            if (
                last_task is not None
                and last_task.status == TaskStatus.failed
                and last_task.is_terminal
            ):
                reason = EmbeddingReason.FAILED_EMBEDDING
            elif not has_vectors and article.article_id not in completed:
                reason = EmbeddingReason.NO_COMPLETED_TASK
            elif not has_vectors:
                reason = EmbeddingReason.MISSING_EMBEDDING
            else:
                continue

            result.append(
                ArticleNeedingEmbedding(
                    article_id=article.article_id,
                    slug=article.slug,
                    title=article.title,
                    reason=reason,
                    last_task_status=last_task.status if last_task else None,
                    last_error=last_task.error_message if last_task else None,
                )
            )

        self._logger.info(
            "articles_needing_embedding_identified",
            total_articles=len(articles),
            needing_embedding=len(result),
        )
        return result

    async def queue_bulk_embedding_update(
        self, priority: TaskPriority = TaskPriority.normal
    ) -> AsyncIterator[BulkProgress]:
        """Enqueue update tasks for every article needing embedding.

        Articles that already have a pending or processing task are skipped.
        Tasks are inserted in transactions of config.batch_size rows and
        tagged with one new operation_id. One progress snapshot is yielded
        per processed article; the last one has done=True.

        Args:
            priority: Priority of the enqueued tasks.

        Yields:
            BulkProgress snapshots.
        """
        start = time.monotonic()
        operation_id = new_operation_id()
        candidates = await self.identify_articles_needing_embedding()
        async with self.session_factory() as session:
            active = await task_queries.get_articles_with_active_tasks(session)

        progress = BulkProgress(operation_id=operation_id, total_articles=len(candidates))
        task_ids: list[str] = []

        await self.audit.log_bulk_operation(
            "started",
            operation_id,
            total_tasks=len(candidates),
            metadata={"priority": priority.value},
        )

        batch_size = self.config.batch_size
        for offset in range(0, len(candidates), batch_size):
            batch = candidates[offset : offset + batch_size]
            to_queue = [a for a in batch if a.article_id not in active]
            queued_ids = {a.article_id for a in to_queue}

            batch_error: str | None = None
            if to_queue:
                items = [
                    {
                        "article_id": a.article_id,
                        "slug": a.slug,
                        "operation": TaskOperation.update,
                        "priority": priority,
                        "metadata": {
                            OPERATION_ID_KEY: operation_id,
                            "reason": a.reason.value,
                            "title": a.title,
                        },
                    }
                    for a in to_queue
                ]
                try:
                    async with self.session_factory() as session:
                        created = await task_queries.enqueue_tasks(
                            session, items, max_attempts=self.config.max_retries
                        )
                    task_ids.extend(str(task.id) for task in created)
                    active.update(a.article_id for a in to_queue)
                except Exception as e:
                    batch_error = str(e)
                    self._logger.error(
                        "bulk_batch_failed",
                        operation_id=operation_id,
                        batch_offset=offset,
                        error=batch_error,
                    )

            for article in batch:
                if article.article_id not in queued_ids:
                    progress.skipped_articles += 1
                elif batch_error is not None:
                    progress.errors.append(
                        f"Failed to queue article {article.slug}: {batch_error}"
                    )
                else:
                    progress.queued_tasks += 1
                progress.processed_articles += 1
                progress.current_article_id = article.article_id
                progress.current_slug = article.slug
                yield progress.model_copy(deep=True)

        duration_ms = _elapsed_ms(start)
        final = progress.model_copy(
            update={
                "task_ids": task_ids,
                "done": True,
                "current_article_id": None,
                "current_slug": None,
            },
            deep=True,
        )

        await self.audit.log_bulk_operation(
            "queued",
            operation_id,
            total_tasks=final.queued_tasks,
            duration=duration_ms,
            metadata={
                "total_articles": final.total_articles,
                "skipped_articles": final.skipped_articles,
                "errors": len(final.errors),
            },
        )
        await self.metrics.record_bulk_operation_time(
            duration_ms,
            operation_id,
            total_tasks=final.queued_tasks,
        )
        yield final

    async def run_bulk_embedding_update(
        self, priority: TaskPriority = TaskPriority.normal
    ) -> BulkEnqueueResult:
        """Drain queue_bulk_embedding_update() and return its final result."""
        final: BulkProgress | None = None
        async for progress in self.queue_bulk_embedding_update(priority):
            final = progress

        if final is None or not final.done:
            raise QueueError("Bulk enqueue stream ended without a final snapshot")
        return BulkEnqueueResult(
            operation_id=final.operation_id,
            total_articles=final.total_articles,
            queued_tasks=final.queued_tasks,
            skipped_articles=final.skipped_articles,
            errors=final.errors,
            task_ids=final.task_ids,
        )

    async def get_bulk_operation_summary(
        self, operation_id: str
    ) -> BulkOperationSummary | None:
        """Aggregate the tasks tagged with operation_id. None if there are none."""
        async with self.session_factory() as session:
            tasks = await task_queries.get_tasks_for_operation(session, operation_id)
        return summarize_operation(operation_id, tasks)

    async def list_recent_bulk_operations(self, limit: int = 10) -> list[BulkOperationSummary]:
        """Summaries of the most recently started bulk operations."""
        async with self.session_factory() as session:
            operation_ids = await task_queries.list_recent_operation_ids(session, limit)

        summaries: list[BulkOperationSummary] = []
        for operation_id in operation_ids:
            summary = await self.get_bulk_operation_summary(operation_id)
            if summary is not None:
                summaries.append(summary)
        return summaries


def _as_uuid(value: str | UUID) -> UUID:
    return value if isinstance(value, UUID) else UUID(value)
