"""Result models returned by the queue service and task queries.

All models are plain pydantic BaseModels so the CLI can render them and
callers can serialise them without touching ORM objects.
"""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, Field

from notequeue.database.models.task import EmbeddingTask, TaskPriority, TaskStatus

# ---------------------------------------------------------------------------
# Queue state
# ---------------------------------------------------------------------------


class QueueStats(BaseModel):
    """Task counts by status and by status x priority.

    Attributes:
        pending: Pending task count.
        processing: Processing task count.
        completed: Completed task count.
        failed: Failed task count (retryable and terminal).
        total: Live row count of the task table.
        by_priority: status -> priority -> count, zero-filled.
    """

    pending: int = Field(default=0)
    processing: int = Field(default=0)
    completed: int = Field(default=0)
    failed: int = Field(default=0)
    total: int = Field(default=0)
    by_priority: dict[str, dict[str, int]] = Field(default_factory=dict)


class StuckTaskReport(BaseModel):
    """Outcome of one stuck-task sweep.

    Attributes:
        reset_to_pending: Tasks returned to pending for another attempt.
        marked_failed: Tasks failed terminally because their budget was spent.
    """

    reset_to_pending: int = Field(default=0)
    marked_failed: int = Field(default=0)

    @property
    def total(self) -> int:
        return self.reset_to_pending + self.marked_failed


class QueueHealth(BaseModel):
    """Operational health snapshot of the queue.

    Attributes:
        is_healthy: True when no issue was detected.
        stats: Current queue counts.
        oldest_pending_task: created_at of the oldest pending task.
        recent_failures: Failed tasks finished in the last 24 hours.
        average_processing_time_ms: Mean processing time of tasks completed
            in the last 24 hours.
        issues: Human-readable list of detected problems.
    """

    is_healthy: bool = Field(default=True)
    stats: QueueStats = Field(default_factory=QueueStats)
    oldest_pending_task: datetime | None = Field(default=None)
    recent_failures: int = Field(default=0)
    average_processing_time_ms: float | None = Field(default=None)
    issues: list[str] = Field(default_factory=list)


class TaskView(BaseModel):
    """Detached, serialisable view of an EmbeddingTask row."""

    id: str
    article_id: int
    slug: str
    operation: str
    priority: str
    status: str
    attempts: int
    max_attempts: int
    created_at: datetime
    scheduled_at: datetime
    processed_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    error_message: str | None = Field(default=None)
    metadata: dict | None = Field(default=None)

    @classmethod
    def from_task(cls, task: EmbeddingTask) -> TaskView:
        return cls(
            id=str(task.id),
            article_id=task.article_id,
            slug=task.slug,
            operation=task.operation.value,
            priority=task.priority.value,
            status=task.status.value,
            attempts=task.attempts,
            max_attempts=task.max_attempts,
            created_at=task.created_at,
            scheduled_at=task.scheduled_at,
            processed_at=task.processed_at,
            completed_at=task.completed_at,
            error_message=task.error_message,
            metadata=task.task_metadata,
        )


# ---------------------------------------------------------------------------
# Article identification and bulk operations
# ---------------------------------------------------------------------------


class EmbeddingReason(str, enum.Enum):
    """Why an article needs its embeddings regenerated."""

    NO_COMPLETED_TASK = "no_completed_task"
    FAILED_EMBEDDING = "failed_embedding"
    MISSING_EMBEDDING = "missing_embedding"


class ArticleNeedingEmbedding(BaseModel):
    """An article whose vector state is out of sync with its task history."""

    article_id: int
    slug: str
    title: str
    reason: EmbeddingReason
    last_task_status: TaskStatus | None = Field(default=None)
    last_error: str | None = Field(default=None)


class BulkProgress(BaseModel):
    """Progress snapshot yielded once per processed article.

    The final snapshot of a stream has done=True and carries the full
    result, including task_ids.

    Attributes:
        operation_id: Correlation key written into every queued task.
        total_articles: Articles identified for this operation.
        processed_articles: Articles handled so far (queued, skipped or errored).
        queued_tasks: Tasks enqueued so far.
        skipped_articles: Articles skipped because a task was already active.
        errors: Messages for articles that could not be enqueued.
        current_article_id: Article handled by this snapshot.
        current_slug: Slug of that article.
        task_ids: Enqueued task ids, populated on the final snapshot.
        done: True on the final snapshot.
    """

    operation_id: str
    total_articles: int = Field(default=0)
    processed_articles: int = Field(default=0)
    queued_tasks: int = Field(default=0)
    skipped_articles: int = Field(default=0)
    errors: list[str] = Field(default_factory=list)
    current_article_id: int | None = Field(default=None)
    current_slug: str | None = Field(default=None)
    task_ids: list[str] = Field(default_factory=list)
    done: bool = Field(default=False)

    @property
    def percent_complete(self) -> float:
        if self.total_articles == 0:
            return 100.0
        return self.processed_articles / self.total_articles * 100


class BulkEnqueueResult(BaseModel):
    """Final result of a bulk enqueue."""

    operation_id: str
    total_articles: int = Field(default=0)
    queued_tasks: int = Field(default=0)
    skipped_articles: int = Field(default=0)
    errors: list[str] = Field(default_factory=list)
    task_ids: list[str] = Field(default_factory=list)


class BulkOperationStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BulkOperationSummary(BaseModel):
    """Aggregate over all tasks tagged with one operation_id.

    Attributes:
        operation_id: The grouping key.
        status: completed, failed or processing.
        started_at: Earliest created_at in the group.
        completed_at: Latest completed_at, once the group is finished.
        total_tasks: Tasks in the group.
        completed_tasks: Completed tasks.
        failed_tasks: Failed tasks, retryable and terminal.
        pending_tasks: Pending tasks.
        processing_tasks: Processing tasks.
        success_rate: completed / (completed + failed) * 100, 0 when both are 0.
        average_processing_time_ms: Mean completed_at - processed_at over
            completed tasks.
        errors: Distinct error messages of failed tasks, in first-seen order.
    """

    operation_id: str
    status: BulkOperationStatus
    started_at: datetime
    completed_at: datetime | None = Field(default=None)
    total_tasks: int = Field(default=0)
    completed_tasks: int = Field(default=0)
    failed_tasks: int = Field(default=0)
    pending_tasks: int = Field(default=0)
    processing_tasks: int = Field(default=0)
    success_rate: float = Field(default=0.0)
    average_processing_time_ms: float | None = Field(default=None)
    errors: list[str] = Field(default_factory=list)


def priority_choices() -> list[str]:
    return [p.value for p in TaskPriority]
