"""Bulk operation helpers.

A bulk operation is not stored anywhere. It is the set of tasks whose
metadata carries the same ``operation_id``, and its summary is recomputed
from those tasks on every request.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from notequeue.database.models.base import as_utc
from notequeue.database.models.task import EmbeddingTask, TaskStatus
from notequeue.schemas import BulkOperationStatus, BulkOperationSummary

OPERATION_ID_KEY = "operation_id"


def new_operation_id() -> str:
    return f"bulk_{uuid.uuid4().hex}"


def success_rate(completed: int, failed: int) -> float:
    """completed / (completed + failed) * 100, or 0 when nothing finished."""
    finished = completed + failed
    if finished == 0:
        return 0.0
    return completed / finished * 100


def summarize_operation(
    operation_id: str, tasks: Sequence[EmbeddingTask]
) -> BulkOperationSummary | None:
    """Aggregate the tasks of one bulk operation.

    Args:
        operation_id: The grouping key.
        tasks: Every task tagged with operation_id.

    Returns:
        The summary, or None when no task carries the id.
    """
    if not tasks:
        return None

    counts = {status: 0 for status in TaskStatus}
    errors: list[str] = []
    durations_ms: list[float] = []

    for task in tasks:
        counts[task.status] += 1
        if task.status == TaskStatus.failed and task.error_message:
            if task.error_message not in errors:
                errors.append(task.error_message)
        if (
            task.status == TaskStatus.completed
            and task.processed_at is not None
            and task.completed_at is not None
        ):
            elapsed = as_utc(task.completed_at) - as_utc(task.processed_at)
            durations_ms.append(elapsed.total_seconds() * 1000)

    completed = counts[TaskStatus.completed]
    failed = counts[TaskStatus.failed]

    if all(task.is_terminal for task in tasks):
        status = (
            BulkOperationStatus.COMPLETED if completed > 0 else BulkOperationStatus.FAILED
        )
    else:
        status = BulkOperationStatus.PROCESSING

    completed_at = None
    if status != BulkOperationStatus.PROCESSING:
        finished = [as_utc(t.completed_at) for t in tasks if t.completed_at is not None]
        completed_at = max(finished) if finished else None

    return BulkOperationSummary(
        operation_id=operation_id,
        status=status,
        started_at=min(as_utc(task.created_at) for task in tasks),
        completed_at=completed_at,
        total_tasks=len(tasks),
        completed_tasks=completed,
        failed_tasks=failed,
        pending_tasks=counts[TaskStatus.pending],
        processing_tasks=counts[TaskStatus.processing],
        success_rate=success_rate(completed, failed),
        average_processing_time_ms=(
            sum(durations_ms) / len(durations_ms) if durations_ms else None
        ),
        errors=errors,
    )
