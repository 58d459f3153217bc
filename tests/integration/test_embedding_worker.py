"""Integration tests for the embedding worker.

The queue, audit log, metrics and status snapshot run against the test
database. The processor is either a mock returning canned outcomes or a
real TaskProcessor whose embedding provider is mocked.
"""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notequeue.articles import SqlArticleStore
from notequeue.config import QueueConfig
from notequeue.database.models.audit_log import LogCategory
from notequeue.database.models.base import utcnow
from notequeue.database.models.metric import MetricType
from notequeue.database.models.task import TaskOperation, TaskStatus
from notequeue.intelligence.chunking import MarkdownChunker
from notequeue.intelligence.vector_index import PgVectorIndex
from notequeue.observability.audit import AuditLogger, LogQueryFilters
from notequeue.observability.metrics import MetricQueryFilters, MetricsRecorder
from notequeue.queue.service import QueueService
from notequeue.worker import EmbeddingWorker, TaskOutcome, TaskProcessor, WorkerState, WorkerStatus


@pytest.fixture
def processor() -> AsyncMock:
    mock = AsyncMock(spec=TaskProcessor)
    mock.process.return_value = TaskOutcome.ok(chunks_written=2)
    return mock


@pytest.fixture
def worker(
    queue_config: QueueConfig,
    queue_service: QueueService,
    processor: AsyncMock,
    audit: AuditLogger,
    metrics: MetricsRecorder,
) -> EmbeddingWorker:
    return EmbeddingWorker(queue_config, queue_service, processor, audit, metrics)


async def wait_for_status(
    queue_service: QueueService, task_id: str, status: TaskStatus, timeout: float = 5.0
) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        task = await queue_service.get_task(task_id)
        if task is not None and task.status == status:
            return
        await asyncio.sleep(0.05)
    raise AssertionError(f"task {task_id} never reached {status.value}")


# ---------------------------------------------------------------------------
# Single ticks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_idle_tick_writes_heartbeat(
    worker: EmbeddingWorker,
    processor: AsyncMock,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    assert await worker.run_once() is None

    processor.process.assert_not_awaited()
    persisted = await WorkerStatus(session_factory).load()
    assert persisted.last_heartbeat is not None
    assert persisted.tasks_processed == 0


@pytest.mark.asyncio
async def test_successful_tick(
    worker: EmbeddingWorker,
    queue_service: QueueService,
    audit: AuditLogger,
    metrics: MetricsRecorder,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    task_id = await queue_service.enqueue(3, "note-3", TaskOperation.create)

    outcome = await worker.run_once()

    assert outcome.success is True
    task = await queue_service.get_task(task_id)
    assert task.status == TaskStatus.completed
    assert task.attempts == 1
    assert worker.status.tasks_processed == 1
    assert worker.status.tasks_succeeded == 1

    events = await audit.query_logs(
        LogQueryFilters(category=LogCategory.task_lifecycle, task_id=task_id)
    )
    assert [e.entry_metadata["event"] for e in events] == ["completed", "started"]
    assert events[0].entry_metadata["chunks_written"] == 2

    samples = await metrics.query_metrics(
        MetricQueryFilters(metric_type=MetricType.task_processing_time)
    )
    assert samples[0].task_id == task_id
    assert samples[0].metric_metadata["success"] is True
    assert samples[0].metric_metadata["wait_time_ms"] >= 0

    persisted = await WorkerStatus(session_factory).load()
    assert persisted.tasks_succeeded == 1


@pytest.mark.asyncio
async def test_transient_failure_is_retryable(
    worker: EmbeddingWorker, queue_service: QueueService, processor: AsyncMock
) -> None:
    processor.process.return_value = TaskOutcome(
        success=False, error_message="Ollama HTTP 503", terminal=False
    )
    task_id = await queue_service.enqueue(3, "note-3", TaskOperation.update)

    outcome = await worker.run_once()

    assert outcome.success is False
    task = await queue_service.get_task(task_id)
    assert task.status == TaskStatus.failed
    assert task.attempts == 1
    assert task.error_message == "Ollama HTTP 503"
    assert worker.status.tasks_failed == 1
    assert await queue_service.retry_failed_tasks() == 1


@pytest.mark.asyncio
async def test_terminal_failure_is_not_retried(
    worker: EmbeddingWorker, queue_service: QueueService, processor: AsyncMock
) -> None:
    processor.process.return_value = TaskOutcome(
        success=False, error_message="Article not found: 3", terminal=True
    )
    task_id = await queue_service.enqueue(3, "note-3", TaskOperation.update)

    await worker.run_once()

    task = await queue_service.get_task(task_id)
    assert task.status == TaskStatus.failed
    assert task.attempts == task.max_attempts
    assert task.is_terminal is True
    assert await queue_service.retry_failed_tasks() == 0


@pytest.mark.asyncio
async def test_tick_with_real_processor(
    queue_config: QueueConfig,
    queue_service: QueueService,
    audit: AuditLogger,
    metrics: MetricsRecorder,
    article_store: SqlArticleStore,
    vector_index: PgVectorIndex,
    make_articles,
) -> None:
    await make_articles(1, body="# Queue\n\nClaims are atomic.\n\n## Retries\n\nBackoff doubles.")
    provider = AsyncMock()
    provider.embed.return_value = [1.0] + [0.0] * 767
    processor = TaskProcessor(article_store, MarkdownChunker(), provider, vector_index, metrics)
    worker = EmbeddingWorker(queue_config, queue_service, processor, audit, metrics)

    created = await queue_service.enqueue(1, "note-1", TaskOperation.create)
    await worker.run_once()
    missing = await queue_service.enqueue(99, "gone", TaskOperation.create)
    outcome = await worker.run_once()

    assert (await queue_service.get_task(created)).status == TaskStatus.completed
    assert await vector_index.count_chunks(1) == 2
    assert outcome.terminal is True
    assert (await queue_service.get_task(missing)).is_terminal is True

    deleted = await queue_service.enqueue(1, "note-1", TaskOperation.delete)
    await worker.run_once()

    assert (await queue_service.get_task(deleted)).status == TaskStatus.completed
    assert await vector_index.count_chunks(1) == 0


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_start_process_stop(
    worker: EmbeddingWorker,
    queue_service: QueueService,
    audit: AuditLogger,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    task_id = await queue_service.enqueue(1, "note-1", TaskOperation.update)

    await worker.start()
    try:
        assert worker.state == WorkerState.RUNNING
        assert worker.is_running is True
        assert (await WorkerStatus(session_factory).load()).is_running is True
        await wait_for_status(queue_service, task_id, TaskStatus.completed)
    finally:
        await worker.stop()

    assert worker.state == WorkerState.STOPPED
    persisted = await WorkerStatus(session_factory).load()
    assert persisted.is_running is False
    assert persisted.tasks_processed == 1

    events = await audit.query_logs(LogQueryFilters(category=LogCategory.worker_status))
    assert [e.entry_metadata["event"] for e in events] == ["stopped", "started"]


@pytest.mark.asyncio
async def test_start_twice_is_noop(worker: EmbeddingWorker) -> None:
    await worker.start()
    try:
        await worker.start()
        assert worker.state == WorkerState.RUNNING
    finally:
        await worker.stop()

    await worker.stop()
    assert worker.state == WorkerState.STOPPED


@pytest.mark.asyncio
async def test_disabled_worker_does_not_start(
    queue_config: QueueConfig,
    queue_service: QueueService,
    processor: AsyncMock,
    audit: AuditLogger,
    metrics: MetricsRecorder,
) -> None:
    config = queue_config.model_copy(update={"enabled": False})
    worker = EmbeddingWorker(config, queue_service, processor, audit, metrics)

    await worker.start()

    assert worker.state == WorkerState.STOPPED
    assert worker.status.is_running is False


@pytest.mark.asyncio
async def test_stats_after_stop(worker: EmbeddingWorker) -> None:
    await worker.start()
    await worker.stop()

    stats = await worker.get_worker_stats()

    assert stats.state == WorkerState.STOPPED
    assert stats.is_running is False
    assert stats.heartbeat_stale is False
    assert stats.uptime_seconds is None


# ---------------------------------------------------------------------------
# Metrics and reporting
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_collect_metrics(
    worker: EmbeddingWorker,
    queue_service: QueueService,
    processor: AsyncMock,
    metrics: MetricsRecorder,
) -> None:
    await worker.collect_metrics()
    await queue_service.enqueue(1, "note-1", TaskOperation.update)
    await queue_service.enqueue(2, "note-2", TaskOperation.update)
    await queue_service.enqueue(3, "note-3", TaskOperation.update)
    processor.process.side_effect = [
        TaskOutcome.ok(chunks_written=1),
        TaskOutcome(success=False, error_message="boom"),
    ]
    await worker.run_once()
    await worker.run_once()
    await asyncio.sleep(0.01)

    await worker.collect_metrics()

    async def latest(metric_type: MetricType) -> list[float]:
        samples = await metrics.query_metrics(MetricQueryFilters(metric_type=metric_type))
        return [s.value for s in samples]

    depths = await latest(MetricType.queue_depth)
    assert depths == [1.0, 0.0]
    throughput = await latest(MetricType.queue_throughput)
    assert len(throughput) == 1 and throughput[0] > 0
    assert await latest(MetricType.worker_utilization) == [100.0]
    assert await latest(MetricType.error_rate) == [pytest.approx(50.0)]


@pytest.mark.asyncio
async def test_worker_stats(worker: EmbeddingWorker, queue_service: QueueService) -> None:
    await queue_service.enqueue(1, "note-1", TaskOperation.update)
    await worker.run_once()

    stats = await worker.get_worker_stats()

    assert stats.state == WorkerState.STOPPED
    assert stats.tasks_processed == 1
    assert stats.tasks_succeeded == 1
    assert stats.last_heartbeat is not None
    assert stats.average_processing_time_ms is not None


@pytest.mark.asyncio
async def test_retention_sweep(
    worker: EmbeddingWorker, queue_service: QueueService, force_fields
) -> None:
    task_id = await queue_service.enqueue(1, "note-1", TaskOperation.update)
    await force_fields(
        UUID(task_id),
        status=TaskStatus.completed,
        completed_at=utcnow() - timedelta(days=60),
    )

    await worker.run_retention_sweep()

    assert await queue_service.get_task(task_id) is None
