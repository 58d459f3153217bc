"""Background embedding worker.

A single cooperative asyncio loop claims at most one task per tick. Each
tick writes the heartbeat first, even when the queue is empty, so liveness
can be judged independently of throughput. Housekeeping runs as separate
asyncio tasks on their own intervals:

- retry sweep (every worker interval): failed tasks with budget left go
  back to pending with exponential backoff
- stuck-task sweep (every stuck_check_interval): reclaims tasks abandoned
  in processing by a crashed worker
- metrics collection (every metrics_interval): throughput, queue depth,
  utilisation, error rate
- retention sweep (every cleanup_interval_hours): old completed tasks,
  audit entries and metric samples

An in-flight task is never cancelled. stop() waits for the current tick to
finish; a task abandoned by a killed process is reclaimed by the stuck-task
sweep of the next worker.

Example usage:
    >>> worker = EmbeddingWorker(config.queue, queue_service, processor, audit, metrics)
    >>> await worker.start()
    >>> ...
    >>> await worker.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

import structlog
from pydantic import BaseModel, Field

from notequeue.config import QueueConfig
from notequeue.database.models.base import as_utc, utcnow
from notequeue.database.models.task import EmbeddingTask, TaskStatus
from notequeue.logging import bind_task_context, clear_task_context
from notequeue.observability.audit import AuditLogger
from notequeue.observability.metrics import MetricsRecorder
from notequeue.queue.service import QueueService
from notequeue.worker.processor import TaskOutcome, TaskProcessor
from notequeue.worker.state import WorkerState, WorkerStatus

logger = structlog.get_logger(__name__)


class WorkerStats(BaseModel):
    """Worker snapshot for operational tooling.

    Attributes:
        state: Lifecycle state of this worker instance.
        is_running: Persisted running flag.
        last_heartbeat: Time of the last tick.
        started_at: Time the worker started.
        tasks_processed: Tasks finished since start.
        tasks_succeeded: Tasks completed since start.
        tasks_failed: Tasks failed since start.
        average_processing_time_ms: Mean processing time over the last 24 hours.
        heartbeat_stale: True if a running worker missed its heartbeat window.
        uptime_seconds: Seconds since started_at while running.
    """

    state: WorkerState
    is_running: bool
    last_heartbeat: datetime | None = Field(default=None)
    started_at: datetime | None = Field(default=None)
    tasks_processed: int = Field(default=0)
    tasks_succeeded: int = Field(default=0)
    tasks_failed: int = Field(default=0)
    average_processing_time_ms: float | None = Field(default=None)
    heartbeat_stale: bool = Field(default=False)
    uptime_seconds: float | None = Field(default=None)


class EmbeddingWorker:
    """Polls the queue and processes one embedding task per tick.

    Attributes:
        config: Immutable queue configuration.
        queue: Queue service used to claim and settle tasks.
        processor: Executes claimed tasks.
        audit: Audit logger.
        metrics: Metrics recorder.
        status: Persisted worker snapshot owned by this worker.
        state: Current lifecycle state.
    """

    def __init__(
        self,
        config: QueueConfig,
        queue: QueueService,
        processor: TaskProcessor,
        audit: AuditLogger,
        metrics: MetricsRecorder,
        status: WorkerStatus | None = None,
    ) -> None:
        self.config = config
        self.queue = queue
        self.processor = processor
        self.audit = audit
        self.metrics = metrics
        self.status = status or WorkerStatus(queue.session_factory)
        self.state = WorkerState.STOPPED

        self._stop_event = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._housekeeping: list[asyncio.Task[None]] = []
        self._last_metrics_at: float | None = None
        self._last_metrics_processed = 0
        self._logger = logger.bind(component="EmbeddingWorker")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.state == WorkerState.RUNNING

    async def start(self) -> None:
        """Start the polling loop and housekeeping jobs.

        No-op when the queue is disabled by configuration or the worker is
        not stopped.
        """
        if not self.config.enabled:
            self._logger.info("worker_disabled")
            return
        if self.state != WorkerState.STOPPED:
            self._logger.warning("worker_already_running", state=self.state.value)
            return

        self.state = WorkerState.STARTING
        try:
            await self.status.load()
            self.status.mark_started()
            await self.status.persist()
        except Exception:
            self.state = WorkerState.STOPPED
            raise

        if self.config.stuck_task_cleanup_enabled:
            await self._run_job("startup_stuck_task_sweep", self.queue.reset_stuck_tasks)

        await self.audit.log_worker_event(
            "started",
            is_running=True,
            metadata={
                "worker_interval_ms": self.config.worker_interval_ms,
                "max_retries": self.config.max_retries,
            },
        )

        self._stop_event = asyncio.Event()
        self._last_metrics_at = time.monotonic()
        self._last_metrics_processed = 0
        self.state = WorkerState.RUNNING
        self._loop_task = asyncio.create_task(self._run_loop(), name="embedding-worker-loop")

        jobs: list[tuple[str, timedelta, Callable[[], Awaitable[Any]]]] = [
            ("retry_sweep", self.config.worker_interval, self.queue.retry_failed_tasks),
            ("metrics_collection", self.config.metrics_interval, self.collect_metrics),
            ("retention_sweep", self.config.cleanup_interval, self.run_retention_sweep),
        ]
        if self.config.stuck_task_cleanup_enabled:
            jobs.append(
                ("stuck_task_sweep", self.config.stuck_check_interval, self.queue.reset_stuck_tasks)
            )
        self._housekeeping = [
            asyncio.create_task(self._periodic(name, interval, job), name=f"embedding-{name}")
            for name, interval, job in jobs
        ]

        self._logger.info(
            "worker_started",
            worker_interval_ms=self.config.worker_interval_ms,
            housekeeping_jobs=[name for name, _, _ in jobs],
        )

    async def stop(self) -> None:
        """Stop after the in-flight tick and persist is_running=False."""
        if self.state != WorkerState.RUNNING:
            self._logger.warning("worker_not_running", state=self.state.value)
            return

        self.state = WorkerState.STOPPING
        self._stop_event.set()

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        for task in self._housekeeping:
            task.cancel()
        await asyncio.gather(*self._housekeeping, return_exceptions=True)
        self._housekeeping = []

        self.status.mark_stopped()
        try:
            await self.status.persist()
        except Exception as e:
            self._logger.error("worker_status_persist_failed", error=str(e))

        await self.audit.log_worker_event(
            "stopped",
            is_running=False,
            tasks_processed=self.status.tasks_processed,
        )
        self.state = WorkerState.STOPPED
        self._logger.info("worker_stopped", tasks_processed=self.status.tasks_processed)

    async def wait_stopped(self) -> None:
        """Block until the polling loop exits."""
        if self._loop_task is not None:
            await asyncio.shield(self._loop_task)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def _sleep(self, interval: timedelta) -> bool:
        """Wait for interval or until stop is requested. Returns True on stop."""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval.total_seconds())
        return self._stop_event.is_set()

    async def _run_loop(self) -> None:
        self._logger.info("worker_loop_started")
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                # Store failures abort the tick only
                self._logger.error("worker_tick_failed", error=str(e), exc_info=True)
                await self.audit.log_worker_event("tick", error=e)

            if await self._sleep(self.config.worker_interval):
                break
        self._logger.info("worker_loop_exited")

    async def run_once(self) -> TaskOutcome | None:
        """One tick: heartbeat, claim at most one task, process it.

        Returns:
            The outcome of the processed task, or None when idle.
        """
        self.status.beat()
        await self.status.persist()

        task = await self.queue.dequeue()
        if task is None:
            return None
        return await self.process_task(task)

    async def process_task(self, task: EmbeddingTask) -> TaskOutcome:
        """Run a claimed task and record its outcome.

        Retry decisions are left to the retry sweep.
        """
        task_id = str(task.id)
        bind_task_context(task_id, task.article_id)
        try:
            await self.audit.log_task_event(
                task_id,
                "started",
                article_id=task.article_id,
                operation=task.operation.value,
                attempt=task.attempts,
            )

            start = time.monotonic()
            outcome = await self.processor.process(task)
            duration_ms = (time.monotonic() - start) * 1000

            if outcome.success:
                await self.queue.update_status(task.id, TaskStatus.completed)
            else:
                await self.queue.update_status(
                    task.id,
                    TaskStatus.failed,
                    outcome.error_message,
                    terminal=outcome.terminal,
                )
            self.status.record_outcome(outcome.success)

            await self.audit.log_task_event(
                task_id,
                "completed" if outcome.success else "attempt",
                article_id=task.article_id,
                operation=task.operation.value,
                attempt=task.attempts,
                duration=duration_ms,
                error=None if outcome.success else outcome.error_message,
                metadata={
                    "terminal": outcome.terminal or None,
                    "chunks_written": outcome.chunks_written,
                    "chunks_deleted": outcome.chunks_deleted,
                },
            )

            wait_ms = None
            if task.processed_at is not None:
                wait_ms = (
                    as_utc(task.processed_at) - as_utc(task.created_at)
                ).total_seconds() * 1000
            await self.metrics.record_task_processing_time(
                task_id,
                duration_ms,
                article_id=task.article_id,
                operation=task.operation.value,
                success=outcome.success,
                wait_time_ms=wait_ms,
            )

            await self.status.persist()
            return outcome
        finally:
            clear_task_context()

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def _run_job(self, name: str, job: Callable[[], Awaitable[Any]]) -> None:
        try:
            await job()
        except Exception as e:
            self._logger.error("housekeeping_job_failed", job=name, error=str(e), exc_info=True)

    async def _periodic(
        self, name: str, interval: timedelta, job: Callable[[], Awaitable[Any]]
    ) -> None:
        while not await self._sleep(interval):
            await self._run_job(name, job)

    async def collect_metrics(self) -> None:
        """Record throughput, queue depth, utilisation and error rate."""
        now = time.monotonic()
        period_ms = (now - (self._last_metrics_at or now)) * 1000
        processed = self.status.tasks_processed - self._last_metrics_processed
        self._last_metrics_at = now
        self._last_metrics_processed = self.status.tasks_processed

        stats = await self.queue.get_queue_stats()
        await self.metrics.record_queue_depth(
            stats.pending + stats.processing,
            metadata={"pending": stats.pending, "processing": stats.processing},
        )

        if period_ms > 0:
            await self.metrics.record_queue_throughput(processed, period_ms)
            ticks = period_ms / self.config.worker_interval_ms
            utilization = min(100.0, processed / ticks * 100) if ticks else 0.0
            await self.metrics.record_worker_utilization(
                utilization, metadata={"tasks_processed": processed}
            )

        if self.status.tasks_processed:
            await self.metrics.record_error_rate(
                self.status.tasks_failed / self.status.tasks_processed * 100,
                metadata={
                    "tasks_failed": self.status.tasks_failed,
                    "tasks_processed": self.status.tasks_processed,
                },
            )

    async def run_retention_sweep(self) -> None:
        """Delete old completed tasks, audit entries and metric samples."""
        tasks = await self.queue.clear_completed_tasks()
        logs = await self.audit.cleanup_old_logs(self.config.audit_retention_days)
        samples = await self.metrics.cleanup_old_metrics(self.config.metrics_retention_days)
        self._logger.info(
            "retention_sweep_complete",
            completed_tasks=tasks,
            audit_entries=logs,
            metric_samples=samples,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def get_worker_stats(self) -> WorkerStats:
        now = utcnow()
        average = await self.queue.get_average_processing_time_ms(now - timedelta(hours=24))
        uptime = None
        if self.status.is_running and self.status.started_at is not None:
            uptime = (now - self.status.started_at).total_seconds()
        return WorkerStats(
            state=self.state,
            is_running=self.status.is_running,
            last_heartbeat=self.status.last_heartbeat,
            started_at=self.status.started_at,
            tasks_processed=self.status.tasks_processed,
            tasks_succeeded=self.status.tasks_succeeded,
            tasks_failed=self.status.tasks_failed,
            average_processing_time_ms=average,
            heartbeat_stale=self.status.is_heartbeat_stale(self.config.heartbeat_interval, now),
            uptime_seconds=uptime,
        )
