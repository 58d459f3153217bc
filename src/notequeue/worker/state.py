"""Worker lifecycle state and the persisted status snapshot.

WorkerStatus is owned by one EmbeddingWorker. It lives in memory while the
worker runs and is written to the single-row embedding_worker_status table
through persist(); load() restores the last snapshot at startup so
counters and the previous heartbeat stay visible after a restart.
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from notequeue.database.models.base import as_utc, utcnow
from notequeue.database.queries import worker_status as status_queries

logger = structlog.get_logger(__name__)


class WorkerState(enum.Enum):
    """Worker lifecycle: STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class WorkerStatus:
    """In-memory worker snapshot with explicit persistence.

    Attributes:
        is_running: Whether the worker is running.
        last_heartbeat: Time of the last tick.
        started_at: Time the worker started.
        tasks_processed: Tasks finished since start.
        tasks_succeeded: Tasks completed since start.
        tasks_failed: Tasks failed since start.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory
        self.is_running = False
        self.last_heartbeat: datetime | None = None
        self.started_at: datetime | None = None
        self.tasks_processed = 0
        self.tasks_succeeded = 0
        self.tasks_failed = 0

    async def load(self) -> WorkerStatus:
        """Replace in-memory fields with the persisted snapshot, if one exists."""
        async with self._session_factory() as session:
            row = await status_queries.get_worker_status(session)

        if row is not None:
            self.is_running = row.is_running
            self.last_heartbeat = as_utc(row.last_heartbeat)
            self.started_at = as_utc(row.started_at)
            self.tasks_processed = row.tasks_processed
            self.tasks_succeeded = row.tasks_succeeded
            self.tasks_failed = row.tasks_failed
        return self

    async def persist(self) -> None:
        async with self._session_factory() as session:
            await status_queries.save_worker_status(
                session,
                is_running=self.is_running,
                last_heartbeat=self.last_heartbeat,
                started_at=self.started_at,
                tasks_processed=self.tasks_processed,
                tasks_succeeded=self.tasks_succeeded,
                tasks_failed=self.tasks_failed,
            )

    def mark_started(self, now: datetime | None = None) -> None:
        """Reset counters for a fresh run."""
        now = now or utcnow()
        self.is_running = True
        self.started_at = now
        self.last_heartbeat = now
        self.tasks_processed = 0
        self.tasks_succeeded = 0
        self.tasks_failed = 0

    def mark_stopped(self) -> None:
        self.is_running = False

    def beat(self, now: datetime | None = None) -> None:
        self.last_heartbeat = now or utcnow()

    def record_outcome(self, success: bool) -> None:
        self.tasks_processed += 1
        if success:
            self.tasks_succeeded += 1
        else:
            self.tasks_failed += 1

    def heartbeat_age(self, now: datetime | None = None) -> timedelta | None:
        if self.last_heartbeat is None:
            return None
        return (now or utcnow()) - self.last_heartbeat

    def is_heartbeat_stale(self, threshold: timedelta, now: datetime | None = None) -> bool:
        """True if the worker claims to run but has not ticked within threshold."""
        if not self.is_running:
            return False
        age = self.heartbeat_age(now)
        return age is None or age > threshold
