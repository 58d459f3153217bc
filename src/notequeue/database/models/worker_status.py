"""Worker status model.

A single-row table (id is always 1) holding the snapshot of the background
worker. External tooling reads last_heartbeat to detect a crashed worker.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from notequeue.database.models.base import Base

WORKER_STATUS_ROW_ID = 1


class WorkerStatusRow(Base):
    """Persisted worker snapshot.

    Attributes:
        id: Always 1.
        is_running: Whether a worker claims to be running.
        last_heartbeat: Time of the last completed tick.
        started_at: Time the running worker started.
        tasks_processed: Tasks finished since start, success or failure.
        tasks_succeeded: Tasks completed since start.
        tasks_failed: Tasks failed since start.
    """

    __tablename__ = "embedding_worker_status"
    __table_args__ = (
        CheckConstraint("id = 1", name="ck_embedding_worker_status_single_row"),
    )

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        default=WORKER_STATUS_ROW_ID,
        autoincrement=False,
    )
    is_running: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_heartbeat: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    tasks_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tasks_succeeded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tasks_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
