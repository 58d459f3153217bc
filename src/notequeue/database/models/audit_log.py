"""Audit log model.

Append-only table of structured events about task lifecycle, worker state,
queue maintenance, performance samples and bulk operations.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from notequeue.database.models.base import Base, utcnow


class LogLevel(enum.Enum):
    debug = "debug"
    info = "info"
    warn = "warn"
    error = "error"


class LogCategory(enum.Enum):
    task_lifecycle = "task_lifecycle"
    worker_status = "worker_status"
    queue_operations = "queue_operations"
    performance = "performance"
    error_handling = "error_handling"
    bulk_operations = "bulk_operations"


class AuditLogEntry(Base):
    """One audit log event.

    Attributes:
        id: UUID primary key.
        timestamp: Event time.
        level: debug, info, warn or error.
        category: Subsystem the event belongs to.
        message: Human-readable message.
        task_id: Related task, if any.
        article_id: Related article, if any.
        operation_id: Related bulk operation, if any.
        entry_metadata: Free-form JSON payload.
        duration: Duration in milliseconds, if the event measured one.
        error: Error message, if the event reports a failure.
        stack_trace: Formatted traceback of the failure.
    """

    __tablename__ = "embedding_audit_logs"
    __table_args__ = (
        Index("ix_embedding_audit_logs_timestamp", "timestamp"),
        Index("ix_embedding_audit_logs_category_level", "category", "level"),
        Index("ix_embedding_audit_logs_task_id", "task_id"),
        Index("ix_embedding_audit_logs_operation_id", "operation_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    level: Mapped[LogLevel] = mapped_column(nullable=False)
    category: Mapped[LogCategory] = mapped_column(nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    task_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    article_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    operation_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    entry_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        nullable=True,
    )
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    stack_trace: Mapped[str | None] = mapped_column(Text, nullable=True)
