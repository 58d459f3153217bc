"""Embedding task model.

Defines the EmbeddingTask table and its enums. A task asks the worker to
create, update or delete the vector embeddings of one article. Tasks are
never edited in place by callers; every state change goes through a single
conditional UPDATE in notequeue.database.queries.task.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from notequeue.database.models.base import Base, utcnow


class TaskOperation(enum.Enum):
    """What the worker should do with an article's embeddings."""

    create = "create"
    update = "update"
    delete = "delete"


class TaskPriority(enum.Enum):
    """Dequeue priority. high is served before normal, normal before low."""

    high = "high"
    normal = "normal"
    low = "low"


class TaskStatus(enum.Enum):
    """Task lifecycle.

    States:
        pending: Waiting to be claimed once scheduled_at has passed.
        processing: Claimed by the worker.
        completed: Embeddings written successfully.
        failed: Last attempt failed. Retryable while attempts < max_attempts.
    """

    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class EmbeddingTask(Base):
    """A request to (re)compute or remove the embeddings of one article.

    Attributes:
        id: UUID primary key generated on insert.
        article_id: Article the task operates on.
        slug: Article slug at enqueue time.
        operation: create, update or delete.
        priority: high, normal or low.
        status: Current lifecycle state.
        attempts: Number of times the task was claimed.
        max_attempts: Claim budget; failed rows at the budget are terminal.
        created_at: Enqueue time.
        scheduled_at: Earliest time the task may be claimed.
        processed_at: Time of the current (or last) claim.
        completed_at: Time the last attempt finished, successfully or not.
        error_message: Message of the last failure.
        task_metadata: Free-form JSON. Bulk enqueues store operation_id here.
    """

    __tablename__ = "embedding_tasks"
    __table_args__ = (
        Index(
            "ix_embedding_tasks_claim",
            "status",
            "priority",
            "scheduled_at",
        ),
        Index("ix_embedding_tasks_article_id", "article_id"),
        Index("ix_embedding_tasks_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    article_id: Mapped[int] = mapped_column(Integer, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)
    operation: Mapped[TaskOperation] = mapped_column(nullable=False)
    priority: Mapped[TaskPriority] = mapped_column(
        default=TaskPriority.normal,
        nullable=False,
    )
    status: Mapped[TaskStatus] = mapped_column(
        default=TaskStatus.pending,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    task_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        nullable=True,
    )

    @property
    def is_terminal(self) -> bool:
        """True once no further state change will happen without intervention."""
        if self.status == TaskStatus.completed:
            return True
        return self.status == TaskStatus.failed and self.attempts >= self.max_attempts

    def __repr__(self) -> str:
        return (
            f"<EmbeddingTask id={self.id} article_id={self.article_id} "
            f"operation={self.operation.value} status={self.status.value}>"
        )
