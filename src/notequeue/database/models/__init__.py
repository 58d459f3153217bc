"""SQLAlchemy ORM models for notequeue.

All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from notequeue.database.models.article import Article, ChunkEmbedding
from notequeue.database.models.audit_log import AuditLogEntry, LogCategory, LogLevel
from notequeue.database.models.base import Base, as_utc, utcnow
from notequeue.database.models.metric import MetricType, MetricUnit, PerformanceMetric
from notequeue.database.models.task import (
    EmbeddingTask,
    TaskOperation,
    TaskPriority,
    TaskStatus,
)
from notequeue.database.models.worker_status import WorkerStatusRow

__all__ = [
    "Base",
    "utcnow",
    "as_utc",
    "EmbeddingTask",
    "TaskOperation",
    "TaskPriority",
    "TaskStatus",
    "WorkerStatusRow",
    "AuditLogEntry",
    "LogCategory",
    "LogLevel",
    "PerformanceMetric",
    "MetricType",
    "MetricUnit",
    "Article",
    "ChunkEmbedding",
]
