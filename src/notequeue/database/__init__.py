"""Database layer for notequeue.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    Base: SQLAlchemy declarative base for all models.
"""

from notequeue.database.connection import get_engine, get_session_factory
from notequeue.database.models import (
    Base,
    EmbeddingTask,
    TaskOperation,
    TaskPriority,
    TaskStatus,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "Base",
    "EmbeddingTask",
    "TaskOperation",
    "TaskPriority",
    "TaskStatus",
]
