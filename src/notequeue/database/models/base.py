"""SQLAlchemy declarative base and shared column helpers.

Timestamps are stored as timezone-aware UTC in PostgreSQL. SQLite (used by
the test suite) returns naive datetimes from the same columns, so values
read back from the database go through as_utc() before any arithmetic.

Example:
    >>> class MyModel(Base):
    ...     __tablename__ = "my_table"
    ...     id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """SQLAlchemy 2.0 declarative base for all notequeue models."""

    type_annotation_map = {
        dict[str, Any]: JSONType,
    }


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
