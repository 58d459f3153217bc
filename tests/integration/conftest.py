"""Pytest fixtures for integration tests.

Provides async database fixtures backed by a temporary SQLite file. The
production system runs on PostgreSQL with pgvector; SQLite covers the
query logic, and a file (not :memory:) lets several sessions hold their
own connections so concurrent claims can be exercised.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncGenerator

import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from notequeue.articles import SqlArticleStore
from notequeue.config import QueueConfig
from notequeue.database.models import Article, Base, EmbeddingTask
from notequeue.intelligence.vector_index import PgVectorIndex
from notequeue.observability.audit import AuditLogger
from notequeue.observability.metrics import MetricsRecorder
from notequeue.queue.service import QueueService


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file-backed SQLite async engine with all tables."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'notequeue.db'}",
        echo=False,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def queue_config() -> QueueConfig:
    return QueueConfig(
        worker_interval_ms=1000,
        heartbeat_interval_ms=5000,
        retry_backoff_base_ms=1000,
        batch_size=10,
        max_retries=3,
    )


@pytest_asyncio.fixture
async def audit(session_factory: async_sessionmaker[AsyncSession]) -> AuditLogger:
    return AuditLogger(session_factory)


@pytest_asyncio.fixture
async def metrics(
    session_factory: async_sessionmaker[AsyncSession], audit: AuditLogger
) -> MetricsRecorder:
    return MetricsRecorder(session_factory, audit)


@pytest_asyncio.fixture
async def article_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlArticleStore:
    return SqlArticleStore(session_factory)


@pytest_asyncio.fixture
async def vector_index(session_factory: async_sessionmaker[AsyncSession]) -> PgVectorIndex:
    return PgVectorIndex(session_factory)


@pytest_asyncio.fixture
async def queue_service(
    queue_config: QueueConfig,
    session_factory: async_sessionmaker[AsyncSession],
    audit: AuditLogger,
    metrics: MetricsRecorder,
    article_store: SqlArticleStore,
    vector_index: PgVectorIndex,
) -> QueueService:
    return QueueService(
        queue_config,
        session_factory,
        audit,
        metrics,
        article_store=article_store,
        vector_index=vector_index,
    )


async def add_articles(
    session_factory: async_sessionmaker[AsyncSession],
    count: int,
    *,
    start: int = 1,
    body: str = "# Heading\n\nSome markdown body text.",
) -> list[Article]:
    """Insert ``count`` articles with ids start..start+count-1."""
    articles = [
        Article(id=i, slug=f"note-{i}", title=f"Note {i}", content=body)
        for i in range(start, start + count)
    ]
    async with session_factory() as session:
        session.add_all(articles)
        await session.commit()
    return articles


async def force_task_fields(session: AsyncSession, task_id: Any, **fields: Any) -> None:
    """Overwrite task columns directly, bypassing the queue API."""
    await session.execute(
        update(EmbeddingTask)
        .where(EmbeddingTask.id == task_id)
        .values(**fields)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


@pytest_asyncio.fixture
async def make_articles(session_factory: async_sessionmaker[AsyncSession]):
    """Factory fixture: ``await make_articles(count, start=..., body=...)``."""

    async def _make(count: int, **kwargs: Any) -> list[Article]:
        return await add_articles(session_factory, count, **kwargs)

    return _make


@pytest_asyncio.fixture
async def force_fields(session_factory: async_sessionmaker[AsyncSession]):
    """Factory fixture: ``await force_fields(task_id, status=..., ...)``."""

    async def _force(task_id: Any, **fields: Any) -> None:
        async with session_factory() as session:
            await force_task_fields(session, task_id, **fields)

    return _force
