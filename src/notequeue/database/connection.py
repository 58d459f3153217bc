"""Database connection management for notequeue.

Factory functions for the SQLAlchemy async engine and session factory,
configured from DatabaseConfig. Production runs on PostgreSQL through
asyncpg; the test suite points the same factories at aiosqlite.

Example usage:
    >>> config = DatabaseConfig(url="postgresql+asyncpg://localhost/notes")
    >>> engine = get_engine(config)
    >>> SessionFactory = get_session_factory(engine)
    >>>
    >>> async with SessionFactory() as session:
    ...     result = await session.execute(select(EmbeddingTask))
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from notequeue.config import DatabaseConfig


def get_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    Pool settings only apply to server databases. SQLite URLs get
    NullPool, so no connection outlives the event loop that opened it.

    Args:
        config: Database configuration containing URL, pool settings,
                and SQL echo preference.

    Returns:
        Configured AsyncEngine instance.
    """
    if config.url.startswith("sqlite"):
        return create_async_engine(config.url, echo=config.echo, poolclass=NullPool)

    return create_async_engine(
        config.url,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_pre_ping=True,
        echo=config.echo,
    )


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    Sessions use expire_on_commit=False so returned task objects stay
    readable after the query function commits.

    Args:
        engine: AsyncEngine to bind sessions to.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
