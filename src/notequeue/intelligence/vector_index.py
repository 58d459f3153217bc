"""pgvector-backed vector index.

Chunk vectors live in chunk_embeddings, one row per (article_id,
chunk_index). Upserts use INSERT ... ON CONFLICT DO UPDATE so a retried
task overwrites what a previous attempt wrote.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from notequeue.database.models.article import ChunkEmbedding
from notequeue.database.models.base import utcnow

logger = structlog.get_logger(__name__)


class PgVectorIndex:
    """VectorIndex implementation on the chunk_embeddings table.

    Attributes:
        session_factory: Callable producing AsyncSession instances.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self.session_factory = session_factory

    async def upsert(
        self,
        article_id: int,
        chunk_index: int,
        vector: list[float],
        text: str,
        heading_path: list[str],
    ) -> None:
        async with self.session_factory() as session:
            dialect = session.bind.dialect.name if session.bind is not None else ""
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            now = utcnow()
            stmt = insert(ChunkEmbedding).values(
                article_id=article_id,
                chunk_index=chunk_index,
                heading_path=heading_path,
                text=text,
                embedding=vector,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ChunkEmbedding.article_id, ChunkEmbedding.chunk_index],
                set_={
                    "heading_path": stmt.excluded.heading_path,
                    "text": stmt.excluded.text,
                    "embedding": stmt.excluded.embedding,
                    "updated_at": now,
                },
            )
            await session.execute(stmt)
            await session.commit()

    async def delete_all_for_article(self, article_id: int) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(ChunkEmbedding).where(ChunkEmbedding.article_id == article_id)
            )
            await session.commit()

        count = result.rowcount or 0
        logger.debug("article_vectors_deleted", article_id=article_id, count=count)
        return count

    async def articles_with_vectors(self) -> set[int]:
        async with self.session_factory() as session:
            result = await session.execute(select(ChunkEmbedding.article_id).distinct())
            return set(result.scalars().all())

    async def count_chunks(self, article_id: int) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ChunkEmbedding.id).where(ChunkEmbedding.article_id == article_id)
            )
            return len(result.all())
