"""Article and chunk embedding models.

The articles table belongs to the notes application; the queue only reads
it. chunk_embeddings holds one vector per article chunk and is written by
the worker through notequeue.intelligence.vector_index.PgVectorIndex.
"""

from __future__ import annotations

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from notequeue.database.models.base import JSONType, Base, utcnow

EMBEDDING_DIMENSIONS = 768


class Article(Base):
    """A markdown article. Soft-deleted rows carry deleted_at.

    Attributes:
        id: Integer primary key.
        slug: URL slug.
        title: Article title.
        content: Markdown body.
        deleted_at: Soft deletion time.
        updated_at: Last edit time.
    """

    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


class ChunkEmbedding(Base):
    """Vector embedding of one article chunk.

    Attributes:
        id: Integer primary key.
        article_id: Owning article.
        chunk_index: Position of the chunk within the article.
        heading_path: Markdown headings enclosing the chunk.
        text: Chunk text.
        embedding: Normalised embedding vector.
        updated_at: Time the vector was written.
    """

    __tablename__ = "chunk_embeddings"
    __table_args__ = (
        UniqueConstraint(
            "article_id", "chunk_index", name="uq_chunk_embeddings_article_chunk"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    article_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    heading_path: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    embedding = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
