"""Interfaces of the collaborators the worker drives.

The queue core never depends on a concrete article store, chunker,
embedding provider or vector index. Implementations raise
notequeue.errors.CollaboratorError (or a subclass) to signal failures; the
``transient`` flag on the error decides whether the task is retried.
Any other exception is treated as transient.
"""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, Field


class ArticleContent(BaseModel):
    """Article text as read by the worker."""

    title: str
    body: str


class ArticleSummary(BaseModel):
    """Identity of a live (not deleted) article."""

    article_id: int
    slug: str
    title: str


class Chunk(BaseModel):
    """One segment of an article body.

    Attributes:
        chunk_index: Position of the chunk within the article, from 0.
        heading_path: Markdown headings enclosing the chunk, outermost first.
        text: Chunk text.
    """

    chunk_index: int
    heading_path: list[str] = Field(default_factory=list)
    text: str


class ArticleStore(Protocol):
    """Read access to article content."""

    async def list_articles(self) -> list[ArticleSummary]:
        """Every live article, ordered by id."""
        ...

    async def read_article_content(self, article_id: int) -> ArticleContent:
        """Return title and body.

        Raises:
            ArticleNotFoundError: If the article no longer exists.
        """
        ...


class Chunker(Protocol):
    """Splits an article body into overlapping chunks."""

    def chunk(self, body: str) -> list[Chunk]:
        ...


class EmbeddingProvider(Protocol):
    """Turns text into a vector."""

    async def embed(self, text: str) -> list[float]:
        ...


class VectorIndex(Protocol):
    """Stores chunk vectors keyed by (article_id, chunk_index)."""

    async def upsert(
        self,
        article_id: int,
        chunk_index: int,
        vector: list[float],
        text: str,
        heading_path: list[str],
    ) -> None:
        ...

    async def delete_all_for_article(self, article_id: int) -> int:
        """Remove every chunk of the article. Returns the number removed."""
        ...

    async def articles_with_vectors(self) -> set[int]:
        """Ids of articles that have at least one stored chunk."""
        ...
