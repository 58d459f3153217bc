"""Task processor: runs one embedding task against the collaborators.

process() never raises for collaborator failures. It converts them into a
TaskOutcome whose ``terminal`` flag comes from the error classification
(CollaboratorError.transient); unknown exceptions are transient. The
worker turns the outcome into a status update without inspecting any
exception.
"""

from __future__ import annotations

import time

import structlog
from pydantic import BaseModel, Field

from notequeue.collaborators import ArticleStore, Chunk, Chunker, EmbeddingProvider, VectorIndex
from notequeue.database.models.task import EmbeddingTask, TaskOperation
from notequeue.errors import CollaboratorError
from notequeue.observability.metrics import MetricsRecorder

logger = structlog.get_logger(__name__)


class TaskOutcome(BaseModel):
    """Result of one processing attempt.

    Attributes:
        success: Whether the embeddings were written (or removed).
        error_message: Failure description.
        terminal: True if retrying cannot help.
        chunks_written: Vectors upserted by the attempt.
        chunks_deleted: Vectors removed by the attempt.
    """

    success: bool
    error_message: str | None = Field(default=None)
    terminal: bool = Field(default=False)
    chunks_written: int = Field(default=0)
    chunks_deleted: int = Field(default=0)

    @classmethod
    def ok(cls, chunks_written: int = 0, chunks_deleted: int = 0) -> TaskOutcome:
        return cls(success=True, chunks_written=chunks_written, chunks_deleted=chunks_deleted)

    @classmethod
    def from_exception(cls, error: Exception) -> TaskOutcome:
        """Classify an exception raised by a collaborator."""
        message = str(error) or type(error).__name__
        if isinstance(error, CollaboratorError):
            return cls(success=False, error_message=message, terminal=not error.transient)
        return cls(success=False, error_message=f"{type(error).__name__}: {message}")


class TaskProcessor:
    """Executes create, update and delete tasks.

    Attributes:
        article_store: Article content source.
        chunker: Splits article bodies.
        embedding_provider: Text to vector.
        vector_index: Chunk vector storage.
        metrics: Recorder for read and embedding timings.
    """

    def __init__(
        self,
        article_store: ArticleStore,
        chunker: Chunker,
        embedding_provider: EmbeddingProvider,
        vector_index: VectorIndex,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self.article_store = article_store
        self.chunker = chunker
        self.embedding_provider = embedding_provider
        self.vector_index = vector_index
        self.metrics = metrics

    async def process(self, task: EmbeddingTask) -> TaskOutcome:
        try:
            if task.operation == TaskOperation.delete:
                deleted = await self.vector_index.delete_all_for_article(task.article_id)
                return TaskOutcome.ok(chunks_deleted=deleted)
            return await self._embed_article(task)
        except Exception as e:
            outcome = TaskOutcome.from_exception(e)
            logger.warning(
                "task_processing_failed",
                task_id=str(task.id),
                article_id=task.article_id,
                error=outcome.error_message,
                terminal=outcome.terminal,
            )
            return outcome

    async def _embed_article(self, task: EmbeddingTask) -> TaskOutcome:
        task_id = str(task.id)

        read_start = time.monotonic()
        article = await self.article_store.read_article_content(task.article_id)
        if self.metrics is not None:
            await self.metrics.record_database_query_time(
                (time.monotonic() - read_start) * 1000,
                query_type="read_article_content",
                task_id=task_id,
            )

        chunks = self.chunker.chunk(article.body)

        embed_start = time.monotonic()
        vectors: list[tuple[Chunk, list[float]]] = []
        for chunk in chunks:
            vectors.append((chunk, await self.embedding_provider.embed(chunk.text)))
        if self.metrics is not None:
            await self.metrics.record_embedding_generation_time(
                (time.monotonic() - embed_start) * 1000,
                task_id=task_id,
                article_id=task.article_id,
                chunk_count=len(chunks),
            )

        # update replaces the whole chunk set, including indexes past the new count
        deleted = 0
        if task.operation == TaskOperation.update:
            deleted = await self.vector_index.delete_all_for_article(task.article_id)

        for chunk, vector in vectors:
            await self.vector_index.upsert(
                task.article_id,
                chunk.chunk_index,
                vector,
                chunk.text,
                chunk.heading_path,
            )

        logger.info(
            "article_embedded",
            task_id=task_id,
            article_id=task.article_id,
            chunks=len(vectors),
        )
        return TaskOutcome.ok(chunks_written=len(vectors), chunks_deleted=deleted)
