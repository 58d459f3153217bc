"""Unit tests for the task processor and outcome classification."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from notequeue.collaborators import ArticleContent, Chunk
from notequeue.database.models.task import (
    EmbeddingTask,
    TaskOperation,
    TaskPriority,
    TaskStatus,
)
from notequeue.errors import ArticleNotFoundError, EmbeddingProviderError
from notequeue.worker.processor import TaskOutcome, TaskProcessor


def make_task(operation: TaskOperation, article_id: int = 7) -> EmbeddingTask:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return EmbeddingTask(
        id=uuid.uuid4(),
        article_id=article_id,
        slug="queue-notes",
        operation=operation,
        priority=TaskPriority.normal,
        status=TaskStatus.processing,
        attempts=1,
        max_attempts=3,
        created_at=now,
        scheduled_at=now,
        processed_at=now,
    )


@pytest.fixture
def article_store() -> AsyncMock:
    store = AsyncMock()
    store.read_article_content.return_value = ArticleContent(
        title="Queue notes", body="# Queue\n\nfirst\n\n## Worker\n\nsecond"
    )
    return store


@pytest.fixture
def chunker() -> Mock:
    chunker = Mock()
    chunker.chunk.return_value = [
        Chunk(chunk_index=0, heading_path=["# Queue"], text="first"),
        Chunk(chunk_index=1, heading_path=["# Queue", "## Worker"], text="second"),
    ]
    return chunker


@pytest.fixture
def provider() -> AsyncMock:
    provider = AsyncMock()
    provider.embed.side_effect = lambda text: [float(len(text))] * 3
    return provider


@pytest.fixture
def vector_index() -> AsyncMock:
    index = AsyncMock()
    index.delete_all_for_article.return_value = 4
    return index


@pytest.fixture
def processor(
    article_store: AsyncMock, chunker: Mock, provider: AsyncMock, vector_index: AsyncMock
) -> TaskProcessor:
    return TaskProcessor(article_store, chunker, provider, vector_index)


class TestTaskOutcome:
    def test_collaborator_error_carries_classification(self) -> None:
        outcome = TaskOutcome.from_exception(ArticleNotFoundError(3))
        assert outcome.success is False
        assert outcome.terminal is True
        assert outcome.error_message == "Article not found: 3"

    def test_transient_provider_error(self) -> None:
        outcome = TaskOutcome.from_exception(EmbeddingProviderError("HTTP 503", status_code=503))
        assert outcome.terminal is False

    def test_unknown_exception_is_transient(self) -> None:
        outcome = TaskOutcome.from_exception(httpx.ConnectError("refused"))
        assert outcome.terminal is False
        assert outcome.error_message == "ConnectError: refused"


class TestTaskProcessor:
    @pytest.mark.asyncio
    async def test_create_embeds_every_chunk(
        self, processor: TaskProcessor, provider: AsyncMock, vector_index: AsyncMock
    ) -> None:
        outcome = await processor.process(make_task(TaskOperation.create))

        assert outcome.success is True
        assert outcome.chunks_written == 2
        assert provider.embed.await_count == 2
        vector_index.delete_all_for_article.assert_not_awaited()
        vector_index.upsert.assert_any_await(7, 0, [5.0] * 3, "first", ["# Queue"])
        vector_index.upsert.assert_any_await(
            7, 1, [6.0] * 3, "second", ["# Queue", "## Worker"]
        )

    @pytest.mark.asyncio
    async def test_update_replaces_existing_vectors(
        self, processor: TaskProcessor, vector_index: AsyncMock
    ) -> None:
        calls: list[str] = []
        vector_index.delete_all_for_article.side_effect = lambda article_id: calls.append(
            "delete"
        ) or 4
        vector_index.upsert.side_effect = lambda *args: calls.append("upsert")

        outcome = await processor.process(make_task(TaskOperation.update))

        assert outcome.success is True
        assert outcome.chunks_deleted == 4
        assert calls == ["delete", "upsert", "upsert"]

    @pytest.mark.asyncio
    async def test_update_keeps_vectors_when_embedding_fails(
        self, processor: TaskProcessor, provider: AsyncMock, vector_index: AsyncMock
    ) -> None:
        provider.embed.side_effect = EmbeddingProviderError("HTTP 500", status_code=500)

        outcome = await processor.process(make_task(TaskOperation.update))

        assert outcome.success is False
        assert outcome.terminal is False
        vector_index.delete_all_for_article.assert_not_awaited()
        vector_index.upsert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_does_not_read_article(
        self, processor: TaskProcessor, article_store: AsyncMock, vector_index: AsyncMock
    ) -> None:
        outcome = await processor.process(make_task(TaskOperation.delete))

        assert outcome.success is True
        assert outcome.chunks_deleted == 4
        article_store.read_article_content.assert_not_awaited()
        vector_index.upsert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_article_is_terminal(
        self, processor: TaskProcessor, article_store: AsyncMock
    ) -> None:
        article_store.read_article_content.side_effect = ArticleNotFoundError(7)

        outcome = await processor.process(make_task(TaskOperation.create))

        assert outcome.success is False
        assert outcome.terminal is True

    @pytest.mark.asyncio
    async def test_unexpected_error_is_caught_as_transient(
        self, processor: TaskProcessor, vector_index: AsyncMock
    ) -> None:
        vector_index.upsert.side_effect = OSError("disk full")

        outcome = await processor.process(make_task(TaskOperation.create))

        assert outcome.success is False
        assert outcome.terminal is False
        assert "disk full" in outcome.error_message

    @pytest.mark.asyncio
    async def test_empty_article_writes_nothing(
        self, processor: TaskProcessor, chunker: Mock, vector_index: AsyncMock
    ) -> None:
        chunker.chunk.return_value = []

        outcome = await processor.process(make_task(TaskOperation.create))

        assert outcome.success is True
        assert outcome.chunks_written == 0
        vector_index.upsert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_metrics_recorded_when_configured(
        self,
        article_store: AsyncMock,
        chunker: Mock,
        provider: AsyncMock,
        vector_index: AsyncMock,
    ) -> None:
        metrics = AsyncMock()
        processor = TaskProcessor(article_store, chunker, provider, vector_index, metrics)

        await processor.process(make_task(TaskOperation.create))

        metrics.record_database_query_time.assert_awaited_once()
        metrics.record_embedding_generation_time.assert_awaited_once()
        assert (
            metrics.record_embedding_generation_time.await_args.kwargs["chunk_count"] == 2
        )
