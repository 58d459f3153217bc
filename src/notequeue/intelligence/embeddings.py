"""Embedding provider backed by Ollama.

All embeddings are normalised to unit vectors so the vector index can use
cosine distance directly.

Example usage:
    >>> async with OllamaClient(OllamaConfig()) as ollama:
    ...     provider = OllamaEmbeddingProvider(ollama)
    ...     vector = await provider.embed("Hello world")
"""

from __future__ import annotations

import time

import numpy as np
import structlog

from notequeue.errors import EmbeddingProviderError
from notequeue.intelligence.ollama_client import OllamaClient

logger = structlog.get_logger(__name__)


class OllamaEmbeddingProvider:
    """EmbeddingProvider implementation on top of OllamaClient.

    Attributes:
        client: Open OllamaClient
        dimensions: Expected vector length, or None to accept any
    """

    def __init__(self, client: OllamaClient, dimensions: int | None = None) -> None:
        self.client = client
        self.dimensions = dimensions

    @staticmethod
    def normalize(embedding: list[float]) -> list[float]:
        """Scale a vector to unit L2 norm. Zero vectors are returned unchanged."""
        arr = np.asarray(embedding, dtype=np.float32)
        norm = np.linalg.norm(arr)

        if norm == 0:
            logger.warning("embedding_zero_norm", embedding_dim=len(embedding))
            return list(embedding)

        return (arr / norm).tolist()

    async def embed(self, text: str) -> list[float]:
        """Generate a normalised embedding.

        Raises:
            EmbeddingProviderError: On provider failure, an empty input or
                a dimension mismatch. The last two are terminal.
        """
        if not text or not text.strip():
            raise EmbeddingProviderError(
                "Cannot generate embedding for empty or whitespace text",
                transient=False,
            )

        start = time.monotonic()
        raw = await self.client.generate_embedding(text)

        if self.dimensions is not None and len(raw) != self.dimensions:
            raise EmbeddingProviderError(
                f"Embedding dimension mismatch: expected {self.dimensions}, got {len(raw)}",
                transient=False,
            )

        normalized = self.normalize(raw)
        logger.debug(
            "embedding_generated",
            text_length=len(text),
            embedding_dim=len(normalized),
            duration_seconds=round(time.monotonic() - start, 3),
        )
        return normalized
