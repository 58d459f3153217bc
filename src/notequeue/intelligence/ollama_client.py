"""Ollama API client for embedding generation.

Async HTTP client for the Ollama ``/api/embeddings`` endpoint. Timeouts,
connection errors and 5xx responses are retried in-process with
exponential backoff; whatever still fails is raised as
EmbeddingProviderError with its transient flag set from the failure kind.

HTTP 4xx responses other than 408 and 429 are terminal: the same request
will be rejected again on the next attempt.

Example usage:
    >>> config = OllamaConfig(url="http://localhost:11434", model="nomic-embed-text")
    >>> async with OllamaClient(config) as client:
    ...     embedding = await client.generate_embedding("Hello world")
    ...     is_healthy = await client.health_check()
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from notequeue.config import OllamaConfig
from notequeue.errors import EmbeddingProviderError

logger = structlog.get_logger(__name__)

_RETRYABLE_CLIENT_STATUSES = {408, 429}


def is_transient_status(status_code: int) -> bool:
    """Whether a non-200 status may succeed on a later attempt."""
    if 400 <= status_code < 500:
        return status_code in _RETRYABLE_CLIENT_STATUSES
    return True


class OllamaClient:
    """Async client for the Ollama embedding API.

    Attributes:
        config: Ollama configuration containing URL, model and timeout settings
        max_retries: In-process retries for transient failures
        initial_backoff: First backoff delay in seconds
    """

    def __init__(
        self,
        config: OllamaConfig,
        max_retries: int = 2,
        initial_backoff: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        logger.info(
            "ollama_client_initialized",
            url=config.url,
            model=config.model,
            timeout=config.timeout_seconds,
        )

    async def __aenter__(self) -> OllamaClient:
        self._client = httpx.AsyncClient(
            base_url=self.config.url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("OllamaClient must be used as async context manager")
        return self._client

    async def _backoff(self, attempt: int, event: str, **fields: Any) -> None:
        delay = self.initial_backoff * (2**attempt)
        logger.warning(event, attempt=attempt + 1, backoff_seconds=delay, **fields)
        await asyncio.sleep(delay)

    async def generate_embedding(self, text: str) -> list[float]:
        """Generate an embedding vector for the given text.

        Args:
            text: Input text to embed

        Returns:
            Raw embedding vector as list of floats

        Raises:
            EmbeddingProviderError: If the request fails. ``transient`` is
                False for rejected requests and malformed responses.
        """
        client = self._get_client()
        payload = {"model": self.config.model, "prompt": text}

        for attempt in range(self.max_retries + 1):
            can_retry = attempt < self.max_retries
            try:
                response = await client.post("/api/embeddings", json=payload)
            except httpx.TimeoutException as e:
                if can_retry:
                    await self._backoff(attempt, "ollama_timeout_retry", error=str(e))
                    continue
                logger.error(
                    "ollama_timeout_exhausted",
                    max_retries=self.max_retries,
                    timeout_seconds=self.config.timeout_seconds,
                )
                raise EmbeddingProviderError(
                    f"Ollama request timed out after {self.max_retries + 1} attempts"
                ) from e
            except httpx.TransportError as e:
                if can_retry:
                    await self._backoff(
                        attempt, "ollama_connection_error_retry", error=str(e)
                    )
                    continue
                logger.error(
                    "ollama_connection_exhausted",
                    url=self.config.url,
                    max_retries=self.max_retries,
                )
                raise EmbeddingProviderError(
                    f"Failed to connect to Ollama at {self.config.url}: {e}"
                ) from e

            if response.status_code == 200:
                embedding = response.json().get("embedding")
                if not embedding or not isinstance(embedding, list):
                    raise EmbeddingProviderError(
                        "Invalid response format: missing or invalid 'embedding' field",
                        transient=False,
                        status_code=200,
                    )
                logger.debug(
                    "ollama_embedding_generated",
                    text_length=len(text),
                    embedding_dim=len(embedding),
                    attempt=attempt + 1,
                )
                return embedding

            transient = is_transient_status(response.status_code)
            if transient and can_retry:
                await self._backoff(
                    attempt,
                    "ollama_server_error_retry",
                    status_code=response.status_code,
                )
                continue

            raise EmbeddingProviderError(
                f"Ollama API error: HTTP {response.status_code}: {response.text}",
                transient=transient,
                status_code=response.status_code,
            )

        raise EmbeddingProviderError("Unexpected retry loop exit")

    async def health_check(self) -> bool:
        """Check if the Ollama server responds on /api/tags."""
        client = self._get_client()

        try:
            response = await client.get("/api/tags")
        except httpx.TransportError as e:
            logger.warning("ollama_health_check_error", url=self.config.url, error=str(e))
            return False

        if response.status_code != 200:
            logger.warning(
                "ollama_health_check_failed",
                url=self.config.url,
                status_code=response.status_code,
            )
            return False
        return True
