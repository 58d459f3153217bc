"""Chunking, embedding and vector storage adapters.

Public API:
    MarkdownChunker: Heading-aware overlapping chunker.
    OllamaClient: Async Ollama HTTP client.
    OllamaEmbeddingProvider: Normalising embedding provider over OllamaClient.
    PgVectorIndex: chunk_embeddings table with pgvector vectors.
"""

from notequeue.intelligence.chunking import MarkdownChunker
from notequeue.intelligence.embeddings import OllamaEmbeddingProvider
from notequeue.intelligence.ollama_client import OllamaClient
from notequeue.intelligence.vector_index import PgVectorIndex

__all__ = [
    "MarkdownChunker",
    "OllamaClient",
    "OllamaEmbeddingProvider",
    "PgVectorIndex",
]
