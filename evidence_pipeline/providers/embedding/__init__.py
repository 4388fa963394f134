"""Embedding provider implementations.

    - OpenAIEmbeddingProvider -- OpenAI-compatible /embeddings endpoint
      (OpenRouter by default, ``openai/text-embedding-3-small``, 1536 dims).
    - MockEmbeddingProvider   -- deterministic feature-hashed vectors,
      selected when no API key is configured.
"""

from evidence_pipeline.providers.embedding.mock_embedding_provider import MockEmbeddingProvider
from evidence_pipeline.providers.embedding.openai_embedding_provider import (
    OpenAIEmbeddingProvider,
)

__all__ = ["MockEmbeddingProvider", "OpenAIEmbeddingProvider"]
