"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations wrap an OpenAI-compatible embeddings endpoint (OpenAI,
OpenRouter) or a deterministic local mock.  One provider is selected at
startup by :mod:`evidence_pipeline.providers.factory`, so a single
ingestion run never mixes vector dimensionalities.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from evidence_pipeline.models.provider import EmbeddingResult


# Concrete implementations:
#   OpenAIEmbeddingProvider  -- OpenAI-compatible /embeddings (requires API key)
#   MockEmbeddingProvider    -- SHA-256 seeded unit vectors, no network
# Located in: evidence_pipeline/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and retrieval."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> EmbeddingResult:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Callers are responsible
            for batching; implementations send one request per call.

        Returns
        -------
        EmbeddingResult
            ``vectors`` positionally aligned with *texts*, the model id,
            request latency and token usage when the backend reports it.
            Callers must still verify ``len(vectors) == len(texts)``.

        Raises
        ------
        evidence_pipeline.utils.errors.EmbeddingError
            If the backend call fails.  ``kind`` classifies the failure
            (quota, auth, unavailable, generation).
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text (e.g. a search query)."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Constant for the lifetime of the provider instance.
        """

    @abstractmethod
    def get_model_id(self) -> str:
        """Return the model identifier recorded on ingested sources."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present)."""

    def is_mock(self) -> bool:
        """Return ``True`` for local fake backends that need no rate limiting."""
        return False
