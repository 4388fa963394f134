"""Provider selection, done once at startup.

The API app (``main.py``) and the CLI both build their providers here so
they always agree on the embedding model, and therefore on vector
dimensionality, for a given configuration.
"""

from __future__ import annotations

import httpx
import structlog

from evidence_pipeline.config.settings import Settings
from evidence_pipeline.interfaces.document_store import IDocumentStore
from evidence_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from evidence_pipeline.interfaces.llm_provider import ILLMProvider
from evidence_pipeline.providers.embedding.mock_embedding_provider import MockEmbeddingProvider
from evidence_pipeline.providers.embedding.openai_embedding_provider import (
    OpenAIEmbeddingProvider,
)
from evidence_pipeline.providers.llm.anthropic_provider import AnthropicLLMProvider
from evidence_pipeline.providers.llm.mock_provider import MockLLMProvider
from evidence_pipeline.providers.llm.openai_provider import OpenAILLMProvider
from evidence_pipeline.providers.store.memory_document_store import MemoryDocumentStore
from evidence_pipeline.providers.store.sqlite_document_store import SQLiteDocumentStore
from evidence_pipeline.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)


def build_embedding_provider(settings: Settings) -> IEmbeddingProvider:
    """Select the embedding provider.

    ``auto`` uses the OpenAI-compatible endpoint when a key is configured
    and the mock otherwise.  Asking for ``openai`` without a key is a
    configuration error rather than a silent fallback.
    """
    choice = settings.embedding_provider
    if choice == "mock" or (choice == "auto" and not settings.remote_api_key):
        provider: IEmbeddingProvider = MockEmbeddingProvider(
            dimension=settings.mock_embedding_dimension
        )
    else:
        provider = OpenAIEmbeddingProvider(settings=settings)
        if not provider.is_available():
            raise ConfigurationError(
                message="EMBEDDING_PROVIDER=openai requires OPENROUTER_API_KEY or OPENAI_API_KEY",
                provider_name=provider.get_provider_name(),
            )

    logger.info(
        "embedding_provider_selected",
        provider=provider.get_provider_name(),
        model=provider.get_model_id(),
        dimension=provider.get_dimension(),
    )
    return provider


def build_llm_provider(
    settings: Settings, http_client: httpx.AsyncClient | None = None
) -> ILLMProvider:
    """Select the completion provider.

    ``auto`` priority: OpenAI-compatible (OpenRouter) -> Anthropic -> mock.
    """
    choice = settings.completion_provider
    provider: ILLMProvider
    if choice == "openai" or (choice == "auto" and settings.remote_api_key):
        provider = OpenAILLMProvider(settings=settings, http_client=http_client)
    elif choice == "anthropic" or (choice == "auto" and settings.anthropic_api_key):
        provider = AnthropicLLMProvider(settings=settings, http_client=http_client)
    else:
        provider = MockLLMProvider()

    if not provider.is_available():
        raise ConfigurationError(
            message=f"COMPLETION_PROVIDER={choice} has no API key configured",
            provider_name=provider.get_provider_name(),
        )
    logger.info("completion_provider_selected", provider=provider.get_provider_name())
    return provider


def build_document_store(settings: Settings) -> IDocumentStore:
    if settings.store_backend == "sqlite":
        return SQLiteDocumentStore(db_path=settings.sqlite_path)
    return MemoryDocumentStore()
