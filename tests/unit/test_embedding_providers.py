"""Unit tests for embedding providers and provider selection."""

from __future__ import annotations

import math
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from evidence_pipeline.config.settings import Settings
from evidence_pipeline.providers.embedding.mock_embedding_provider import (
    MOCK_MODEL_ID,
    MockEmbeddingProvider,
    hash_to_vector,
)
from evidence_pipeline.providers.embedding.openai_embedding_provider import (
    OpenAIEmbeddingProvider,
)
from evidence_pipeline.providers.factory import (
    build_document_store,
    build_embedding_provider,
    build_llm_provider,
)
from evidence_pipeline.providers.llm.anthropic_provider import AnthropicLLMProvider
from evidence_pipeline.providers.llm.mock_provider import MockLLMProvider
from evidence_pipeline.providers.store.memory_document_store import MemoryDocumentStore
from evidence_pipeline.providers.store.sqlite_document_store import SQLiteDocumentStore
from evidence_pipeline.services.retrieval.ranking import cosine_similarity
from evidence_pipeline.utils.errors import ConfigurationError, EmbeddingError, ErrorKind

_CLIENT_PATH = "evidence_pipeline.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI"


def _settings(**overrides) -> Settings:
    defaults = {
        "openrouter_api_key": "",
        "openai_api_key": "sk-test",
        "anthropic_api_key": "",
        "openai_base_url": "https://api.openai.com/v1",
        "embedding_model": "text-embedding-3-small",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _embedding_response(vectors: list[list[float]], order: list[int] | None = None) -> MagicMock:
    indices = order or list(range(len(vectors)))
    response = MagicMock()
    response.data = [MagicMock(index=i, embedding=vectors[i]) for i in indices]
    response.usage = MagicMock(prompt_tokens=12, total_tokens=12)
    response.model = "text-embedding-3-small"
    return response


def _status_error(status: int) -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    return openai.APIStatusError(
        message=f"HTTP {status}",
        response=httpx.Response(status, request=request),
        body=None,
    )


# ======================================================================
# Mock provider
# ======================================================================


class TestMockEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_vectors_align_with_texts(self) -> None:
        provider = MockEmbeddingProvider(dimension=32)
        result = await provider.embed(["alpha", "beta", "gamma"])

        assert len(result.vectors) == 3
        assert all(len(v) == 32 for v in result.vectors)
        assert result.model_id == MOCK_MODEL_ID
        assert result.usage is not None and result.usage.total_tokens > 0

    @pytest.mark.asyncio
    async def test_deterministic(self) -> None:
        provider = MockEmbeddingProvider(dimension=32)
        first = await provider.embed_single("coral bleaching")
        second = await provider.embed_single("coral bleaching")
        assert first == second

    def test_unit_length(self) -> None:
        vector = hash_to_vector("thermal stress on reefs", 64)
        assert math.sqrt(sum(v * v for v in vector)) == pytest.approx(1.0)

    def test_non_word_text_still_gets_unit_vector(self) -> None:
        vector = hash_to_vector("!!! ???", 16)
        assert len(vector) == 16
        assert math.sqrt(sum(v * v for v in vector)) == pytest.approx(1.0)

    def test_shared_vocabulary_is_more_similar(self) -> None:
        query = hash_to_vector("coral bleaching heat stress", 256)
        related = hash_to_vector("heat stress causes coral bleaching", 256)
        unrelated = hash_to_vector("medieval tax records from florence", 256)
        assert cosine_similarity(query, related) > cosine_similarity(query, unrelated)

    def test_reports_mock_and_dimension(self) -> None:
        provider = MockEmbeddingProvider(dimension=48)
        assert provider.is_mock() is True
        assert provider.get_dimension() == 48
        assert provider.is_available() is True


# ======================================================================
# OpenAI-compatible provider
# ======================================================================


class TestOpenAIEmbeddingProvider:
    def test_dimension_from_known_model(self) -> None:
        with patch(_CLIENT_PATH):
            provider = OpenAIEmbeddingProvider(_settings(embedding_model="text-embedding-3-large"))
        assert provider.get_dimension() == 3072

    def test_dimension_falls_back_to_setting(self) -> None:
        with patch(_CLIENT_PATH):
            provider = OpenAIEmbeddingProvider(
                _settings(embedding_model="custom/embedder", embedding_dimension=384)
            )
        assert provider.get_dimension() == 384

    def test_is_available_requires_key(self) -> None:
        with patch(_CLIENT_PATH):
            assert OpenAIEmbeddingProvider(_settings(openai_api_key="")).is_available() is False
            assert OpenAIEmbeddingProvider(_settings()).is_available() is True
            assert OpenAIEmbeddingProvider(_settings()).is_mock() is False

    def test_provider_label_tracks_base_url(self) -> None:
        with patch(_CLIENT_PATH):
            provider = OpenAIEmbeddingProvider(
                _settings(openai_base_url="https://openrouter.ai/api/v1")
            )
        assert provider.get_provider_name() == "openrouter_embedding"

    @pytest.mark.asyncio
    async def test_embed_reorders_by_index(self) -> None:
        vectors = [[1.0, 0.0], [0.0, 1.0], [0.5, 0.5]]
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            return_value=_embedding_response(vectors, order=[2, 0, 1])
        )

        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            result = await provider.embed(["a", "b", "c"])

        assert result.vectors == vectors
        assert result.usage is not None and result.usage.total_tokens == 12
        mock_client.embeddings.create.assert_awaited_once_with(
            input=["a", "b", "c"], model="text-embedding-3-small"
        )

    @pytest.mark.asyncio
    async def test_empty_input_skips_the_call(self) -> None:
        mock_client = AsyncMock()
        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            result = await provider.embed([])

        assert result.vectors == []
        mock_client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_aclose_closes_the_client(self) -> None:
        mock_client = AsyncMock()
        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            await provider.aclose()

        mock_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "kind", "retryable"),
        [
            (429, ErrorKind.EMBEDDING_QUOTA_EXCEEDED, True),
            (401, ErrorKind.EMBEDDING_AUTH_FAILED, False),
            (503, ErrorKind.EMBEDDING_SERVICE_UNAVAILABLE, True),
            (400, ErrorKind.EMBEDDING_GENERATION_FAILED, False),
        ],
    )
    async def test_status_errors_are_classified(
        self, status: int, kind: ErrorKind, retryable: bool
    ) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(side_effect=_status_error(status))

        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(EmbeddingError) as exc_info:
                await provider.embed(["text"])

        assert exc_info.value.kind == kind
        assert exc_info.value.retryable is retryable
        assert exc_info.value.status_code == status
        assert isinstance(exc_info.value.__cause__, openai.APIStatusError)

    @pytest.mark.asyncio
    async def test_connection_error_is_service_unavailable(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            side_effect=openai.APIConnectionError(
                request=httpx.Request("POST", "https://api.openai.com/v1/embeddings")
            )
        )

        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(EmbeddingError) as exc_info:
                await provider.embed(["text"])

        assert exc_info.value.kind == ErrorKind.EMBEDDING_SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_embed_single_checks_vector_count(self) -> None:
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            return_value=_embedding_response([[1.0], [2.0]])
        )

        with patch(_CLIENT_PATH, return_value=mock_client):
            provider = OpenAIEmbeddingProvider(_settings())
            with pytest.raises(EmbeddingError) as exc_info:
                await provider.embed_single("query")

        assert exc_info.value.kind == ErrorKind.EMBEDDING_COUNT_MISMATCH


# ======================================================================
# Provider selection
# ======================================================================


class TestProviderFactory:
    def test_auto_without_key_selects_mock(self) -> None:
        provider = build_embedding_provider(
            _settings(openai_api_key="", embedding_provider="auto", mock_embedding_dimension=32)
        )
        assert isinstance(provider, MockEmbeddingProvider)
        assert provider.get_dimension() == 32

    def test_auto_with_key_selects_openai(self) -> None:
        with patch(_CLIENT_PATH):
            provider = build_embedding_provider(_settings(embedding_provider="auto"))
        assert isinstance(provider, OpenAIEmbeddingProvider)

    def test_explicit_openai_without_key_is_configuration_error(self) -> None:
        with patch(_CLIENT_PATH), pytest.raises(ConfigurationError):
            build_embedding_provider(_settings(openai_api_key="", embedding_provider="openai"))

    def test_anthropic_completion_provider(self) -> None:
        provider = build_llm_provider(
            _settings(openai_api_key="", anthropic_api_key="ak", completion_provider="auto")
        )
        assert isinstance(provider, AnthropicLLMProvider)

    def test_mock_completion_provider(self) -> None:
        provider = build_llm_provider(_settings(completion_provider="mock"))
        assert isinstance(provider, MockLLMProvider)

    def test_explicit_anthropic_without_key_is_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            build_llm_provider(_settings(completion_provider="anthropic"))

    def test_store_backend_selection(self, tmp_path) -> None:
        sqlite_store = build_document_store(
            _settings(store_backend="sqlite", sqlite_path=str(tmp_path / "e.db"))
        )
        assert isinstance(sqlite_store, SQLiteDocumentStore)
        assert isinstance(build_document_store(_settings()), MemoryDocumentStore)
