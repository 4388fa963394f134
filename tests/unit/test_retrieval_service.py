"""Unit tests for RetrievalService."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from evidence_pipeline.config.settings import Settings
from evidence_pipeline.interfaces.document_store import SOURCE_CHUNKS
from evidence_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from evidence_pipeline.models.retrieval import QueryIntentType, RankingWeights
from evidence_pipeline.models.source import (
    SourceCreateInput,
    SourceStatus,
    SourceUploadInput,
)
from evidence_pipeline.providers.embedding.mock_embedding_provider import MockEmbeddingProvider
from evidence_pipeline.providers.llm.mock_provider import MockLLMProvider
from evidence_pipeline.providers.store.memory_document_store import MemoryDocumentStore
from evidence_pipeline.services.ingestion.ingestion_service import IngestionService
from evidence_pipeline.services.retrieval.retrieval_service import RetrievalService
from evidence_pipeline.services.source_service import SourceService
from evidence_pipeline.utils.errors import EmbeddingError, ErrorKind

_OWNER = "owner-1"
_SEMANTIC_ONLY = RankingWeights(semantic=1, recency=0, reliability=0, contextual=0, diversity=0)


async def _source(service: SourceService, status: SourceStatus) -> str:
    source = await service.create_source(_OWNER, SourceCreateInput(project_id="thesis"))
    await service.update_status(source.id, status)
    return source.id


async def _add_chunks(
    store: MemoryDocumentStore, source_id: str, count: int, embedded: bool = True
) -> None:
    for order in range(count):
        await store.create(
            SOURCE_CHUNKS,
            {
                "source_id": source_id,
                "project_id": "thesis",
                "order": order,
                "text": f"Chunk {order} of {source_id}",
                "token_count": 5,
                "embedding": [1.0, float(order)] if embedded else None,
            },
            doc_id=f"{source_id}-{order}",
        )


def _retrieval(
    settings: Settings, store: MemoryDocumentStore, embedder: IEmbeddingProvider | None = None
) -> RetrievalService:
    return RetrievalService(
        SourceService(store), embedder or MockEmbeddingProvider(dimension=2), settings
    )


class TestCandidates:
    @pytest.mark.asyncio
    async def test_only_ready_sources_are_searched(
        self, settings: Settings, store: MemoryDocumentStore, source_service: SourceService
    ) -> None:
        ready = await _source(source_service, SourceStatus.READY)
        processing = await _source(source_service, SourceStatus.PROCESSING)
        failed = await _source(source_service, SourceStatus.FAILED)
        for source_id in (ready, processing, failed):
            await _add_chunks(store, source_id, 2)

        response = await _retrieval(settings, store).retrieve("thesis", "coral", top_k=10)

        assert response.total_candidates == 2
        assert {r.chunk.source_id for r in response.chunks} == {ready}

    @pytest.mark.asyncio
    async def test_empty_project(self, settings: Settings, store: MemoryDocumentStore) -> None:
        response = await _retrieval(settings, store).retrieve("empty", "Compare A versus B")

        assert response.chunks == []
        assert response.total_candidates == 0
        assert response.degraded is False
        assert response.intent is not None
        assert response.intent.intent == QueryIntentType.COMPARATIVE


class TestTopK:
    @pytest.mark.asyncio
    async def test_top_k_is_clamped(
        self, settings: Settings, store: MemoryDocumentStore, source_service: SourceService
    ) -> None:
        source_id = await _source(source_service, SourceStatus.READY)
        await _add_chunks(store, source_id, 20)
        service = _retrieval(settings, store)

        too_many = await service.retrieve("thesis", "coral", top_k=100)
        default = await service.retrieve("thesis", "coral")
        negative = await service.retrieve("thesis", "coral", top_k=-3)

        assert len(too_many.chunks) == settings.retrieval_max_top_k
        assert len(default.chunks) == settings.retrieval_default_top_k
        assert len(negative.chunks) == 1


class TestDegraded:
    @pytest.mark.asyncio
    async def test_no_chunk_embeddings(
        self, settings: Settings, store: MemoryDocumentStore, source_service: SourceService
    ) -> None:
        source_id = await _source(source_service, SourceStatus.READY)
        await _add_chunks(store, source_id, 3, embedded=False)
        embedder = MagicMock(spec=IEmbeddingProvider)

        response = await _retrieval(settings, store, embedder).retrieve("thesis", "coral")

        assert response.degraded is True
        assert [r.chunk.order for r in response.chunks] == [0, 1, 2]
        assert all(r.score.total == 0.0 for r in response.chunks)
        embedder.embed_single.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_query_embedding_failure(
        self, settings: Settings, store: MemoryDocumentStore, source_service: SourceService
    ) -> None:
        source_id = await _source(source_service, SourceStatus.READY)
        await _add_chunks(store, source_id, 3)
        embedder = MagicMock(spec=IEmbeddingProvider)
        embedder.embed_single = AsyncMock(
            side_effect=EmbeddingError(kind=ErrorKind.EMBEDDING_SERVICE_UNAVAILABLE)
        )

        response = await _retrieval(settings, store, embedder).retrieve("thesis", "coral")

        assert response.degraded is True
        assert len(response.chunks) == 3

    @pytest.mark.asyncio
    async def test_embedding_dimension_mismatch(
        self, settings: Settings, store: MemoryDocumentStore, source_service: SourceService
    ) -> None:
        source_id = await _source(source_service, SourceStatus.READY)
        await _add_chunks(store, source_id, 3)

        response = await _retrieval(
            settings, store, MockEmbeddingProvider(dimension=8)
        ).retrieve("thesis", "coral")

        assert response.degraded is True
        assert [r.chunk.order for r in response.chunks] == [0, 1, 2]
        assert all(r.score.total == 0.0 for r in response.chunks)


class TestRelevance:
    @pytest.mark.asyncio
    async def test_matching_section_ranks_first(
        self, settings: Settings, store: MemoryDocumentStore, four_section_text: str
    ) -> None:
        sources = SourceService(store)
        embedder = MockEmbeddingProvider(dimension=256)
        source = await sources.create_source(
            _OWNER,
            SourceCreateInput(project_id="thesis", upload=SourceUploadInput(data=four_section_text)),
        )
        ingestion = IngestionService(
            store, sources, embedder, MockLLMProvider(), settings, sleep=AsyncMock()
        )
        await ingestion.ingest_source(_OWNER, source.id)

        response = await RetrievalService(sources, embedder, settings).retrieve(
            "thesis",
            "herbivore populations regained pre-bleaching cover",
            weights=_SEMANTIC_ONLY,
            top_k=2,
        )

        assert response.degraded is False
        assert response.total_candidates == 4
        assert response.chunks[0].chunk.heading == "3. Results"
        assert response.chunks[0].citation == "3. Results"
        first, second = response.chunks
        assert first.score.semantic_similarity > second.score.semantic_similarity
