"""Project-scoped evidence retrieval.

Loads every chunk of a project that belongs to a READY source, embeds the
query and hands both to the :class:`RankingEngine`.  Retrieval never fails
because the semantic signal is missing: when no chunk has an embedding
of the query's dimension, or the query cannot be embedded, the response is
the uniform, order-based ranking with ``degraded=True``.
"""

from __future__ import annotations

import time

import structlog

from evidence_pipeline.config.settings import Settings
from evidence_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from evidence_pipeline.models.retrieval import (
    ContextType,
    QueryIntent,
    QueryIntentType,
    RankedChunk,
    RankingWeights,
    RetrievalContext,
    RetrievalResponse,
    RetrievalStrategy,
)
from evidence_pipeline.models.source import Source, SourceStatus
from evidence_pipeline.services.retrieval.query_intent import analyze_query_intent
from evidence_pipeline.services.retrieval.ranking import RankingEngine
from evidence_pipeline.services.source_service import SourceService
from evidence_pipeline.utils.errors import PipelineError

logger = structlog.get_logger(logger_name=__name__)

_FACT_INTENTS = frozenset({QueryIntentType.FACTUAL, QueryIntentType.DEFINITIONAL})


class RetrievalService:
    """Ranks a project's evidence chunks for a query.

    Parameters
    ----------
    source_service:
        Chunk and source lookups.
    embedding_provider:
        Must be the provider the chunks were embedded with, so query and
        chunk vectors share a dimensionality.
    settings:
        Default weights, top-K bounds, per-source cap and recency half-life.
    """

    def __init__(
        self,
        source_service: SourceService,
        embedding_provider: IEmbeddingProvider,
        settings: Settings,
    ) -> None:
        self._sources = source_service
        self._embedding_provider = embedding_provider
        self._settings = settings
        self._default_weights = RankingWeights(
            semantic=settings.ranking_weight_semantic,
            recency=settings.ranking_weight_recency,
            reliability=settings.ranking_weight_reliability,
            contextual=settings.ranking_weight_contextual,
            diversity=settings.ranking_weight_diversity,
        )

    async def retrieve(
        self,
        project_id: str,
        query: str,
        weights: RankingWeights | None = None,
        top_k: int | None = None,
        context: RetrievalContext | None = None,
    ) -> RetrievalResponse:
        """Return the top-K ranked chunks of *project_id* for *query*.

        Parameters
        ----------
        project_id:
            Project whose chunks are searched.
        query:
            Free-text query.
        weights:
            Per-request factor weights; settings defaults when omitted.
        top_k:
            Number of chunks to return, clamped to ``[1, retrieval_max_top_k]``.
        context:
            Drafting context for the contextual factor.  When omitted a
            context type is inferred from the query intent.
        """
        start = time.monotonic()
        requested = top_k or self._settings.retrieval_default_top_k
        k = max(1, min(requested, self._settings.retrieval_max_top_k))
        intent = analyze_query_intent(query)
        context = context or self._default_context(intent)

        chunks = await self._sources.get_chunks_for_project(project_id)
        sources = await self._load_sources({c.source_id for c in chunks})
        # Chunks of sources that are not READY may be stale or partial.
        chunks = [
            c
            for c in chunks
            if (s := sources.get(c.source_id)) is not None and s.status == SourceStatus.READY
        ]
        if not chunks:
            logger.info("retrieval_no_chunks", project_id=project_id)
            return RetrievalResponse(project_id=project_id, query=query, intent=intent)

        engine = RankingEngine(
            weights=weights or self._default_weights,
            max_per_source=self._max_per_source(intent),
            recency_half_life_days=self._settings.recency_half_life_days,
        )

        ranked: list[RankedChunk]
        degraded = False
        if not any(c.has_embedding for c in chunks):
            logger.warning(
                "retrieval_degraded", project_id=project_id, reason="no_chunk_embeddings"
            )
            ranked, degraded = engine.rank_uniform(chunks, sources, k), True
        else:
            try:
                query_embedding = await self._embedding_provider.embed_single(query)
            except PipelineError as exc:
                logger.warning(
                    "retrieval_degraded",
                    project_id=project_id,
                    reason="query_embedding_failed",
                    error_kind=exc.kind.value,
                    error=str(exc),
                )
                ranked, degraded = engine.rank_uniform(chunks, sources, k), True
            else:
                dimension = len(query_embedding)
                if dimension and any(len(c.embedding or []) == dimension for c in chunks):
                    ranked = engine.rank(chunks, sources, query_embedding, k, context)
                else:
                    logger.warning(
                        "retrieval_degraded",
                        project_id=project_id,
                        reason="embedding_dimension_mismatch",
                        query_dimension=dimension,
                    )
                    ranked, degraded = engine.rank_uniform(chunks, sources, k), True

        logger.info(
            "retrieval_complete",
            project_id=project_id,
            candidates=len(chunks),
            returned=len(ranked),
            degraded=degraded,
            intent=intent.intent.value,
            time_ms=int((time.monotonic() - start) * 1000),
        )
        return RetrievalResponse(
            project_id=project_id,
            query=query,
            chunks=ranked,
            total_candidates=len(chunks),
            degraded=degraded,
            intent=intent,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load_sources(self, source_ids: set[str]) -> dict[str, Source]:
        sources: dict[str, Source] = {}
        for source_id in sorted(source_ids):
            source = await self._sources.get_source(source_id)
            if source is not None:
                sources[source_id] = source
        return sources

    def _max_per_source(self, intent: QueryIntent) -> int:
        if intent.suggested_strategy == RetrievalStrategy.DIVERSE:
            return 1
        return self._settings.retrieval_max_per_source

    @staticmethod
    def _default_context(intent: QueryIntent) -> RetrievalContext:
        if intent.intent in _FACT_INTENTS:
            return RetrievalContext(context_type=ContextType.FACT_LOOKUP)
        return RetrievalContext(context_type=ContextType.RESEARCH_QUERY)
