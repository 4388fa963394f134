"""Unit tests for the multi-factor RankingEngine and its scoring helpers."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from evidence_pipeline.models.retrieval import (
    ContextType,
    EvidenceRole,
    RankingWeights,
    RetrievalContext,
)
from evidence_pipeline.models.source import Source, SourceChunk, SourceMetadata, SourceStatus
from evidence_pipeline.services.retrieval.ranking import (
    MISSING_EMBEDDING_SIMILARITY,
    RankingEngine,
    citation_for,
    contextual_score,
    cosine_similarity,
    evidence_role,
    keyword_overlap,
    recency_score,
    reliability_score,
    semantic_score,
)

_NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)  # noqa: UP017
_QUERY = [1.0, 0.0]


def _chunk(
    chunk_id: str,
    source_id: str = "s1",
    order: int = 0,
    embedding: list[float] | None = None,
    text: str = "Evidence text.",
    heading: str | None = None,
    page_range: tuple[int, int] | None = None,
) -> SourceChunk:
    return SourceChunk(
        id=chunk_id,
        source_id=source_id,
        project_id="thesis",
        order=order,
        text=text,
        embedding=embedding,
        heading=heading,
        page_range=page_range,
    )


def _source(source_id: str, processed_at: datetime | None = None, **metadata) -> Source:
    return Source(
        id=source_id,
        owner_id="owner",
        project_id="thesis",
        status=SourceStatus.READY,
        metadata=SourceMetadata(**metadata),
        created_at=_NOW - timedelta(days=1000),
        processed_at=processed_at,
    )


def _semantic_only(**overrides) -> RankingWeights:
    values = {"semantic": 1.0, "recency": 0.0, "reliability": 0.0, "contextual": 0.0,
              "diversity": 0.0}
    values.update(overrides)
    return RankingWeights(**values)


# ======================================================================
# Selection
# ======================================================================


class TestRankingEngine:
    def test_equal_scores_break_ties_by_order(self) -> None:
        later = _chunk("c-later", source_id="a", order=1, embedding=[1.0, 0.0])
        earlier = _chunk("c-earlier", source_id="b", order=0, embedding=[1.0, 0.0])

        ranked = RankingEngine().rank([later, earlier], {}, _QUERY, top_k=2, now=_NOW)

        assert [r.chunk.id for r in ranked] == ["c-earlier", "c-later"]

    def test_foreign_dimension_chunk_is_not_ranked_below_missing(self) -> None:
        chunks = [
            _chunk("foreign", source_id="a", embedding=[1.0, 0.0, 0.0]),
            _chunk("missing", source_id="b"),
            _chunk("opposite", source_id="c", embedding=[-1.0, 0.0]),
        ]

        ranked = RankingEngine(weights=_semantic_only()).rank(chunks, {}, _QUERY, 3, now=_NOW)

        scores = {r.chunk.id: r.score.semantic_similarity for r in ranked}
        assert scores["foreign"] == scores["missing"] == MISSING_EMBEDDING_SIMILARITY
        assert ranked[-1].chunk.id == "opposite"

    def test_same_order_breaks_ties_by_source_then_id(self) -> None:
        chunks = [
            _chunk("z", source_id="b", embedding=[1.0, 0.0]),
            _chunk("y", source_id="a", embedding=[1.0, 0.0]),
            _chunk("x", source_id="a", embedding=[1.0, 0.0]),
        ]
        ranked = RankingEngine(weights=_semantic_only()).rank(chunks, {}, _QUERY, 3, now=_NOW)
        assert [r.chunk.id for r in ranked] == ["x", "y", "z"]

    def test_ranking_is_independent_of_input_order(self) -> None:
        chunks = [
            _chunk(f"c{i}", source_id=f"s{i % 3}", order=i, embedding=[1.0, i / 10])
            for i in range(8)
        ]
        engine = RankingEngine()
        expected = [r.chunk.id for r in engine.rank(chunks, {}, _QUERY, 5, now=_NOW)]

        shuffled = list(chunks)
        random.Random(7).shuffle(shuffled)

        assert [r.chunk.id for r in engine.rank(shuffled, {}, _QUERY, 5, now=_NOW)] == expected

    def test_top_k_and_ranks(self) -> None:
        chunks = [_chunk(f"c{i}", source_id=f"s{i}", embedding=[1.0, i]) for i in range(6)]

        ranked = RankingEngine().rank(chunks, {}, _QUERY, top_k=4, now=_NOW)

        assert len(ranked) == 4
        assert [r.rank for r in ranked] == [1, 2, 3, 4]
        assert ranked[0].chunk.id == "c0"

    def test_diversity_prefers_dissimilar_chunk(self) -> None:
        a = _chunk("A", source_id="s1", embedding=[1.0, 0.0])
        near_duplicate = _chunk("A-prime", source_id="s2", embedding=[0.99, 0.141])
        different = _chunk("B", source_id="s3", embedding=[0.8, 0.6])
        engine = RankingEngine(weights=_semantic_only(semantic=0.1, diversity=0.9))

        ranked = engine.rank([a, near_duplicate, different], {}, _QUERY, top_k=2, now=_NOW)

        assert [r.chunk.id for r in ranked] == ["A", "B"]
        assert ranked[0].score.diversity_bonus == 1.0
        assert ranked[1].score.diversity_bonus == pytest.approx(0.2, abs=1e-6)

    def test_repeat_source_is_penalized(self) -> None:
        a = _chunk("A", source_id="s1", order=0, embedding=[1.0, 0.0])
        a2 = _chunk("A2", source_id="s1", order=1, embedding=[0.95, 0.312])
        b = _chunk("B", source_id="s2", order=0, embedding=[0.78, 0.626])

        penalized = RankingEngine(weights=_semantic_only(), max_per_source=1)
        lenient = RankingEngine(weights=_semantic_only(), max_per_source=2)

        assert [r.chunk.id for r in penalized.rank([a, a2, b], {}, _QUERY, 2, now=_NOW)] == [
            "A",
            "B",
        ]
        assert [r.chunk.id for r in lenient.rank([a, a2, b], {}, _QUERY, 2, now=_NOW)] == [
            "A",
            "A2",
        ]

    def test_scores_stay_in_unit_range(self) -> None:
        chunks = [
            _chunk("c1", embedding=[-1.0, 0.0]),
            _chunk("c2", order=1, embedding=None),
            _chunk("c3", order=2, embedding=[0.0, 1.0], heading="1. Intro", page_range=(1, 1)),
        ]
        for ranked in RankingEngine().rank(chunks, {}, _QUERY, 3, now=_NOW):
            score = ranked.score
            for value in (
                score.semantic_similarity,
                score.recency,
                score.source_reliability,
                score.contextual_relevance,
                score.diversity_bonus,
            ):
                assert 0.0 <= value <= 1.0
            assert ranked.explanation

    def test_source_title_and_citation(self) -> None:
        chunk = _chunk("c1", embedding=[1.0, 0.0], heading="2. Methods", page_range=(4, 5))
        sources = {"s1": _source("s1", title="Reef Recovery")}

        ranked = RankingEngine().rank([chunk], sources, _QUERY, 1, now=_NOW)

        assert ranked[0].source_title == "Reef Recovery"
        assert ranked[0].citation == "2. Methods, pp. 4-5"

    def test_weights_are_normalized(self) -> None:
        engine = RankingEngine(weights=RankingWeights(semantic=2, recency=0, reliability=0,
                                                      contextual=0, diversity=2))
        assert engine.weights.semantic == pytest.approx(0.5)
        assert engine.weights.diversity == pytest.approx(0.5)

    def test_all_zero_weights_become_equal(self) -> None:
        zero = RankingWeights(semantic=0, recency=0, reliability=0, contextual=0, diversity=0)
        assert RankingEngine(weights=zero).weights.semantic == pytest.approx(0.2)


class TestRankUniform:
    def test_zero_scores_in_document_order(self) -> None:
        chunks = [_chunk("c2", order=2), _chunk("c0", order=0), _chunk("c1", order=1)]

        ranked = RankingEngine().rank_uniform(chunks, {}, top_k=2)

        assert [r.chunk.id for r in ranked] == ["c0", "c1"]
        assert all(r.score.total == 0.0 for r in ranked)
        assert all(r.role == EvidenceRole.SUPPORTING for r in ranked)


# ======================================================================
# Factor scores
# ======================================================================


class TestFactorScores:
    def test_cosine_edge_cases(self) -> None:
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [1.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_missing_embedding_gets_floor(self) -> None:
        assert semantic_score(_QUERY, _chunk("c")) == MISSING_EMBEDDING_SIMILARITY
        assert semantic_score(None, _chunk("c", embedding=[1.0, 0.0])) == MISSING_EMBEDDING_SIMILARITY

    def test_foreign_dimension_scores_like_missing_embedding(self) -> None:
        foreign = _chunk("c", embedding=[1.0, 0.0, 0.0])
        assert semantic_score(_QUERY, foreign) == MISSING_EMBEDDING_SIMILARITY

    def test_negative_similarity_clamps_to_zero(self) -> None:
        assert semantic_score(_QUERY, _chunk("c", embedding=[-1.0, 0.0])) == 0.0

    def test_recency_halves_per_half_life(self) -> None:
        fresh = _source("s", processed_at=_NOW)
        year_old = _source("s", processed_at=_NOW - timedelta(days=365))

        assert recency_score(fresh, _NOW, 365) == pytest.approx(1.0)
        assert recency_score(year_old, _NOW, 365) == pytest.approx(0.5)
        assert recency_score(None, _NOW, 365) == 0.5

    def test_recency_falls_back_to_created_at(self) -> None:
        never_processed = _source("s", processed_at=None)
        assert recency_score(never_processed, _NOW, 1000) == pytest.approx(0.5)

    def test_reliability_signals(self) -> None:
        plain = _chunk("c")
        rich = _chunk("c", heading="2. Methods", page_range=(3, 4))
        cited = _source("s", citation_count=1000, venue="Nature")

        assert reliability_score(plain, None) == 0.5
        assert reliability_score(rich, None) == pytest.approx(0.8)
        assert reliability_score(rich, cited) == 1.0

    def test_contextual_without_context_is_neutral(self) -> None:
        assert contextual_score(_chunk("c"), None) == 0.5

    def test_contextual_rewards_overlap_and_patterns(self) -> None:
        chunk = _chunk(
            "c",
            text="Coral bleaching increased 35 percent during marine heatwaves.",
            heading="Coral Bleaching",
        )
        context = RetrievalContext(
            context_type=ContextType.FACT_LOOKUP,
            section_title="Coral bleaching",
            section_objective="Explain coral bleaching during heatwaves",
        )
        assert contextual_score(chunk, context) > 0.7
        assert contextual_score(chunk, RetrievalContext(context_type=ContextType.FACT_LOOKUP)) == (
            pytest.approx(0.6)
        )

    def test_keyword_overlap_bounds(self) -> None:
        assert keyword_overlap([], ["coral"]) == 0.0
        assert keyword_overlap(["coral", "reef"], ["coral", "reef"]) == 1.0

    @pytest.mark.parametrize(
        ("semantic", "contextual", "reliability", "role"),
        [
            (0.8, 0.7, 0.5, EvidenceRole.PRIMARY),
            (0.3, 0.5, 0.9, EvidenceRole.CONTRASTING),
            (0.6, 0.5, 0.5, EvidenceRole.SUPPORTING),
        ],
    )
    def test_evidence_role(self, semantic, contextual, reliability, role) -> None:
        assert evidence_role(semantic, contextual, reliability) == role

    @pytest.mark.parametrize(
        ("heading", "page_range", "expected"),
        [
            ("2. Methods", (1, 2), "2. Methods, pp. 1-2"),
            (None, (3, 3), "p. 3"),
            (None, None, "chunk 1"),
        ],
    )
    def test_citation_for(self, heading, page_range, expected) -> None:
        assert citation_for(_chunk("c", heading=heading, page_range=page_range)) == expected
