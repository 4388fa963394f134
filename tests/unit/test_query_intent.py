"""Unit tests for heuristic query intent classification."""

from __future__ import annotations

import pytest

from evidence_pipeline.models.retrieval import QueryIntentType, RetrievalStrategy
from evidence_pipeline.services.retrieval.query_intent import analyze_query_intent


class TestAnalyzeQueryIntent:
    @pytest.mark.parametrize(
        ("query", "intent", "strategy", "confidence"),
        [
            ("Compare coral recovery versus kelp recovery", QueryIntentType.COMPARATIVE,
             RetrievalStrategy.DIVERSE, 1.0),
            ("Define the concept of entropy", QueryIntentType.DEFINITIONAL,
             RetrievalStrategy.FOCUSED, 1.0),
            ("Why did reefs collapse, and how should we evaluate it?", QueryIntentType.ANALYTICAL,
             RetrievalStrategy.BROAD, 1.0),
            ("What is the bleaching threshold", QueryIntentType.FACTUAL,
             RetrievalStrategy.BROAD, 0.5),
        ],
    )
    def test_classification(self, query, intent, strategy, confidence) -> None:
        result = analyze_query_intent(query)

        assert result.intent == intent
        assert result.suggested_strategy == strategy
        assert result.confidence == pytest.approx(confidence)

    def test_no_match_is_analytical_with_zero_confidence(self) -> None:
        result = analyze_query_intent("coral reefs")

        assert result.intent == QueryIntentType.ANALYTICAL
        assert result.confidence == 0.0
        assert result.suggested_strategy == RetrievalStrategy.BROAD

    def test_ties_keep_the_earlier_intent(self) -> None:
        assert analyze_query_intent("what is different here").intent == QueryIntentType.FACTUAL

    def test_case_insensitive(self) -> None:
        assert analyze_query_intent("COMPARE these").intent == QueryIntentType.COMPARATIVE
