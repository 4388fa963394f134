"""Heuristic query intent classification.

Counts pattern hits per intent; the intent with the most hits wins and
ties keep the earlier intent in declaration order.  Queries that match
nothing are treated as analytical with zero confidence.
"""

from __future__ import annotations

import re

from evidence_pipeline.models.retrieval import QueryIntent, QueryIntentType, RetrievalStrategy

_INTENT_PATTERNS: dict[QueryIntentType, list[re.Pattern[str]]] = {
    QueryIntentType.FACTUAL: [
        re.compile(p, re.IGNORECASE) for p in (r"what is", r"how many", r"when did", r"where")
    ],
    QueryIntentType.ANALYTICAL: [
        re.compile(p, re.IGNORECASE)
        for p in (r"why", r"analyze", r"examine", r"discuss", r"evaluate")
    ],
    QueryIntentType.COMPARATIVE: [
        re.compile(p, re.IGNORECASE)
        for p in (r"compare", r"contrast", r"versus", r"different", r"similar")
    ],
    QueryIntentType.DEFINITIONAL: [
        re.compile(p, re.IGNORECASE)
        for p in (r"define", r"definition", r"concept of", r"meaning")
    ],
}

_STRATEGY_BY_INTENT = {
    QueryIntentType.COMPARATIVE: RetrievalStrategy.DIVERSE,
    QueryIntentType.DEFINITIONAL: RetrievalStrategy.FOCUSED,
}


def analyze_query_intent(query: str) -> QueryIntent:
    """Classify *query* and suggest a retrieval strategy."""
    best_intent = QueryIntentType.ANALYTICAL
    best_hits = 0
    for intent, patterns in _INTENT_PATTERNS.items():
        hits = sum(1 for p in patterns if p.search(query))
        if hits > best_hits:
            best_intent, best_hits = intent, hits

    return QueryIntent(
        intent=best_intent,
        confidence=min(1.0, best_hits / 2),
        suggested_strategy=_STRATEGY_BY_INTENT.get(best_intent, RetrievalStrategy.BROAD),
    )
