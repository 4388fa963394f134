"""Retrieval and ranking data models.

Relevance scores are ephemeral: they are computed per (chunk, query) pair
at retrieval time and never written to the document store.

Ranking overview:
    Each candidate chunk gets five sub-scores, each normalized to [0, 1]:

    - semantic_similarity   cosine(query embedding, chunk embedding)
    - recency               decay on the age of the owning source
    - source_reliability    trust derived from chunk/source metadata
    - contextual_relevance  overlap with the requested drafting context
    - diversity_bonus       dissimilarity to chunks already selected

    ``total`` is the weighted sum using :class:`RankingWeights` (normalized
    to sum to 1).  The diversity bonus is only known during top-K
    selection, so it is filled in by the selector, not the scorer.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from evidence_pipeline.models.source import SourceChunk


class ContextType(str, Enum):  # noqa: UP042
    """What the drafting component is doing with the evidence."""

    SECTION_DRAFTING = "section_drafting"
    PARAGRAPH_REWRITE = "paragraph_rewrite"
    FACT_LOOKUP = "fact_lookup"
    RESEARCH_QUERY = "research_query"


class EvidenceRole(str, Enum):  # noqa: UP042
    """How a ranked chunk relates to the query."""

    PRIMARY = "primary"
    SUPPORTING = "supporting"
    CONTRASTING = "contrasting"


class QueryIntentType(str, Enum):  # noqa: UP042
    FACTUAL = "factual"
    ANALYTICAL = "analytical"
    COMPARATIVE = "comparative"
    DEFINITIONAL = "definitional"


class RetrievalStrategy(str, Enum):  # noqa: UP042
    BROAD = "broad"
    FOCUSED = "focused"
    DIVERSE = "diverse"


class RankingWeights(BaseModel):
    """Relative weight of each ranking factor.

    Defaults are product-tuned, not derived; they are overridable per
    request and through :class:`~evidence_pipeline.config.settings.Settings`.
    """

    model_config = ConfigDict(frozen=True)

    semantic: float = Field(default=0.45, ge=0.0)
    recency: float = Field(default=0.10, ge=0.0)
    reliability: float = Field(default=0.15, ge=0.0)
    contextual: float = Field(default=0.20, ge=0.0)
    diversity: float = Field(default=0.10, ge=0.0)

    def normalized(self) -> RankingWeights:
        """Return a copy whose weights sum to 1 (equal weights if all are zero)."""
        total = self.semantic + self.recency + self.reliability + self.contextual + self.diversity
        if total <= 0:
            return RankingWeights(
                semantic=0.2, recency=0.2, reliability=0.2, contextual=0.2, diversity=0.2
            )
        return RankingWeights(
            semantic=self.semantic / total,
            recency=self.recency / total,
            reliability=self.reliability / total,
            contextual=self.contextual / total,
            diversity=self.diversity / total,
        )


class RetrievalContext(BaseModel):
    """Drafting context used by the contextual-relevance factor."""

    model_config = ConfigDict(frozen=True)

    context_type: ContextType = ContextType.RESEARCH_QUERY
    section_title: str | None = None
    section_objective: str | None = None


class RelevanceScore(BaseModel):
    """Explainable per-factor score for one chunk against one query."""

    model_config = ConfigDict(frozen=True)

    semantic_similarity: float = Field(ge=0.0, le=1.0)
    recency: float = Field(ge=0.0, le=1.0)
    source_reliability: float = Field(ge=0.0, le=1.0)
    contextual_relevance: float = Field(ge=0.0, le=1.0)
    diversity_bonus: float = Field(default=0.0, ge=0.0, le=1.0)
    total: float = Field(ge=0.0)


class RankedChunk(BaseModel):
    """A chunk selected by the ranking engine, with its score and explanation."""

    model_config = ConfigDict(frozen=True)

    chunk: SourceChunk
    source_title: str
    citation: str = Field(description="Heading or page reference used when citing the chunk.")
    score: RelevanceScore
    role: EvidenceRole = EvidenceRole.SUPPORTING
    explanation: str = ""
    rank: int = Field(ge=1)


class QueryIntent(BaseModel):
    """Heuristic classification of a retrieval query."""

    model_config = ConfigDict(frozen=True)

    intent: QueryIntentType
    confidence: float = Field(ge=0.0, le=1.0)
    suggested_strategy: RetrievalStrategy


class RetrievalResponse(BaseModel):
    """Ranked evidence for one query.

    ``degraded`` is ``True`` when no semantic signal was available (no
    chunk embeddings, the query could not be embedded, or no chunk shares
    the query vector's dimension) and the ranking is the uniform,
    order-based fallback.
    """

    model_config = ConfigDict(frozen=True)

    project_id: str
    query: str
    chunks: list[RankedChunk] = Field(default_factory=list)
    total_candidates: int = Field(default=0, ge=0)
    degraded: bool = False
    intent: QueryIntent | None = None
