"""Multi-factor relevance scoring and diversity-aware top-K selection.

Scoring is split from selection:

* :func:`score_chunk` computes the four query-dependent factors for one
  chunk (semantic similarity, recency, source reliability, contextual
  relevance), each in [0, 1].
* :class:`RankingEngine` weights them, then greedily picks the top K.  The
  diversity bonus depends on what has already been picked, so it is only
  computed during selection: a candidate's bonus is ``1 - max similarity``
  to the chunks selected so far, and chunks from a source that already
  has ``max_per_source`` picks are multiplied by 0.8.

Equal totals are broken by ascending chunk ``order``, then ``source_id``,
then chunk ``id``, so a ranking is a pure function of its inputs.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

from evidence_pipeline.models.retrieval import (
    ContextType,
    EvidenceRole,
    RankedChunk,
    RankingWeights,
    RelevanceScore,
    RetrievalContext,
)
from evidence_pipeline.models.source import Source, SourceChunk

# Chunks without an embedding still get a small semantic floor.
MISSING_EMBEDDING_SIMILARITY = 0.1
NEUTRAL_SCORE = 0.5
REPEAT_SOURCE_PENALTY = 0.8

_STOPWORDS = frozenset(
    {"the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"}
)
_MAX_KEYWORDS = 10
_WORD_SPLIT_RE = re.compile(r"\W+")
_NUMBERED_HEADING_RE = re.compile(r"^\d+\.")

# Citation counts at or above this earn the full +0.2 reliability bonus.
_CITATION_SATURATION = 1000

_ARGUMENTATIVE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"therefore",
        r"however",
        r"moreover",
        r"furthermore",
        r"in contrast",
        r"on the other hand",
        r"evidence suggests",
        r"research shows",
        r"studies indicate",
    )
]
_PRECISION_PATTERNS = [
    re.compile(r"[A-Z][a-z]+(?:\s+[A-Z][a-z]+)+"),
    re.compile(r"\b\d{4}\b"),
    re.compile(r"\bp\s*<\s*0\.0\d+"),
    re.compile(r"\b(?:coefficient|correlation|significant|hypothesis)\b", re.IGNORECASE),
]
_FACTUAL_PATTERNS = [
    re.compile(r"\b\d+(?:[.,]\d+)?\s*(?:%|percent\b)", re.IGNORECASE),
    re.compile(r"\b\d+(?:\.\d+)?\b"),
    re.compile(
        r"\b(?:according to|reported|measured|found that|data show|results show)\b",
        re.IGNORECASE,
    ),
]


# ---------------------------------------------------------------------------
# Text and vector helpers
# ---------------------------------------------------------------------------

def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 for mismatched or zero vectors."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def extract_keywords(text: str) -> list[str]:
    """First ten lowercase words longer than three characters, stopwords removed."""
    words = _WORD_SPLIT_RE.split(text.lower())
    return [w for w in words if len(w) > 3 and w not in _STOPWORDS][:_MAX_KEYWORDS]


def keyword_overlap(reference: list[str], candidate: list[str]) -> float:
    """Share of *candidate* keywords found in *reference*, over the longer list."""
    if not reference or not candidate:
        return 0.0
    ref = set(reference)
    matches = sum(1 for word in candidate if word in ref)
    return matches / max(len(reference), len(candidate))


def token_jaccard(a: str, b: str) -> float:
    tokens_a = {t for t in _WORD_SPLIT_RE.split(a.lower()) if t}
    tokens_b = {t for t in _WORD_SPLIT_RE.split(b.lower()) if t}
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def chunk_similarity(a: SourceChunk, b: SourceChunk) -> float:
    """Similarity in [0, 1] used for the diversity bonus."""
    if a.embedding and b.embedding:
        return max(0.0, cosine_similarity(a.embedding, b.embedding))
    return token_jaccard(a.text, b.text)


# ---------------------------------------------------------------------------
# Factor scores
# ---------------------------------------------------------------------------

def semantic_score(query_embedding: list[float] | None, chunk: SourceChunk) -> float:
    # A vector from another embedding model is as uninformative as none.
    if not chunk.embedding or not query_embedding or len(chunk.embedding) != len(query_embedding):
        return MISSING_EMBEDDING_SIMILARITY
    return max(0.0, min(1.0, cosine_similarity(query_embedding, chunk.embedding)))


def recency_score(source: Source | None, now: datetime, half_life_days: float) -> float:
    """Exponential decay on the age of the source's last ingestion."""
    if source is None:
        return NEUTRAL_SCORE
    ingested = source.processed_at or source.created_at
    if ingested is None or half_life_days <= 0:
        return NEUTRAL_SCORE
    if ingested.tzinfo is None:
        ingested = ingested.replace(tzinfo=timezone.utc)  # noqa: UP017
    age_days = max(0.0, (now - ingested).total_seconds() / 86400)
    return 0.5 ** (age_days / half_life_days)


def reliability_score(chunk: SourceChunk, source: Source | None) -> float:
    score = NEUTRAL_SCORE
    if chunk.heading:
        score += 0.1
        if _NUMBERED_HEADING_RE.match(chunk.heading):
            score += 0.1
    if chunk.page_range:
        score += 0.1
    if source is not None:
        meta = source.metadata
        if meta.citation_count:
            scaled = math.log1p(meta.citation_count) / math.log1p(_CITATION_SATURATION)
            score += 0.2 * min(1.0, scaled)
        if meta.venue:
            score += 0.1
    return min(1.0, score)


def contextual_score(chunk: SourceChunk, context: RetrievalContext | None) -> float:
    if context is None:
        return NEUTRAL_SCORE

    relevance = NEUTRAL_SCORE
    text = chunk.text
    chunk_keywords = extract_keywords(text)
    objective_keywords = extract_keywords(context.section_objective or "")
    title_keywords = extract_keywords(context.section_title or "")

    relevance += keyword_overlap(objective_keywords, chunk_keywords) * 0.3
    relevance += keyword_overlap(title_keywords, chunk_keywords) * 0.2

    if context.context_type == ContextType.SECTION_DRAFTING:
        patterns = _ARGUMENTATIVE_PATTERNS
    elif context.context_type == ContextType.PARAGRAPH_REWRITE:
        patterns = _PRECISION_PATTERNS
    else:
        patterns = _FACTUAL_PATTERNS
    if any(p.search(text) for p in patterns):
        relevance += 0.1

    if chunk.heading:
        section_keywords = set(objective_keywords) | set(title_keywords)
        if section_keywords & set(extract_keywords(chunk.heading)):
            relevance += 0.1

    return min(1.0, relevance)


def evidence_role(semantic: float, contextual: float, reliability: float) -> EvidenceRole:
    if semantic > 0.7 and contextual > 0.6:
        return EvidenceRole.PRIMARY
    if reliability > 0.8 and semantic < 0.5:
        return EvidenceRole.CONTRASTING
    return EvidenceRole.SUPPORTING


def explain(score: RelevanceScore, role: EvidenceRole) -> str:
    """Human-readable summary of why a chunk ranked where it did."""
    parts: list[str] = []
    if score.semantic_similarity > 0.7:
        parts.append("high semantic match")
    elif score.semantic_similarity > 0.4:
        parts.append("moderate semantic match")
    else:
        parts.append("low semantic match")

    if score.recency > 0.7:
        parts.append("recent source")
    elif score.recency < 0.3:
        parts.append("older source")

    if score.source_reliability > 0.8:
        parts.append("high reliability")
    elif score.source_reliability < 0.4:
        parts.append("lower reliability")

    if score.contextual_relevance > 0.7:
        parts.append("highly contextual")
    if score.diversity_bonus > 0.5:
        parts.append("adds diversity")
    return f"{role.value} evidence: {', '.join(parts)}"


def citation_for(chunk: SourceChunk) -> str:
    parts: list[str] = []
    if chunk.heading:
        parts.append(chunk.heading)
    if chunk.page_range:
        first, last = chunk.page_range
        parts.append(f"p. {first}" if first == last else f"pp. {first}-{last}")
    if not parts:
        parts.append(f"chunk {chunk.order + 1}")
    return ", ".join(parts)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass
class _Candidate:
    chunk: SourceChunk
    semantic: float
    recency: float
    reliability: float
    contextual: float
    base: float
    max_similarity: float = 0.0


def _tie_key(total: float, chunk: SourceChunk) -> tuple[float, int, str, str]:
    # Rounded so floating-point noise cannot reorder genuinely equal totals.
    return (-round(total, 9), chunk.order, chunk.source_id, chunk.id)


class RankingEngine:
    """Weights factor scores and selects a diverse top K.

    Parameters
    ----------
    weights:
        Factor weights; normalized to sum to 1.
    max_per_source:
        Picks allowed from one source before the repeat penalty applies.
    recency_half_life_days:
        Age at which the recency factor halves.
    """

    def __init__(
        self,
        weights: RankingWeights | None = None,
        max_per_source: int = 2,
        recency_half_life_days: float = 365.0,
    ) -> None:
        self._weights = (weights or RankingWeights()).normalized()
        self._max_per_source = max_per_source
        self._half_life = recency_half_life_days

    @property
    def weights(self) -> RankingWeights:
        return self._weights

    def rank(
        self,
        chunks: list[SourceChunk],
        sources: dict[str, Source],
        query_embedding: list[float] | None,
        top_k: int,
        context: RetrievalContext | None = None,
        now: datetime | None = None,
    ) -> list[RankedChunk]:
        """Score *chunks* against the query and return the selected top K."""
        now = now or datetime.now(tz=timezone.utc)  # noqa: UP017
        w = self._weights
        candidates: list[_Candidate] = []
        for chunk in chunks:
            source = sources.get(chunk.source_id)
            sem = semantic_score(query_embedding, chunk)
            rec = recency_score(source, now, self._half_life)
            rel = reliability_score(chunk, source)
            ctx = contextual_score(chunk, context)
            base = w.semantic * sem + w.recency * rec + w.reliability * rel + w.contextual * ctx
            candidates.append(_Candidate(chunk, sem, rec, rel, ctx, base))

        return self._select(candidates, sources, top_k)

    def rank_uniform(
        self, chunks: list[SourceChunk], sources: dict[str, Source], top_k: int
    ) -> list[RankedChunk]:
        """Zero-information ranking: equal scores, ordered by the tie-break."""
        ordered = sorted(chunks, key=lambda c: _tie_key(0.0, c))[:top_k]
        score = RelevanceScore(
            semantic_similarity=0.0,
            recency=0.0,
            source_reliability=0.0,
            contextual_relevance=0.0,
            diversity_bonus=0.0,
            total=0.0,
        )
        return [
            RankedChunk(
                chunk=chunk,
                source_title=self._title(chunk, sources),
                citation=citation_for(chunk),
                score=score,
                role=EvidenceRole.SUPPORTING,
                explanation="no semantic signal available; ordered by document position",
                rank=rank,
            )
            for rank, chunk in enumerate(ordered, start=1)
        ]

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _select(
        self, candidates: list[_Candidate], sources: dict[str, Source], top_k: int
    ) -> list[RankedChunk]:
        w = self._weights
        remaining = list(candidates)
        per_source: Counter[str] = Counter()
        selected: list[RankedChunk] = []

        while remaining and len(selected) < top_k:
            best_index = 0
            best_key: tuple[float, int, str, str] | None = None
            best_total = 0.0
            best_bonus = 0.0
            for index, cand in enumerate(remaining):
                bonus = 1.0 - cand.max_similarity if selected else 1.0
                total = cand.base + w.diversity * bonus
                if per_source[cand.chunk.source_id] >= self._max_per_source:
                    total *= REPEAT_SOURCE_PENALTY
                key = _tie_key(total, cand.chunk)
                if best_key is None or key < best_key:
                    best_index, best_key, best_total, best_bonus = index, key, total, bonus

            pick = remaining.pop(best_index)
            per_source[pick.chunk.source_id] += 1
            score = RelevanceScore(
                semantic_similarity=pick.semantic,
                recency=pick.recency,
                source_reliability=pick.reliability,
                contextual_relevance=pick.contextual,
                diversity_bonus=max(0.0, min(1.0, best_bonus)),
                total=best_total,
            )
            role = evidence_role(pick.semantic, pick.contextual, pick.reliability)
            selected.append(
                RankedChunk(
                    chunk=pick.chunk,
                    source_title=self._title(pick.chunk, sources),
                    citation=citation_for(pick.chunk),
                    score=score,
                    role=role,
                    explanation=explain(score, role),
                    rank=len(selected) + 1,
                )
            )
            for cand in remaining:
                cand.max_similarity = max(
                    cand.max_similarity, chunk_similarity(cand.chunk, pick.chunk)
                )
        return selected

    @staticmethod
    def _title(chunk: SourceChunk, sources: dict[str, Source]) -> str:
        source = sources.get(chunk.source_id)
        return source.title if source is not None else chunk.source_id
