"""Evidence pipeline domain models; re-exports all public model classes.

Submodules by concern:
    - source.py     Sources, upload payloads, chunks, ingestion results
    - provider.py   Embedding provider results and usage
    - retrieval.py  Ranking weights, relevance scores, ranked evidence
    - stream.py     Streaming completion events
"""

from __future__ import annotations

from evidence_pipeline.models.provider import EmbeddingResult, EmbeddingUsage
from evidence_pipeline.models.retrieval import (
    ContextType,
    EvidenceRole,
    QueryIntent,
    QueryIntentType,
    RankedChunk,
    RankingWeights,
    RelevanceScore,
    RetrievalContext,
    RetrievalResponse,
    RetrievalStrategy,
)
from evidence_pipeline.models.source import (
    IngestionResult,
    ResultError,
    Source,
    SourceChunk,
    SourceCreateInput,
    SourceKind,
    SourceMetadata,
    SourceStatus,
    SourceSummary,
    SourceUploadInput,
    TextChunk,
    UploadContentType,
    UploadPayload,
)
from evidence_pipeline.models.stream import DoneEvent, ErrorEvent, StreamEvent, TokenEvent

__all__ = [
    "ContextType",
    "DoneEvent",
    "EmbeddingResult",
    "EmbeddingUsage",
    "ErrorEvent",
    "EvidenceRole",
    "IngestionResult",
    "QueryIntent",
    "QueryIntentType",
    "RankedChunk",
    "RankingWeights",
    "RelevanceScore",
    "ResultError",
    "RetrievalContext",
    "RetrievalResponse",
    "RetrievalStrategy",
    "Source",
    "SourceChunk",
    "SourceCreateInput",
    "SourceKind",
    "SourceMetadata",
    "SourceStatus",
    "SourceSummary",
    "SourceUploadInput",
    "StreamEvent",
    "TextChunk",
    "TokenEvent",
    "UploadContentType",
    "UploadPayload",
]
