"""Pydantic request/response schemas for the evidence pipeline API.

Defines the public contract for the REST endpoints: source creation and
upload, ingestion, listing, retrieval, streaming drafts and health.

Convention: request schemas end with "Request", response schemas end with
"Response".  Domain models (``Source``, ``IngestionResult``,
``RetrievalResponse``) are returned directly where their shape is already
the public contract.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from evidence_pipeline.models.retrieval import RankingWeights, RetrievalContext
from evidence_pipeline.models.source import Source


class SourceListResponse(BaseModel):
    """All sources of one project owned by the caller, newest first."""

    project_id: str
    sources: list[Source] = Field(default_factory=list)
    total: int = 0


class RetrievalRequest(BaseModel):
    """Query against a project's persisted chunks."""

    project_id: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1, max_length=2000)
    top_k: int | None = Field(default=None, ge=1, le=50)
    weights: RankingWeights | None = None
    context: RetrievalContext | None = None


class DraftStreamRequest(BaseModel):
    """Prompt pair for a streamed drafting completion."""

    system_prompt: str = Field(..., min_length=1)
    user_prompt: str = Field(..., min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1, le=16000)
    model: str | None = None


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body.

    ``code`` is the machine-readable error kind (e.g. ``missing-upload``).
    """

    error: str
    code: str | None = None
    detail: str | None = None
