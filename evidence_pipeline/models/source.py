"""Source, chunk and ingestion data models.

Defines Pydantic v2 models for researcher-supplied sources, their pending
upload payloads, the evidence chunks produced by ingestion and the result
returned to callers of the ingestion orchestrator.  All models are frozen;
state changes produce new instances via ``model_copy(update={...})``.

Documents are persisted through :class:`IDocumentStore` as plain dicts
(``model_dump(mode="json")``) and rebuilt with ``model_validate``.

Lifecycle of a Source:

    UPLOADED --(upload)--> PROCESSING --(ingest)--> READY
                                                 \\-> FAILED

A READY source always has its full chunk set in the store; re-ingestion
deletes every prior chunk before writing the new set.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class SourceStatus(str, Enum):  # noqa: UP042
    """Ingestion lifecycle state of a :class:`Source`."""

    UPLOADED = "UPLOADED"      # Created, no payload yet
    PROCESSING = "PROCESSING"  # Payload stored, ingestion pending or running
    READY = "READY"            # Chunks persisted and searchable
    FAILED = "FAILED"          # Last ingestion attempt failed; see Source.error


class SourceKind(str, Enum):  # noqa: UP042
    """How the source reached the system."""

    PDF = "PDF"
    TEXT = "TEXT"
    URL = "URL"
    MANUAL = "MANUAL"


class UploadContentType(str, Enum):  # noqa: UP042
    """Encoding of an :class:`UploadPayload`'s ``data`` field."""

    TEXT = "TEXT"  # Raw UTF-8 text
    PDF = "PDF"    # Base64-encoded PDF bytes


# ---------------------------------------------------------------------------
# Source metadata and summary
# ---------------------------------------------------------------------------
class SourceMetadata(BaseModel):
    """Bibliographic metadata supplied by the researcher (all optional).

    ``citation_count`` and ``venue`` feed the reliability factor of the
    ranking engine when present.
    """

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    author: str | None = None
    publication_year: int | None = Field(default=None, ge=0, le=9999)
    citation: str | None = Field(default=None, description="Preformatted citation string.")
    citation_count: int | None = Field(default=None, ge=0)
    venue: str | None = Field(default=None, description="Journal, conference or publisher.")
    page_count: int | None = Field(default=None, ge=0)


class SourceSummary(BaseModel):
    """Structured summary generated during ingestion.

    Accepts both ``bullet_points`` and the camelCase ``bulletPoints`` key the
    completion model is asked to produce.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    abstract: str | None = None
    bullet_points: list[str] = Field(default_factory=list, max_length=10)


class Source(BaseModel):
    """A researcher-submitted document."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    project_id: str
    kind: SourceKind = SourceKind.TEXT
    status: SourceStatus = SourceStatus.UPLOADED
    metadata: SourceMetadata = Field(default_factory=SourceMetadata)
    summary: SourceSummary | None = None
    chunk_count: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    embedding_model: str | None = None
    error: str | None = Field(
        default=None, description="Human-readable failure message when status is FAILED."
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    processed_at: datetime | None = None

    @property
    def title(self) -> str:
        return self.metadata.title or self.id


# ---------------------------------------------------------------------------
# Upload payload
# ---------------------------------------------------------------------------
class UploadPayload(BaseModel):
    """Raw content awaiting ingestion, stored under the source's id."""

    model_config = ConfigDict(frozen=True)

    content_type: UploadContentType
    data: str = Field(description="Raw text, or base64-encoded bytes for PDF.")
    owner_id: str = ""
    project_id: str = ""
    original_filename: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------
class TextChunk(BaseModel):
    """One segment produced by the chunker, before it belongs to a source."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1)
    approx_token_count: int = Field(ge=0)
    heading: str | None = None
    page_range: tuple[int, int] | None = None


class SourceChunk(BaseModel):
    """A persisted, independently embeddable evidence unit.

    Owned by exactly one :class:`Source`.  ``order`` is zero-based and
    unique within the source; it is also the first tie-breaker when the
    ranking engine sees equal scores.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    source_id: str
    project_id: str
    order: int = Field(ge=0)
    text: str = Field(min_length=1)
    token_count: int = Field(default=0, ge=0)
    embedding: list[float] | None = None
    heading: str | None = None
    page_range: tuple[int, int] | None = None

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


# ---------------------------------------------------------------------------
# Ingestion result
# ---------------------------------------------------------------------------
class ResultError(BaseModel):
    """``{code, message}`` pair attached to a non-successful ingestion."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str


class IngestionResult(BaseModel):
    """Outcome of one :meth:`IngestionService.ingest_source` call.

    Serialized with camelCase keys (``model_dump(by_alias=True)``) for the
    drafting and export layers.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    source_id: str
    status: SourceStatus
    summary: SourceSummary | None = None
    chunk_count: int | None = None
    total_tokens: int | None = None
    embedding_model: str | None = None
    processing_time_ms: int = 0
    transient_failures: list[str] = Field(
        default_factory=list,
        description="Error kinds that were retried successfully during the run.",
    )
    error: ResultError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == SourceStatus.READY and self.error is None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Service inputs
# ---------------------------------------------------------------------------
class SourceUploadInput(BaseModel):
    """Content supplied for a source, before it is stored as an :class:`UploadPayload`."""

    model_config = ConfigDict(frozen=True)

    content_type: UploadContentType = UploadContentType.TEXT
    data: str = Field(min_length=1)
    original_filename: str | None = None


class SourceCreateInput(BaseModel):
    """Fields for :meth:`SourceService.create_source`.

    When ``upload`` is given the content is stored immediately and the
    source starts in PROCESSING instead of UPLOADED.
    """

    model_config = ConfigDict(frozen=True)

    project_id: str = Field(min_length=1)
    kind: SourceKind = SourceKind.TEXT
    metadata: SourceMetadata = Field(default_factory=SourceMetadata)
    upload: SourceUploadInput | None = None
