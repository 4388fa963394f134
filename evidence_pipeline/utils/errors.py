"""Custom exception hierarchy for the evidence pipeline.

All application exceptions inherit from :class:`PipelineError`, which
carries a machine-readable :class:`ErrorKind`, an optional
``provider_name`` identifying the external service that failed (e.g.
"openai_embedding", "anthropic", "sqlite"), a ``retryable`` flag consumed
by :func:`~evidence_pipeline.utils.retry.with_retry`, and a free-form
``context`` dict for correlation identifiers.

The hierarchy is organized by pipeline stage:

    PipelineError  (base -- catch-all for any pipeline error)
    +-- IngestionError       (missing upload, extraction, count mismatch)
    +-- EmbeddingError       (embedding backend failures)
    +-- CompletionError      (completion backend failures)
    +-- SummaryMalformedError (unparseable summary JSON, recovered locally)
    +-- PersistenceError     (document-store writes, updates of missing documents)
    +-- StreamError          (streaming transport failures)
    +-- RetrievalError       (ranking engine failures)
    +-- ConfigurationError   (startup / missing config)

The ``kind`` is what callers branch on; the class is what they catch.
Two errors of different classes never share a kind.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):  # noqa: UP042
    """Machine-readable failure taxonomy shared across every stage."""

    MISSING_UPLOAD = "missing-upload"
    EXTRACTION_FAILED = "extraction-failed"
    EMBEDDING_COUNT_MISMATCH = "embedding-count-mismatch"
    EMBEDDING_QUOTA_EXCEEDED = "embedding-quota-exceeded"
    EMBEDDING_AUTH_FAILED = "embedding-auth-failed"
    EMBEDDING_SERVICE_UNAVAILABLE = "embedding-service-unavailable"
    EMBEDDING_GENERATION_FAILED = "embedding-generation-failed"
    COMPLETION_QUOTA_EXCEEDED = "completion-quota-exceeded"
    COMPLETION_AUTH_FAILED = "completion-auth-failed"
    COMPLETION_SERVICE_UNAVAILABLE = "completion-service-unavailable"
    COMPLETION_FAILED = "completion-failed"
    SUMMARY_MALFORMED = "summary-malformed"
    PERSISTENCE_BATCH_FAILED = "persistence-batch-failed"
    DOCUMENT_NOT_FOUND = "document-not-found"
    STREAM_TRANSPORT_ERROR = "stream-transport-error"
    INGESTION_CANCELLED = "ingestion-cancelled"
    CONFIGURATION_ERROR = "configuration-error"
    INTERNAL_ERROR = "internal-error"


# Kinds that the shared backoff framework retries by default.
RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.EMBEDDING_QUOTA_EXCEEDED,
        ErrorKind.EMBEDDING_SERVICE_UNAVAILABLE,
        ErrorKind.COMPLETION_QUOTA_EXCEEDED,
        ErrorKind.COMPLETION_SERVICE_UNAVAILABLE,
        ErrorKind.PERSISTENCE_BATCH_FAILED,
    }
)


class PipelineError(Exception):
    """Base exception for all evidence pipeline errors.

    Every subclass carries a human-readable ``message``, a ``kind`` from
    :class:`ErrorKind` and an optional ``provider_name``.  The ``__str__``
    method prefixes the provider name in brackets for structured log
    output, e.g. ``[openai_embedding] Rate limit exceeded``.

    When an error wraps another exception, raise it with ``raise ... from
    exc`` so ``__cause__`` always points at the original failure.
    """

    default_kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        kind: ErrorKind | None = None,
        provider_name: str | None = None,
        *,
        retryable: bool | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self._message = message or self.default_message
        self._kind = kind or self.default_kind
        self._provider_name = provider_name
        self._retryable = self._kind in RETRYABLE_KINDS if retryable is None else retryable
        self._status_code = status_code
        self._context: dict[str, Any] = dict(context or {})
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def status_code(self) -> int | None:
        """Upstream HTTP status that triggered the error, when there was one."""
        return self._status_code

    @property
    def context(self) -> dict[str, Any]:
        return self._context

    @property
    def http_status(self) -> int:
        """HTTP status the API layer should answer with for this error."""
        return _HTTP_STATUS_BY_KIND.get(self._kind, 500)

    def with_context(self, **extra: Any) -> PipelineError:
        """Merge *extra* into the error's context and return ``self``."""
        self._context.update({k: v for k, v in extra.items() if v is not None})
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serializable ``{code, message}`` form used in results and API bodies."""
        return {"code": self._kind.value, "message": self._message}

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Ingestion errors
# ---------------------------------------------------------------------------

class IngestionError(PipelineError):
    """Raised when an ingestion step violates a structural invariant."""

    default_kind = ErrorKind.EXTRACTION_FAILED
    default_message = "Source ingestion failed"


class EmbeddingError(PipelineError):
    """Raised when an embedding backend call fails."""

    default_kind = ErrorKind.EMBEDDING_GENERATION_FAILED
    default_message = "Embedding generation failed"


class CompletionError(PipelineError):
    """Raised when a completion backend call fails or returns nothing usable."""

    default_kind = ErrorKind.COMPLETION_FAILED
    default_message = "Completion request failed"


class SummaryMalformedError(PipelineError):
    """Raised when a summary response cannot be parsed, even after repair.

    The summarizer catches this and substitutes a deterministic fallback,
    so it never aborts an ingestion run.
    """

    default_kind = ErrorKind.SUMMARY_MALFORMED
    default_message = "Summary response was not valid JSON"


# ---------------------------------------------------------------------------
# Persistence / streaming / retrieval errors
# ---------------------------------------------------------------------------

class PersistenceError(PipelineError):
    """Raised when a document-store batch write fails."""

    default_kind = ErrorKind.PERSISTENCE_BATCH_FAILED
    default_message = "Document store batch write failed"


class StreamError(PipelineError):
    """Raised when a streaming completion transport fails."""

    default_kind = ErrorKind.STREAM_TRANSPORT_ERROR
    default_message = "Streaming transport error"


class RetrievalError(PipelineError):
    """Raised when retrieval cannot proceed at all (e.g. unknown project)."""

    default_kind = ErrorKind.INTERNAL_ERROR
    default_message = "Retrieval failed"


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(PipelineError):
    """Raised when configuration is invalid or missing at startup."""

    default_kind = ErrorKind.CONFIGURATION_ERROR
    default_message = "Invalid or missing configuration"


# ---------------------------------------------------------------------------
# HTTP status classification
# ---------------------------------------------------------------------------

_HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.MISSING_UPLOAD: 409,
    ErrorKind.DOCUMENT_NOT_FOUND: 404,
    ErrorKind.EXTRACTION_FAILED: 422,
    ErrorKind.EMBEDDING_QUOTA_EXCEEDED: 429,
    ErrorKind.COMPLETION_QUOTA_EXCEEDED: 429,
    ErrorKind.EMBEDDING_AUTH_FAILED: 502,
    ErrorKind.COMPLETION_AUTH_FAILED: 502,
    ErrorKind.EMBEDDING_SERVICE_UNAVAILABLE: 503,
    ErrorKind.COMPLETION_SERVICE_UNAVAILABLE: 503,
    ErrorKind.CONFIGURATION_ERROR: 500,
}


def classify_embedding_status(status_code: int) -> ErrorKind:
    """Map an embedding backend HTTP status to an :class:`ErrorKind`."""
    if status_code == 429:
        return ErrorKind.EMBEDDING_QUOTA_EXCEEDED
    if status_code == 401:
        return ErrorKind.EMBEDDING_AUTH_FAILED
    if status_code >= 500:
        return ErrorKind.EMBEDDING_SERVICE_UNAVAILABLE
    return ErrorKind.EMBEDDING_GENERATION_FAILED


def classify_completion_status(status_code: int) -> ErrorKind:
    """Map a completion backend HTTP status to an :class:`ErrorKind`."""
    if status_code == 429:
        return ErrorKind.COMPLETION_QUOTA_EXCEEDED
    if status_code in (401, 403):
        return ErrorKind.COMPLETION_AUTH_FAILED
    if status_code >= 500:
        return ErrorKind.COMPLETION_SERVICE_UNAVAILABLE
    return ErrorKind.COMPLETION_FAILED
