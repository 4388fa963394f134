"""Utility modules for the evidence pipeline.

- **errors** -- Exception hierarchy rooted at PipelineError; every error
  carries an ErrorKind that retry and status-handling code branches on.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **retry** -- The single exponential-backoff executor shared by embedding,
  completion and document-store calls.
"""

from evidence_pipeline.utils.errors import (
    CompletionError,
    ConfigurationError,
    EmbeddingError,
    ErrorKind,
    IngestionError,
    PersistenceError,
    PipelineError,
    RetrievalError,
    StreamError,
    SummaryMalformedError,
)
from evidence_pipeline.utils.logging import configure_logging, get_logger
from evidence_pipeline.utils.retry import RetryContext, RetryPolicy, with_retry

__all__ = [
    "CompletionError",
    "ConfigurationError",
    "EmbeddingError",
    "ErrorKind",
    "IngestionError",
    "PersistenceError",
    "PipelineError",
    "RetrievalError",
    "RetryContext",
    "RetryPolicy",
    "StreamError",
    "SummaryMalformedError",
    "configure_logging",
    "get_logger",
    "with_retry",
]
