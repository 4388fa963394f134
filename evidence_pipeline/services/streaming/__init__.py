"""Streaming completion consumption for the drafting layer."""

from evidence_pipeline.services.streaming.consumer import (
    StreamingCompletionConsumer,
    StreamState,
    encode_sse,
)

__all__ = ["StreamState", "StreamingCompletionConsumer", "encode_sse"]
