"""Ingestion: extract -> chunk -> embed -> summarize -> persist."""

from evidence_pipeline.services.ingestion.chunker import TextChunker, estimate_tokens
from evidence_pipeline.services.ingestion.ingestion_service import IngestionService
from evidence_pipeline.services.ingestion.summarizer import SourceSummarizer
from evidence_pipeline.services.ingestion.text_extractor import TextExtractor

__all__ = [
    "IngestionService",
    "SourceSummarizer",
    "TextChunker",
    "TextExtractor",
    "estimate_tokens",
]
