"""Retrieval: multi-factor ranking of persisted chunks for a query."""

from evidence_pipeline.services.retrieval.query_intent import analyze_query_intent
from evidence_pipeline.services.retrieval.ranking import RankingEngine
from evidence_pipeline.services.retrieval.retrieval_service import RetrievalService

__all__ = ["RankingEngine", "RetrievalService", "analyze_query_intent"]
