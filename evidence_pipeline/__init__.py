"""Evidence pipeline: source ingestion, embedding and ranked retrieval.

Researchers upload sources (plain text or PDF) into a project; ingestion
turns each source into ordered, embedded, summarized chunks, and retrieval
ranks those chunks against a drafting query with explainable scores.
"""

__version__ = "0.1.0"
