"""Concrete adapters for the interfaces in ``evidence_pipeline.interfaces``."""
