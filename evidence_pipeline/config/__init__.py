"""Configuration module: exports Settings and the validating loader."""

from evidence_pipeline.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
