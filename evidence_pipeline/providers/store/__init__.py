"""Document store implementations.

    - MemoryDocumentStore -- dict-backed, for tests and development
    - SQLiteDocumentStore -- aiosqlite, one JSON document per row
"""

from evidence_pipeline.providers.store.memory_document_store import MemoryDocumentStore
from evidence_pipeline.providers.store.sqlite_document_store import SQLiteDocumentStore

__all__ = ["MemoryDocumentStore", "SQLiteDocumentStore"]
