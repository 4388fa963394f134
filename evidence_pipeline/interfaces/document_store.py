"""Abstract base class for the document store collaborator.

The pipeline persists sources, upload payloads and chunks in a simple
collection/document store: each document is a JSON-compatible dict keyed
by id inside a named collection.  The store supports field-equality
queries and ordered batch writes that are atomic per batch, with a
per-batch operation limit that callers must respect
(:attr:`IDocumentStore.max_batch_operations`).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

# Collection names shared by the services.
SOURCES = "sources"
SOURCE_UPLOADS = "source_uploads"
SOURCE_CHUNKS = "source_chunks"


@dataclass(frozen=True)
class BatchOperation:
    """One write inside an atomic batch.

    Attributes
    ----------
    op:
        ``"set"`` writes *data* (merged into the existing document when
        *merge* is true); ``"update"`` merges *data* into a document that
        must already exist, failing the whole batch otherwise; ``"delete"``
        removes the document.
    collection:
        Target collection name.
    doc_id:
        Target document id.
    data:
        Document body for ``"set"`` and ``"update"``; ignored for ``"delete"``.
    merge:
        Merge *data* into an existing document instead of replacing it.
    """

    op: Literal["set", "update", "delete"]
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)
    merge: bool = False

    @classmethod
    def set(
        cls, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False
    ) -> BatchOperation:
        return cls(op="set", collection=collection, doc_id=doc_id, data=data, merge=merge)

    @classmethod
    def update(cls, collection: str, doc_id: str, data: dict[str, Any]) -> BatchOperation:
        return cls(op="update", collection=collection, doc_id=doc_id, data=data, merge=True)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> BatchOperation:
        return cls(op="delete", collection=collection, doc_id=doc_id)


# Concrete implementations: MemoryDocumentStore, SQLiteDocumentStore
# Located in: evidence_pipeline/providers/store/
class IDocumentStore(ABC):
    """Contract for the document store used by the source and ingestion services."""

    @property
    @abstractmethod
    def max_batch_operations(self) -> int:
        """Largest number of operations :meth:`batch_write` accepts at once."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create tables, directories).  Idempotent."""

    @abstractmethod
    async def create(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> str:
        """Insert a new document and return its id (generated when omitted)."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Return the document, or ``None`` if it does not exist."""

    @abstractmethod
    async def set(
        self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False
    ) -> None:
        """Write a document, replacing it unless *merge* is true."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Merge *data* into an existing document.

        Raises
        ------
        evidence_pipeline.utils.errors.PersistenceError
            With kind ``document-not-found`` when the document is absent;
            nothing is written in that case.
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document (no-op if absent)."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Return documents whose fields equal every value in *filters*.

        Parameters
        ----------
        collection:
            Collection to scan.
        filters:
            Field name to required value.  ``None`` or ``{}`` matches all.
        order_by:
            Optional field to sort by; documents missing the field sort first.
        descending:
            Reverse the sort order.
        """

    @abstractmethod
    async def batch_write(self, operations: list[BatchOperation]) -> None:
        """Apply *operations* in order, atomically.

        Raises
        ------
        evidence_pipeline.utils.errors.PersistenceError
            If the batch exceeds :attr:`max_batch_operations` or the write
            fails.  A failed batch leaves no partial writes behind.
        """

    @abstractmethod
    async def batch_delete(self, collection: str, doc_ids: list[str]) -> int:
        """Delete many documents in limit-sized batches; return the count deleted."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
