"""In-memory document store.

Suitable for tests, the CLI's dry runs and single-process development.
Documents are deep-copied on the way in and out so callers can never
mutate stored state by accident.  A batch first resolves the new state of
the documents it touches and only then applies it, which makes each batch
atomic without copying the rest of the store.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from typing import Any

import structlog

from evidence_pipeline.interfaces.document_store import BatchOperation, IDocumentStore
from evidence_pipeline.utils.errors import ErrorKind, PersistenceError

logger = structlog.get_logger(logger_name=__name__)

# Matches the per-batch ceiling of common hosted document stores.
DEFAULT_MAX_BATCH_OPERATIONS = 500


def matches_filters(document: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """Return ``True`` when every ``filters`` field equals the document's value."""
    if not filters:
        return True
    return all(document.get(key) == value for key, value in filters.items())


def sort_documents(
    documents: list[dict[str, Any]], order_by: str | None, descending: bool = False
) -> list[dict[str, Any]]:
    """Sort by *order_by*; documents missing the field sort first (last if descending)."""
    if not order_by:
        return documents

    def key(doc: dict[str, Any]) -> tuple[int, Any]:
        value = doc.get(order_by)
        return (0, "") if value is None else (1, value)

    return sorted(documents, key=key, reverse=descending)


class MemoryDocumentStore(IDocumentStore):
    """Dict-backed :class:`IDocumentStore`.

    Parameters
    ----------
    max_batch_operations:
        Per-batch operation ceiling enforced by :meth:`batch_write`.
    """

    def __init__(self, max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS) -> None:
        self._max_batch_operations = max_batch_operations
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    @property
    def max_batch_operations(self) -> int:
        return self._max_batch_operations

    async def initialize(self) -> None:
        logger.debug("memory_store_initialized")

    # ------------------------------------------------------------------
    # Single-document operations
    # ------------------------------------------------------------------

    async def create(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> str:
        new_id = doc_id or str(uuid.uuid4())
        async with self._lock:
            docs = self._collections.setdefault(collection, {})
            if new_id in docs:
                raise PersistenceError(
                    message=f"Document {collection}/{new_id} already exists",
                    provider_name="memory",
                    retryable=False,
                )
            docs[new_id] = {**copy.deepcopy(data), "id": new_id}
        return new_id

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(
        self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False
    ) -> None:
        async with self._lock:
            self._commit(self._stage([BatchOperation.set(collection, doc_id, data, merge=merge)]))

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        async with self._lock:
            self._commit(self._stage([BatchOperation.update(collection, doc_id, data)]))

    async def delete(self, collection: str, doc_id: str) -> None:
        async with self._lock:
            self._collections.get(collection, {}).pop(doc_id, None)

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        docs = [
            copy.deepcopy(doc)
            for doc in self._collections.get(collection, {}).values()
            if matches_filters(doc, filters)
        ]
        return sort_documents(docs, order_by, descending)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def batch_write(self, operations: list[BatchOperation]) -> None:
        if len(operations) > self._max_batch_operations:
            raise PersistenceError(
                message=(
                    f"Batch of {len(operations)} operations exceeds the limit of "
                    f"{self._max_batch_operations}"
                ),
                provider_name="memory",
                retryable=False,
            )
        async with self._lock:
            self._commit(self._stage(operations))
        logger.debug("memory_batch_committed", operations=len(operations))

    async def batch_delete(self, collection: str, doc_ids: list[str]) -> int:
        deleted = 0
        for start in range(0, len(doc_ids), self._max_batch_operations):
            batch = doc_ids[start : start + self._max_batch_operations]
            await self.batch_write([BatchOperation.delete(collection, d) for d in batch])
            deleted += len(batch)
        return deleted

    async def close(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _stage(
        self, operations: list[BatchOperation]
    ) -> dict[tuple[str, str], dict[str, Any] | None]:
        """Resolve the final state of every document *operations* touch.

        Nothing is written here, so a failing operation leaves the store
        untouched.  ``None`` marks a deletion.
        """
        staged: dict[tuple[str, str], dict[str, Any] | None] = {}
        for op in operations:
            key = (op.collection, op.doc_id)
            if key in staged:
                current = staged[key]
            else:
                current = self._collections.get(op.collection, {}).get(op.doc_id)
            if op.op == "delete":
                staged[key] = None
                continue
            if op.op == "update" and current is None:
                raise PersistenceError(
                    message=f"Document {op.collection}/{op.doc_id} does not exist",
                    kind=ErrorKind.DOCUMENT_NOT_FOUND,
                    provider_name="memory",
                )
            body = copy.deepcopy(op.data)
            if op.merge and current is not None:
                staged[key] = {**current, **body, "id": op.doc_id}
            else:
                staged[key] = {**body, "id": op.doc_id}
        return staged

    def _commit(self, staged: dict[tuple[str, str], dict[str, Any] | None]) -> None:
        for (collection, doc_id), doc in staged.items():
            docs = self._collections.setdefault(collection, {})
            if doc is None:
                docs.pop(doc_id, None)
            else:
                docs[doc_id] = doc
