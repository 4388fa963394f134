"""SQLite-backed document store.

Persists every collection in one ``documents`` table holding JSON bodies,
using ``aiosqlite`` for async I/O.  Each :meth:`batch_write` runs in a
single transaction, so a failed batch leaves nothing behind.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from evidence_pipeline.interfaces.document_store import BatchOperation, IDocumentStore
from evidence_pipeline.providers.store.memory_document_store import (
    matches_filters,
    sort_documents,
)
from evidence_pipeline.utils.errors import ErrorKind, PersistenceError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/evidence.db")

# SQLite has no batch ceiling of its own; this mirrors hosted document stores
# so the orchestrator's batching is exercised identically in every backend.
_DEFAULT_MAX_BATCH_OPERATIONS = 500

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS documents (
    collection  TEXT NOT NULL,
    id          TEXT NOT NULL,
    data        TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    PRIMARY KEY (collection, id)
);
"""

_UPSERT_SQL = """\
INSERT INTO documents (collection, id, data)
VALUES (?, ?, ?)
ON CONFLICT(collection, id)
DO UPDATE SET data       = excluded.data,
              updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""

_SELECT_SQL = "SELECT data FROM documents WHERE collection = ? AND id = ?;"
_DELETE_SQL = "DELETE FROM documents WHERE collection = ? AND id = ?;"


class SQLiteDocumentStore(IDocumentStore):
    """SQLite persistence for sources, uploads and chunks."""

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        max_batch_operations: int = _DEFAULT_MAX_BATCH_OPERATIONS,
    ) -> None:
        self._db_path = Path(db_path)
        self._max_batch_operations = max_batch_operations

    @property
    def max_batch_operations(self) -> int:
        return self._max_batch_operations

    async def initialize(self) -> None:
        """Create the documents table if it doesn't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_TABLE_SQL)
            await db.commit()
        logger.info("document_store_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Single-document operations
    # ------------------------------------------------------------------

    async def create(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> str:
        new_id = doc_id or str(uuid.uuid4())
        body = json.dumps({**data, "id": new_id})
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    "INSERT INTO documents (collection, id, data) VALUES (?, ?, ?);",
                    (collection, new_id, body),
                )
                await db.commit()
        except sqlite3.IntegrityError as exc:
            raise PersistenceError(
                message=f"Document {collection}/{new_id} already exists",
                provider_name="sqlite",
                retryable=False,
            ) from exc
        except sqlite3.Error as exc:
            raise PersistenceError(message=f"Insert failed: {exc}", provider_name="sqlite") from exc
        return new_id

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(_SELECT_SQL, (collection, doc_id))
            row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def set(
        self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False
    ) -> None:
        await self.batch_write([BatchOperation.set(collection, doc_id, data, merge=merge)])

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        await self.batch_write([BatchOperation.update(collection, doc_id, data)])

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.batch_write([BatchOperation.delete(collection, doc_id)])

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        sql = "SELECT data FROM documents WHERE collection = ?"
        params: list[Any] = [collection]
        for field, value in (filters or {}).items():
            if isinstance(value, (str, int, float)) and not isinstance(value, bool):
                sql += " AND json_extract(data, ?) = ?"
                params.extend([f"$.{field}", value])

        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        # SQL narrows the scan; equality on the decoded JSON is authoritative.
        docs = [json.loads(r[0]) for r in rows]
        docs = [d for d in docs if matches_filters(d, filters)]
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
                provider_name="sqlite",
                retryable=False,
            )
        if not operations:
            return
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                for op in operations:
                    if op.op == "delete":
                        await db.execute(_DELETE_SQL, (op.collection, op.doc_id))
                        continue
                    body = dict(op.data)
                    if op.merge:
                        cursor = await db.execute(_SELECT_SQL, (op.collection, op.doc_id))
                        row = await cursor.fetchone()
                        if row:
                            body = {**json.loads(row[0]), **body}
                        elif op.op == "update":
                            # Raising before commit rolls back the whole batch.
                            raise PersistenceError(
                                message=f"Document {op.collection}/{op.doc_id} does not exist",
                                kind=ErrorKind.DOCUMENT_NOT_FOUND,
                                provider_name="sqlite",
                            )
                    body["id"] = op.doc_id
                    await db.execute(_UPSERT_SQL, (op.collection, op.doc_id, json.dumps(body)))
                await db.commit()
        except sqlite3.Error as exc:
            # Leaving the connection context without commit rolls the batch back.
            raise PersistenceError(
                message=f"Batch write of {len(operations)} operations failed: {exc}",
                provider_name="sqlite",
            ) from exc
        logger.debug("sqlite_batch_committed", operations=len(operations))

    async def batch_delete(self, collection: str, doc_ids: list[str]) -> int:
        deleted = 0
        for start in range(0, len(doc_ids), self._max_batch_operations):
            batch = doc_ids[start : start + self._max_batch_operations]
            await self.batch_write([BatchOperation.delete(collection, d) for d in batch])
            deleted += len(batch)
        return deleted

    async def close(self) -> None:
        return None
