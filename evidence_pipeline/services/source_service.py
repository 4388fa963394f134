"""Source records, upload payloads and chunk lookups over the document store.

Three collections are involved:

    sources          one document per :class:`Source`
    source_uploads   pending :class:`UploadPayload`, keyed by source id
    source_chunks    persisted :class:`SourceChunk` documents

Ownership is checked here: every mutating call takes the caller's
``owner_id`` and refuses to touch sources that belong to someone else.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from evidence_pipeline.interfaces.document_store import (
    SOURCE_CHUNKS,
    SOURCE_UPLOADS,
    SOURCES,
    BatchOperation,
    IDocumentStore,
)
from evidence_pipeline.models.source import (
    Source,
    SourceChunk,
    SourceCreateInput,
    SourceStatus,
    SourceUploadInput,
    UploadPayload,
)

logger = structlog.get_logger(logger_name=__name__)


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()  # noqa: UP017


class SourceService:
    """CRUD operations for sources and their uploads and chunks.

    Parameters
    ----------
    store:
        The document store holding all three collections.
    """

    def __init__(self, store: IDocumentStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def create_source(self, owner_id: str, data: SourceCreateInput) -> Source:
        """Create a source; store its upload too when one is supplied."""
        source = Source(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            project_id=data.project_id,
            kind=data.kind,
            status=SourceStatus.PROCESSING if data.upload else SourceStatus.UPLOADED,
            metadata=data.metadata,
        )
        await self._store.create(SOURCES, source.model_dump(mode="json"), doc_id=source.id)
        logger.info(
            "source_created",
            source_id=source.id,
            project_id=source.project_id,
            kind=source.kind.value,
            with_upload=data.upload is not None,
        )

        if data.upload is not None:
            await self.upload_content(owner_id, source.id, data.upload)
        return source

    async def get_source(self, source_id: str, owner_id: str | None = None) -> Source | None:
        """Return the source, or ``None`` if absent, unparseable or owned by someone else."""
        doc = await self._store.get(SOURCES, source_id)
        source = self._to_source(doc)
        if source is None:
            return None
        if owner_id is not None and source.owner_id != owner_id:
            return None
        return source

    async def list_sources(self, owner_id: str, project_id: str) -> list[Source]:
        """All of *owner_id*'s sources in *project_id*, newest first."""
        docs = await self._store.query(
            SOURCES,
            filters={"owner_id": owner_id, "project_id": project_id},
            order_by="created_at",
            descending=True,
        )
        return [s for s in (self._to_source(d) for d in docs) if s is not None]

    async def update_status(self, source_id: str, status: SourceStatus | str) -> None:
        """Set a source's status.

        Raises
        ------
        ValueError
            If *status* is not a valid :class:`SourceStatus`.
        PersistenceError
            With kind ``document-not-found`` when the source does not exist.
        """
        try:
            parsed = SourceStatus(status)
        except ValueError as exc:
            raise ValueError(f"Invalid source status supplied: {status}") from exc
        await self._store.update(
            SOURCES, source_id, {"status": parsed.value, "updated_at": _now_iso()}
        )

    async def delete_source(self, owner_id: str, source_id: str) -> bool:
        """Delete a source with its chunks and any pending upload.

        Returns ``False`` when the source does not exist or is not owned
        by *owner_id*.
        """
        source = await self.get_source(source_id, owner_id=owner_id)
        if source is None:
            return False

        chunk_ids = [c.id for c in await self.get_chunks_for_source(source_id)]
        deleted = await self._store.batch_delete(SOURCE_CHUNKS, chunk_ids)
        await self._store.batch_write(
            [
                BatchOperation.delete(SOURCE_UPLOADS, source_id),
                BatchOperation.delete(SOURCES, source_id),
            ]
        )
        logger.info("source_deleted", source_id=source_id, chunks_deleted=deleted)
        return True

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    async def upload_content(
        self, owner_id: str, source_id: str, payload: SourceUploadInput
    ) -> bool:
        """Store *payload* for later ingestion and mark the source PROCESSING.

        Returns ``False`` when the source does not exist or is not owned
        by *owner_id*.
        """
        source = await self.get_source(source_id, owner_id=owner_id)
        if source is None:
            return False

        upload = UploadPayload(
            content_type=payload.content_type,
            data=payload.data,
            owner_id=owner_id,
            project_id=source.project_id,
            original_filename=payload.original_filename,
        )
        await self._store.batch_write(
            [
                BatchOperation.set(SOURCE_UPLOADS, source_id, upload.model_dump(mode="json")),
                BatchOperation.update(
                    SOURCES,
                    source_id,
                    {"status": SourceStatus.PROCESSING.value, "updated_at": _now_iso()},
                ),
            ]
        )
        logger.info(
            "source_upload_stored",
            source_id=source_id,
            content_type=payload.content_type.value,
            size=len(payload.data),
        )
        return True

    async def get_upload(self, source_id: str) -> UploadPayload | None:
        doc = await self._store.get(SOURCE_UPLOADS, source_id)
        if doc is None:
            return None
        try:
            return UploadPayload.model_validate(doc)
        except ValidationError as exc:
            logger.error("upload_parse_failed", source_id=source_id, error=str(exc))
            return None

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def get_chunks_for_project(self, project_id: str) -> list[SourceChunk]:
        """Every persisted chunk in *project_id*, ordered by ``order``."""
        docs = await self._store.query(
            SOURCE_CHUNKS, filters={"project_id": project_id}, order_by="order"
        )
        return [SourceChunk.model_validate(d) for d in docs]

    async def get_chunks_for_source(self, source_id: str) -> list[SourceChunk]:
        docs = await self._store.query(
            SOURCE_CHUNKS, filters={"source_id": source_id}, order_by="order"
        )
        return [SourceChunk.model_validate(d) for d in docs]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _to_source(doc: dict[str, Any] | None) -> Source | None:
        if doc is None:
            return None
        try:
            return Source.model_validate(doc)
        except ValidationError as exc:
            logger.error("source_parse_failed", source_id=doc.get("id"), error=str(exc))
            return None
