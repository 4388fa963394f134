"""Orchestrator for source ingestion.

Pipeline stages: **extract -> chunk -> embed -> summarize -> persist**.

The :class:`IngestionService` coordinates its collaborators (text
extractor, chunker, embedding provider, summarizer, document store)
without any of them knowing about each other:

    1. SourceService      -- loads the source and its pending upload
    2. TextExtractor      -- TEXT passthrough, PDF page text
    3. TextChunker        -- heading-aware chunks of ~800 tokens
    4. IEmbeddingProvider -- vectors, in batches, through ``with_retry``
    5. SourceSummarizer   -- structured abstract + bullet points
    6. IDocumentStore     -- old chunks deleted, new chunks written in
                             limit-sized batches, then one final batch
                             flips the source to READY and drops the upload

Ordering guarantees: old chunks are only deleted once every embedding
exists, and the READY flip is the last write, so a READY source always
has its complete chunk set.  Any failure marks the source FAILED with a
readable message and is reported in the returned
:class:`IngestionResult` rather than raised.

Source writes are updates, never upserts: a source deleted while its
ingestion runs stays deleted, and chunks the run already wrote are
removed again.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from evidence_pipeline.config.settings import Settings
from evidence_pipeline.interfaces.document_store import (
    SOURCE_CHUNKS,
    SOURCE_UPLOADS,
    SOURCES,
    BatchOperation,
    IDocumentStore,
)
from evidence_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from evidence_pipeline.interfaces.llm_provider import ILLMProvider
from evidence_pipeline.models.provider import EmbeddingUsage
from evidence_pipeline.models.source import (
    IngestionResult,
    ResultError,
    Source,
    SourceChunk,
    SourceStatus,
    SourceSummary,
    TextChunk,
)
from evidence_pipeline.services.ingestion.chunker import TextChunker
from evidence_pipeline.services.ingestion.summarizer import SourceSummarizer
from evidence_pipeline.services.ingestion.text_extractor import TextExtractor
from evidence_pipeline.services.source_service import SourceService
from evidence_pipeline.utils.concurrency import throttled_gather
from evidence_pipeline.utils.errors import (
    ErrorKind,
    IngestionError,
    PersistenceError,
    PipelineError,
)
from evidence_pipeline.utils.retry import RetryContext, with_retry

logger = structlog.get_logger(logger_name=__name__)

_MISSING_UPLOAD_MESSAGE = (
    "No uploaded data found for source. Upload content before requesting ingestion."
)


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()  # noqa: UP017


class IngestionService:
    """Runs the full ingestion pipeline for one source at a time.

    Parameters
    ----------
    store:
        Document store holding sources, uploads and chunks.
    source_service:
        Source and upload lookups with ownership checks.
    embedding_provider:
        Generates chunk vectors.  Its model id is recorded on the source.
    llm_provider:
        Completion provider used for the structured summary.
    settings:
        Batch sizes, pauses, retry policies and the chunk budget.
    chunker, extractor, summarizer:
        Optional overrides; built from *settings* when omitted.
    sleep:
        Awaitable sleep used for the pause between embedding batches and
        for retry backoff, including the summary completion (injectable
        for tests).
    """

    def __init__(
        self,
        store: IDocumentStore,
        source_service: SourceService,
        embedding_provider: IEmbeddingProvider,
        llm_provider: ILLMProvider,
        settings: Settings,
        chunker: TextChunker | None = None,
        extractor: TextExtractor | None = None,
        summarizer: SourceSummarizer | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._sources = source_service
        self._embedding_provider = embedding_provider
        self._settings = settings
        self._chunker = chunker or TextChunker(
            target_tokens=settings.chunk_target_tokens,
            min_tokens=settings.chunk_min_tokens,
        )
        self._extractor = extractor or TextExtractor()
        self._summarizer = summarizer or SourceSummarizer(llm_provider, settings, sleep=sleep)
        self._sleep = sleep
        self._embedding_policy = settings.embedding_retry_policy()
        self._persistence_policy = settings.persistence_retry_policy()

    @property
    def store_batch_size(self) -> int:
        """Chunks per write batch: configured limit clamped to the store's maximum."""
        return max(1, min(self._settings.store_batch_limit, self._store.max_batch_operations))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest_source(self, owner_id: str, source_id: str) -> IngestionResult | None:
        """Ingest the pending upload of *source_id*.

        Returns
        -------
        IngestionResult | None
            ``None`` when the source does not exist or is not owned by
            *owner_id*.  Otherwise a result whose ``status`` is READY on
            success, or whose ``error`` carries ``{code, message}``.

        Raises
        ------
        asyncio.CancelledError
            Re-raised after the source has been marked FAILED.
        """
        source = await self._sources.get_source(source_id, owner_id=owner_id)
        if source is None:
            logger.info("ingest_source_not_found", source_id=source_id)
            return None

        upload = await self._sources.get_upload(source_id)
        if upload is None:
            logger.warning("ingest_missing_upload", source_id=source_id)
            return IngestionResult(
                source_id=source_id,
                status=source.status,
                error=ResultError(
                    code=ErrorKind.MISSING_UPLOAD.value, message=_MISSING_UPLOAD_MESSAGE
                ),
            )

        start = time.monotonic()
        failures: list[ErrorKind] = []
        bind_contextvars(source_id=source_id, project_id=source.project_id)
        try:
            await self._mark_status(source_id, SourceStatus.PROCESSING)
            logger.info(
                "ingestion_started",
                kind=source.kind.value,
                content_type=upload.content_type.value,
            )
            text = await asyncio.to_thread(self._extractor.extract, upload)
            return await self._run(source, text, failures, start)
        except asyncio.CancelledError:
            logger.warning("ingestion_cancelled")
            await asyncio.shield(self._mark_failed(source_id, "ingestion cancelled"))
            raise
        except PipelineError as exc:
            return await self._fail(source_id, exc, failures, start)
        except Exception as exc:  # noqa: BLE001 (reported on the source and in the result)
            error = PipelineError(message=f"Unexpected ingestion failure: {exc}")
            error.__cause__ = exc
            logger.exception("ingestion_unexpected_error")
            return await self._fail(source_id, error, failures, start)
        finally:
            unbind_contextvars("source_id", "project_id")

    async def ingest_many(
        self, owner_id: str, source_ids: list[str]
    ) -> list[IngestionResult | None]:
        """Ingest independent sources concurrently (``ingestion_concurrency`` at a time)."""
        results = await throttled_gather(
            [self.ingest_source(owner_id, sid) for sid in source_ids],
            limit=self._settings.ingestion_concurrency,
            return_exceptions=False,
        )
        return list(results)  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(
        self, source: Source, text: str, failures: list[ErrorKind], start: float
    ) -> IngestionResult:
        chunks = self._chunker.chunk(text, target_tokens=self._settings.chunk_target_tokens)
        if not chunks:
            raise IngestionError(
                message="Extracted text produced no chunks", kind=ErrorKind.EXTRACTION_FAILED
            )

        vectors = await self._embed_chunks(source, chunks, failures)

        summary_ctx = RetryContext(
            operation="summarize", source_id=source.id, project_id=source.project_id
        )
        summary = await self._summarizer.summarize(text, source.metadata, summary_ctx)
        failures.extend(summary_ctx.failures)

        source_chunks = [
            SourceChunk(
                id=str(uuid.uuid4()),
                source_id=source.id,
                project_id=source.project_id,
                order=index,
                text=chunk.text,
                token_count=chunk.approx_token_count,
                embedding=vector,
                heading=chunk.heading,
                page_range=chunk.page_range,
            )
            for index, (chunk, vector) in enumerate(zip(chunks, vectors))
        ]
        total_tokens = sum(c.token_count for c in source_chunks)
        embedding_model = self._embedding_provider.get_model_id()

        await self._ensure_source_exists(source)
        await self._delete_existing_chunks(source, failures)
        await self._store_chunks(source, source_chunks, failures)
        await self._finalize(
            source, source_chunks, total_tokens, summary, embedding_model, failures
        )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "ingestion_complete",
            chunks=len(source_chunks),
            tokens=total_tokens,
            embedding_model=embedding_model,
            transient_failures=len(failures),
            time_ms=elapsed_ms,
        )
        return IngestionResult(
            source_id=source.id,
            status=SourceStatus.READY,
            summary=summary,
            chunk_count=len(source_chunks),
            total_tokens=total_tokens,
            embedding_model=embedding_model,
            processing_time_ms=elapsed_ms,
            transient_failures=[k.value for k in failures],
        )

    async def _embed_chunks(
        self, source: Source, chunks: list[TextChunk], failures: list[ErrorKind]
    ) -> list[list[float]]:
        """Embed every chunk, batch by batch, verifying vector counts."""
        batch_size = self._settings.embedding_batch_size
        total_batches = (len(chunks) + batch_size - 1) // batch_size
        pause_s = self._settings.embedding_batch_pause_ms / 1000
        vectors: list[list[float]] = []
        usage = EmbeddingUsage()

        for batch_no, offset in enumerate(range(0, len(chunks), batch_size), start=1):
            texts = [c.text for c in chunks[offset : offset + batch_size]]
            ctx = RetryContext(
                operation="embed_batch", source_id=source.id, project_id=source.project_id
            )

            async def _embed(batch: list[str] = texts) -> Any:
                return await self._embedding_provider.embed(batch)

            try:
                result = await with_retry(_embed, self._embedding_policy, ctx, sleep=self._sleep)
            finally:
                failures.extend(ctx.failures)

            if len(result.vectors) != len(texts):
                raise IngestionError(
                    message=(
                        f"Embedding count mismatch: expected {len(texts)}, "
                        f"got {len(result.vectors)}"
                    ),
                    kind=ErrorKind.EMBEDDING_COUNT_MISMATCH,
                    provider_name=self._embedding_provider.get_provider_name(),
                    context={"batch": batch_no},
                )
            vectors.extend(result.vectors)
            if result.usage is not None:
                usage = usage + result.usage

            logger.info(
                "embedding_batch_complete",
                batch=batch_no,
                total_batches=total_batches,
                size=len(texts),
                latency_ms=round(result.latency_ms, 1),
            )
            if batch_no < total_batches and not self._embedding_provider.is_mock():
                await self._sleep(pause_s)

        if len(vectors) != len(chunks):
            raise IngestionError(
                message=f"Embedding count mismatch: expected {len(chunks)}, got {len(vectors)}",
                kind=ErrorKind.EMBEDDING_COUNT_MISMATCH,
            )
        logger.info(
            "embedding_usage",
            prompt_tokens=usage.prompt_tokens,
            total_tokens=usage.total_tokens,
            batches=total_batches,
            provider=self._embedding_provider.get_provider_name(),
        )
        return vectors

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _commit(
        self,
        operations: list[BatchOperation],
        operation: str,
        source: Source,
        failures: list[ErrorKind],
    ) -> None:
        ctx = RetryContext(operation=operation, source_id=source.id, project_id=source.project_id)
        try:
            await with_retry(
                lambda: self._store.batch_write(operations),
                self._persistence_policy,
                ctx,
                sleep=self._sleep,
            )
        finally:
            failures.extend(ctx.failures)

    async def _delete_existing_chunks(self, source: Source, failures: list[ErrorKind]) -> None:
        existing = await self._store.query(SOURCE_CHUNKS, filters={"source_id": source.id})
        if not existing:
            return
        ids = [doc["id"] for doc in existing]
        size = self.store_batch_size
        for offset in range(0, len(ids), size):
            ops = [BatchOperation.delete(SOURCE_CHUNKS, i) for i in ids[offset : offset + size]]
            await self._commit(ops, "delete_chunks", source, failures)
        logger.info("existing_chunks_deleted", count=len(ids))

    async def _store_chunks(
        self, source: Source, chunks: list[SourceChunk], failures: list[ErrorKind]
    ) -> None:
        size = self.store_batch_size
        total_batches = (len(chunks) + size - 1) // size
        for batch_no, offset in enumerate(range(0, len(chunks), size), start=1):
            ops = [
                BatchOperation.set(SOURCE_CHUNKS, c.id, c.model_dump(mode="json"))
                for c in chunks[offset : offset + size]
            ]
            await self._commit(ops, "store_chunks", source, failures)
            logger.info(
                "chunk_batch_stored", batch=batch_no, total_batches=total_batches, size=len(ops)
            )

    async def _finalize(
        self,
        source: Source,
        chunks: list[SourceChunk],
        total_tokens: int,
        summary: SourceSummary,
        embedding_model: str,
        failures: list[ErrorKind],
    ) -> None:
        now = _now_iso()
        ready = {
            "status": SourceStatus.READY.value,
            "summary": summary.model_dump(mode="json"),
            "embedding_model": embedding_model,
            "chunk_count": len(chunks),
            "total_tokens": total_tokens,
            "error": None,
            "updated_at": now,
            "processed_at": now,
        }
        await self._commit(
            [
                BatchOperation.update(SOURCES, source.id, ready),
                BatchOperation.delete(SOURCE_UPLOADS, source.id),
            ],
            "finalize_source",
            source,
            failures,
        )

    async def _ensure_source_exists(self, source: Source) -> None:
        if await self._store.get(SOURCES, source.id) is None:
            raise PersistenceError(
                message="Source was deleted during ingestion",
                kind=ErrorKind.DOCUMENT_NOT_FOUND,
            )

    async def _mark_status(self, source_id: str, status: SourceStatus) -> None:
        await self._store.update(
            SOURCES, source_id, {"status": status.value, "updated_at": _now_iso()}
        )

    async def _mark_failed(self, source_id: str, message: str) -> None:
        try:
            await self._store.update(
                SOURCES,
                source_id,
                {"status": SourceStatus.FAILED.value, "error": message, "updated_at": _now_iso()},
            )
        except PersistenceError as exc:
            if exc.kind != ErrorKind.DOCUMENT_NOT_FOUND:
                logger.error("mark_failed_write_failed", source_id=source_id, error=str(exc))
                return
            # Deleted mid-run: drop any chunks this run wrote after the cascade.
            await self._discard_orphaned_chunks(source_id)
        except PipelineError as exc:
            # The original failure is what gets reported; this one is only logged.
            logger.error("mark_failed_write_failed", source_id=source_id, error=str(exc))

    async def _discard_orphaned_chunks(self, source_id: str) -> None:
        try:
            orphans = await self._store.query(SOURCE_CHUNKS, filters={"source_id": source_id})
            if orphans:
                await self._store.batch_delete(SOURCE_CHUNKS, [doc["id"] for doc in orphans])
        except PipelineError as exc:
            logger.error("orphaned_chunk_cleanup_failed", source_id=source_id, error=str(exc))
            return
        logger.warning("source_deleted_during_ingestion", orphaned_chunks=len(orphans))

    async def _fail(
        self,
        source_id: str,
        error: PipelineError,
        failures: list[ErrorKind],
        start: float,
    ) -> IngestionResult:
        logger.error(
            "ingestion_failed",
            error_kind=error.kind.value,
            error=str(error),
            provider=error.provider_name,
        )
        await self._mark_failed(source_id, error.message)
        return IngestionResult(
            source_id=source_id,
            status=SourceStatus.FAILED,
            processing_time_ms=int((time.monotonic() - start) * 1000),
            transient_failures=[k.value for k in failures],
            error=ResultError(**error.to_dict()),
        )
