"""FastAPI routes for the evidence pipeline.

Service dependencies are resolved from ``app.state`` via FastAPI's
``Depends`` using the ``Annotated`` pattern; ``main.py`` populates the
state in its lifespan handler.

Endpoint                                  Method  Description
-----------------------------------------------------------------------------
/api/v1/sources                           POST    Create a source (optional inline upload)
/api/v1/sources/{source_id}               GET     Fetch one source
/api/v1/sources/{source_id}               DELETE  Delete a source with its chunks
/api/v1/sources/{source_id}/upload        POST    Store content for ingestion
/api/v1/sources/{source_id}/ingest        POST    Run ingestion, return the result
/api/v1/projects/{project_id}/sources     GET     List a project's sources
/api/v1/retrieval                         POST    Ranked evidence for a query
/api/v1/drafting/stream                   POST    Streamed completion (SSE)
/api/v1/health                            GET     Health check + provider status

The caller is identified by the ``X-Owner-Id`` header; authenticating that
identity is the job of whatever sits in front of this service.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from evidence_pipeline import __version__
from evidence_pipeline.api.schemas import (
    DraftStreamRequest,
    HealthResponse,
    RetrievalRequest,
    SourceListResponse,
)
from evidence_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from evidence_pipeline.interfaces.llm_provider import ILLMProvider
from evidence_pipeline.models.retrieval import RetrievalResponse
from evidence_pipeline.models.source import Source, SourceCreateInput, SourceUploadInput
from evidence_pipeline.services.ingestion.ingestion_service import IngestionService
from evidence_pipeline.services.retrieval.retrieval_service import RetrievalService
from evidence_pipeline.services.source_service import SourceService
from evidence_pipeline.services.streaming.consumer import StreamingCompletionConsumer, encode_sse
from evidence_pipeline.utils.errors import ErrorKind
from evidence_pipeline.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_source_service(request: Request) -> SourceService:
    return request.app.state.source_service


def _get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion_service


def _get_retrieval_service(request: Request) -> RetrievalService:
    return request.app.state.retrieval_service


def _get_llm_provider(request: Request) -> ILLMProvider:
    return request.app.state.llm_provider


def _get_embedding_provider(request: Request) -> IEmbeddingProvider:
    return request.app.state.embedding_provider


def _get_owner_id(x_owner_id: Annotated[str | None, Header()] = None) -> str:
    """Caller identity from the ``X-Owner-Id`` header."""
    if not x_owner_id:
        raise HTTPException(status_code=401, detail="X-Owner-Id header is required")
    return x_owner_id


SourceServiceDep = Annotated[SourceService, Depends(_get_source_service)]
IngestionServiceDep = Annotated[IngestionService, Depends(_get_ingestion_service)]
RetrievalServiceDep = Annotated[RetrievalService, Depends(_get_retrieval_service)]
LLMProviderDep = Annotated[ILLMProvider, Depends(_get_llm_provider)]
EmbeddingProviderDep = Annotated[IEmbeddingProvider, Depends(_get_embedding_provider)]
OwnerDep = Annotated[str, Depends(_get_owner_id)]


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


@router.post("/sources", response_model=Source, status_code=201)
async def create_source(
    body: SourceCreateInput,
    owner_id: OwnerDep,
    sources: SourceServiceDep,
) -> Source:
    return await sources.create_source(owner_id, body)


@router.get("/sources/{source_id}", response_model=Source)
async def get_source(source_id: str, owner_id: OwnerDep, sources: SourceServiceDep) -> Source:
    source = await sources.get_source(source_id, owner_id=owner_id)
    if source is None:
        raise HTTPException(status_code=404, detail=f"Source {source_id} not found")
    return source


@router.delete("/sources/{source_id}", status_code=204)
async def delete_source(source_id: str, owner_id: OwnerDep, sources: SourceServiceDep) -> Response:
    if not await sources.delete_source(owner_id, source_id):
        raise HTTPException(status_code=404, detail=f"Source {source_id} not found")
    return Response(status_code=204)


@router.post("/sources/{source_id}/upload", status_code=202)
async def upload_source_content(
    source_id: str,
    body: SourceUploadInput,
    owner_id: OwnerDep,
    sources: SourceServiceDep,
) -> dict[str, Any]:
    if not await sources.upload_content(owner_id, source_id, body):
        raise HTTPException(status_code=404, detail=f"Source {source_id} not found")
    return {"source_id": source_id, "accepted": True}


@router.post("/sources/{source_id}/ingest")
async def ingest_source(
    source_id: str,
    owner_id: OwnerDep,
    ingestion: IngestionServiceDep,
) -> JSONResponse:
    """Run ingestion synchronously and return the camelCase result payload.

    A missing upload answers 409; a failed ingestion answers 200 with
    ``status: FAILED`` and the error in the body.
    """
    result = await ingestion.ingest_source(owner_id, source_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Source {source_id} not found")

    status_code = 200
    if result.error is not None and result.error.code == ErrorKind.MISSING_UPLOAD.value:
        status_code = 409
    return JSONResponse(status_code=status_code, content=result.to_payload())


@router.get("/projects/{project_id}/sources", response_model=SourceListResponse)
async def list_project_sources(
    project_id: str,
    owner_id: OwnerDep,
    sources: SourceServiceDep,
) -> SourceListResponse:
    items = await sources.list_sources(owner_id, project_id)
    return SourceListResponse(project_id=project_id, sources=items, total=len(items))


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


@router.post("/retrieval", response_model=RetrievalResponse)
async def retrieve(
    body: RetrievalRequest,
    owner_id: OwnerDep,
    retrieval: RetrievalServiceDep,
) -> RetrievalResponse:
    _logger.info("retrieval_requested", project_id=body.project_id, owner_id=owner_id)
    return await retrieval.retrieve(
        project_id=body.project_id,
        query=body.query,
        weights=body.weights,
        top_k=body.top_k,
        context=body.context,
    )


# ---------------------------------------------------------------------------
# Streaming drafts
# ---------------------------------------------------------------------------


@router.post("/drafting/stream")
async def stream_draft(
    body: DraftStreamRequest,
    owner_id: OwnerDep,
    llm: LLMProviderDep,
) -> StreamingResponse:
    """Stream a completion as server-sent events.

    Every frame is ``data: {json}`` holding a token, done or error event;
    the stream always ends with exactly one done or error frame.
    """
    consumer = StreamingCompletionConsumer(llm)
    _logger.info("draft_stream_requested", owner_id=owner_id, provider=llm.get_provider_name())

    async def _frames() -> AsyncIterator[str]:
        async for event in consumer.stream(
            body.system_prompt,
            body.user_prompt,
            temperature=body.temperature,
            max_tokens=body.max_tokens,
            model=body.model,
        ):
            yield encode_sse(event)

    return StreamingResponse(_frames(), media_type="text/event-stream", headers=_SSE_HEADERS)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse)
async def health(
    request: Request,
    llm: LLMProviderDep,
    embedder: EmbeddingProviderDep,
) -> HealthResponse:
    settings = request.app.state.settings
    return HealthResponse(
        status="healthy",
        version=__version__,
        providers={
            "completion": {"name": llm.get_provider_name(), "available": llm.is_available()},
            "embedding": {
                "name": embedder.get_provider_name(),
                "model": embedder.get_model_id(),
                "dimension": embedder.get_dimension(),
                "mock": embedder.is_mock(),
            },
            "store": settings.store_backend,
        },
    )
