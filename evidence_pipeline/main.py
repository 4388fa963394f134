"""Evidence pipeline FastAPI application entry point.

Wires together the document store, embedding and completion providers and
the source, ingestion and retrieval services, then mounts the API routes.
Configuration comes from environment variables / ``.env`` via
:class:`~evidence_pipeline.config.settings.Settings`.

``build_components`` is also used by the CLI so both entry points run with
identical provider selection.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from evidence_pipeline import __version__
from evidence_pipeline.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from evidence_pipeline.api.routes import router as api_router
from evidence_pipeline.config.settings import Settings, load_settings
from evidence_pipeline.interfaces.document_store import IDocumentStore
from evidence_pipeline.providers.factory import (
    build_document_store,
    build_embedding_provider,
    build_llm_provider,
)
from evidence_pipeline.services.ingestion.ingestion_service import IngestionService
from evidence_pipeline.services.retrieval.retrieval_service import RetrievalService
from evidence_pipeline.services.source_service import SourceService
from evidence_pipeline.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = load_settings()

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings, http_client: httpx.AsyncClient | None = None
) -> dict[str, Any]:
    """Construct every provider and service for *app_settings*.

    The returned dict is keyed by the ``app.state`` attribute each
    component is exposed under.  The document store still needs
    ``await store.initialize()`` before first use.
    """
    if http_client is None:
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(app_settings.completion_timeout_s, connect=5.0)
        )

    store = build_document_store(app_settings)
    embedding_provider = build_embedding_provider(app_settings)
    llm_provider = build_llm_provider(app_settings, http_client=http_client)

    source_service = SourceService(store)
    ingestion_service = IngestionService(
        store=store,
        source_service=source_service,
        embedding_provider=embedding_provider,
        llm_provider=llm_provider,
        settings=app_settings,
    )
    retrieval_service = RetrievalService(
        source_service=source_service,
        embedding_provider=embedding_provider,
        settings=app_settings,
    )

    return {
        "http_client": http_client,
        "store": store,
        "embedding_provider": embedding_provider,
        "llm_provider": llm_provider,
        "source_service": source_service,
        "ingestion_service": ingestion_service,
        "retrieval_service": retrieval_service,
    }


async def close_components(components: dict[str, Any]) -> None:
    """Release what :func:`build_components` opened.

    Providers that own a client expose ``aclose``; they are closed before
    the shared httpx client they may be using, and the store goes last.
    """
    for key in ("llm_provider", "embedding_provider"):
        aclose = getattr(components[key], "aclose", None)
        if aclose is not None:
            await aclose()
    http_client: httpx.AsyncClient = components["http_client"]
    await http_client.aclose()
    await components["store"].close()


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Initialise providers and services on startup, clean up on shutdown."""
    app_settings: Settings = application.state.settings
    components = build_components(app_settings)

    store: IDocumentStore = components["store"]
    await store.initialize()

    for key, value in components.items():
        setattr(application.state, key, value)

    _logger.info(
        "app_startup",
        version=__version__,
        environment=app_settings.app_env,
        store=app_settings.store_backend,
        embedding_provider=components["embedding_provider"].get_provider_name(),
        completion_provider=components["llm_provider"].get_provider_name(),
    )

    yield

    await close_components(components)
    _logger.info("app_shutdown", message="Providers, HTTP client and document store closed")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    app_settings:
        Settings for this app instance; the module-level settings loaded
        from the environment when omitted.
    """
    application = FastAPI(
        title="Evidence Pipeline API",
        version=__version__,
        description=(
            "Upload research sources, turn them into embedded, summarized "
            "evidence chunks, and retrieve ranked, citable evidence for "
            "drafting queries."
        ),
        lifespan=_lifespan,
    )
    application.state.settings = app_settings or settings

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "evidence_pipeline.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
