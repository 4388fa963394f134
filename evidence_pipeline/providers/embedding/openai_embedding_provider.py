"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Works against OpenAI itself and any OpenAI-compatible endpoint (OpenRouter
by default) via the ``openai_base_url`` setting.

The SDK's own retry loop is disabled (``max_retries=0``); backoff belongs
to :func:`~evidence_pipeline.utils.retry.with_retry`.  SDK exceptions are
translated into :class:`EmbeddingError` with a kind derived from the HTTP
status so the retry framework can decide what is transient.
"""

from __future__ import annotations

import time

import openai
import structlog

from evidence_pipeline.config.settings import Settings
from evidence_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from evidence_pipeline.models.provider import EmbeddingResult, EmbeddingUsage
from evidence_pipeline.utils.errors import EmbeddingError, ErrorKind, classify_embedding_status

logger = structlog.get_logger(logger_name=__name__)

# Known embedding model dimensions; OpenRouter ids carry a vendor prefix.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "openai/text-embedding-3-small": 1536,
    "openai/text-embedding-3-large": 3072,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``openai/text-embedding-3-small`` (1536 dims) through OpenRouter
    by default.  Unknown models fall back to ``embedding_dimension``.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._api_key = settings.remote_api_key

        client_kwargs: dict = {"api_key": self._api_key or "missing", "max_retries": 0}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.embedding_model
        self._dimension = _MODEL_DIMENSIONS.get(self._model, settings.embedding_dimension)
        self._provider_label = (
            "openrouter_embedding"
            if "openrouter" in settings.openai_base_url
            else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> EmbeddingResult:
        """Embed *texts* in a single request.

        The response items are re-sorted by their ``index`` so vectors stay
        aligned with *texts* even if the backend reorders them.
        """
        if not texts:
            return EmbeddingResult(vectors=[], model_id=self._model)

        start = time.perf_counter()
        try:
            response = await self._client.embeddings.create(input=texts, model=self._model)
        except openai.APIStatusError as exc:
            kind = classify_embedding_status(exc.status_code)
            raise EmbeddingError(
                message=f"{self._provider_label} returned HTTP {exc.status_code}: {exc.message}",
                kind=kind,
                provider_name=self.get_provider_name(),
                status_code=exc.status_code,
            ) from exc
        except openai.APIConnectionError as exc:
            # APITimeoutError is a subclass; both are transient.
            raise EmbeddingError(
                message=f"{self._provider_label} unreachable: {exc}",
                kind=ErrorKind.EMBEDDING_SERVICE_UNAVAILABLE,
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise EmbeddingError(
                message=f"{self._provider_label} API error: {exc}",
                kind=ErrorKind.EMBEDDING_GENERATION_FAILED,
                provider_name=self.get_provider_name(),
            ) from exc

        latency_ms = (time.perf_counter() - start) * 1000
        items = sorted(response.data, key=lambda item: getattr(item, "index", 0))
        vectors = [list(item.embedding) for item in items]

        usage = None
        if response.usage is not None:
            usage = EmbeddingUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )

        logger.info(
            "openai_embedding_batch",
            model=self._model,
            provider=self._provider_label,
            batch_size=len(texts),
            vectors=len(vectors),
            tokens=usage.total_tokens if usage else None,
            latency_ms=round(latency_ms, 1),
        )
        return EmbeddingResult(
            vectors=vectors,
            model_id=getattr(response, "model", None) or self._model,
            latency_ms=latency_ms,
            usage=usage,
        )

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed([text])
        if len(result.vectors) != 1:
            raise EmbeddingError(
                message=f"Expected 1 vector, received {len(result.vectors)}",
                kind=ErrorKind.EMBEDDING_COUNT_MISMATCH,
                provider_name=self.get_provider_name(),
            )
        return result.vectors[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_id(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return self._provider_label

    async def aclose(self) -> None:
        await self._client.close()

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
