"""OpenAI-compatible completion provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
When ``openai_base_url`` points at OpenRouter (the default) or another
OpenAI-compatible gateway, model ids such as ``openai/gpt-4o-mini`` are
routed there unchanged.

Single-shot completions go through the SDK.  Streaming completions POST
to ``/chat/completions`` with ``stream: true`` over ``httpx`` and hand the
raw SSE body to the streaming consumer.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from typing import Any

import httpx
import openai
import structlog

from evidence_pipeline.config.settings import Settings
from evidence_pipeline.interfaces.llm_provider import ILLMProvider
from evidence_pipeline.providers.llm.sse_transport import open_sse_stream
from evidence_pipeline.utils.errors import (
    CompletionError,
    ErrorKind,
    StreamError,
    classify_completion_status,
)

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAILLMProvider(ILLMProvider):
    """Completion provider backed by an OpenAI-compatible chat API.

    Parameters
    ----------
    settings:
        Application settings (API key, base URL, default models, timeout).
    http_client:
        Shared ``httpx.AsyncClient`` for streaming.  When omitted the
        provider creates and owns one; :meth:`aclose` releases it.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._api_key = settings.remote_api_key
        self._base_url = (settings.openai_base_url or _DEFAULT_BASE_URL).rstrip("/")

        self._client = openai.AsyncOpenAI(
            api_key=self._api_key or "missing",
            base_url=self._base_url,
            timeout=openai.Timeout(settings.completion_timeout_s, connect=5.0),
            max_retries=0,
        )
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.completion_timeout_s, connect=5.0)
        )
        self._default_model = settings.drafting_model
        self._provider_label = "openrouter" if "openrouter" in self._base_url else "openai"

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        model: str | None = None,
    ) -> str:
        """Generate a text completion via the chat completions API."""
        model_id = model or self._default_model
        try:
            response = await self._client.chat.completions.create(
                model=model_id,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APIStatusError as exc:
            raise CompletionError(
                message=f"{self._provider_label} returned HTTP {exc.status_code}: {exc.message}",
                kind=classify_completion_status(exc.status_code),
                provider_name=self.get_provider_name(),
                status_code=exc.status_code,
            ) from exc
        except openai.APIConnectionError as exc:
            raise CompletionError(
                message=f"{self._provider_label} unreachable: {exc}",
                kind=ErrorKind.COMPLETION_SERVICE_UNAVAILABLE,
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise CompletionError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise CompletionError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "openai_completion",
            model=model_id,
            provider=self._provider_label,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    def open_stream(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        model: str | None = None,
    ) -> AbstractAsyncContextManager[AsyncIterator[bytes]]:
        body = {
            "model": model or self._default_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": True,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        return open_sse_stream(
            self._http_client,
            f"{self._base_url}/chat/completions",
            headers,
            body,
            self.get_provider_name(),
        )

    def extract_stream_delta(self, payload: dict[str, Any]) -> tuple[str | None, bool]:
        """Read ``choices[0].delta.content``; ``[DONE]`` is the completion marker.

        OpenRouter reports mid-stream failures as ``{"error": {...}}``
        payloads; those become a :class:`StreamError`.
        """
        if "error" in payload:
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise StreamError(
                message=f"Provider reported a stream error: {message}",
                provider_name=self.get_provider_name(),
            )
        choices = payload["choices"]
        if not choices:
            return None, False
        return choices[0]["delta"].get("content"), False

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    async def validate_credentials(self) -> bool:
        """List models to verify the API key without incurring inference cost."""
        if not self.is_available():
            return False
        try:
            await self._client.models.list()
            return True
        except openai.APIError:
            return False

    def get_provider_name(self) -> str:
        return self._provider_label

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
        await self._client.close()
