"""Anthropic completion provider adapter.

Wraps the ``anthropic`` async client to implement :class:`ILLMProvider`.

Differences from the OpenAI adapter:
    - The system prompt is a top-level parameter, not a message.
    - Response content is a list of blocks; only text blocks are joined.
    - The stream uses typed events: text arrives in ``content_block_delta``
      events and ``message_stop`` is the completion marker (there is no
      ``[DONE]`` sentinel).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from typing import Any

import anthropic
import httpx
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

_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
_API_VERSION = "2023-06-01"


class AnthropicLLMProvider(ILLMProvider):
    """Completion provider backed by the Anthropic Messages API."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._api_key = settings.anthropic_api_key
        self._client = anthropic.AsyncAnthropic(
            api_key=self._api_key or "missing",
            timeout=settings.completion_timeout_s,
            max_retries=0,
        )
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.completion_timeout_s, connect=5.0)
        )
        self._model = settings.anthropic_model

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
        """Generate a text completion via the Anthropic Messages API.

        *model* overrides are ignored unless they name a Claude model, since
        the shared settings carry OpenRouter-style ids for other backends.
        """
        model_id = model if model and model.startswith("claude") else self._model
        try:
            response = await self._client.messages.create(
                model=model_id,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=temperature,
            )
        except anthropic.APIStatusError as exc:
            raise CompletionError(
                message=f"Anthropic returned HTTP {exc.status_code}: {exc.message}",
                kind=classify_completion_status(exc.status_code),
                provider_name=self.get_provider_name(),
                status_code=exc.status_code,
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise CompletionError(
                message=f"Anthropic unreachable: {exc}",
                kind=ErrorKind.COMPLETION_SERVICE_UNAVAILABLE,
                provider_name=self.get_provider_name(),
            ) from exc
        except anthropic.APIError as exc:
            raise CompletionError(
                message=f"Anthropic API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        text_blocks = [block.text for block in response.content if block.type == "text"]
        if not text_blocks:
            raise CompletionError(
                message="Anthropic returned no text content",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "anthropic_completion",
            model=model_id,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return "\n".join(text_blocks)

    def open_stream(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        model: str | None = None,
    ) -> AbstractAsyncContextManager[AsyncIterator[bytes]]:
        body = {
            "model": model if model and model.startswith("claude") else self._model,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": True,
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
            "accept": "text/event-stream",
        }
        return open_sse_stream(
            self._http_client, _MESSAGES_URL, headers, body, self.get_provider_name()
        )

    def extract_stream_delta(self, payload: dict[str, Any]) -> tuple[str | None, bool]:
        event_type = payload["type"]
        if event_type == "content_block_delta":
            delta = payload["delta"]
            if delta.get("type") == "text_delta":
                return delta["text"], False
            return None, False
        if event_type == "message_stop":
            return None, True
        if event_type == "error":
            raise StreamError(
                message=f"Anthropic reported a stream error: {payload['error'].get('message')}",
                provider_name=self.get_provider_name(),
            )
        # message_start, content_block_start/stop, message_delta, ping
        return None, False

    def is_available(self) -> bool:
        """Return ``True`` if an Anthropic API key is configured."""
        return bool(self._api_key)

    async def validate_credentials(self) -> bool:
        """Try a minimal completion to verify the API key works."""
        if not self.is_available():
            return False
        try:
            await self._client.messages.create(
                model=self._model,
                max_tokens=10,
                messages=[{"role": "user", "content": "hi"}],
            )
            return True
        except anthropic.APIError:
            return False

    def get_provider_name(self) -> str:
        return "anthropic"

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
        await self._client.close()
