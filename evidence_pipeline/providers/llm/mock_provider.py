"""Prompt-echo completion provider for local development without API keys.

``complete`` returns the user prompt behind a notice line.  Braces in the
echoed prompt become parentheses, so an echoed JSON template never parses
as a model answer and summaries fall through to the deterministic
fallback.  ``open_stream`` emits the prompt as OpenAI-style SSE frames,
one word per frame, followed by the ``[DONE]`` sentinel, so the full
streaming path can run offline.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import structlog

from evidence_pipeline.interfaces.llm_provider import ILLMProvider

logger = structlog.get_logger(logger_name=__name__)

ECHO_NOTICE = "[No completion API key configured; returning prompt echo for local testing.]"
_NO_BRACES = str.maketrans("{}", "()")


class MockLLMProvider(ILLMProvider):
    """Completion provider that echoes its prompt."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        model: str | None = None,
    ) -> str:
        logger.debug("mock_completion", prompt_chars=len(user_prompt))
        return f"{ECHO_NOTICE}\n\n{user_prompt.translate(_NO_BRACES)}"

    def open_stream(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        model: str | None = None,
    ) -> AbstractAsyncContextManager[AsyncIterator[bytes]]:
        return self._stream(f"{ECHO_NOTICE} {user_prompt}")

    @asynccontextmanager
    async def _stream(self, text: str) -> AsyncIterator[AsyncIterator[bytes]]:
        async def frames() -> AsyncIterator[bytes]:
            for word in text.split(" "):
                payload = {"choices": [{"delta": {"content": f"{word} "}}]}
                yield f"data: {json.dumps(payload)}\n\n".encode()
            yield b"data: [DONE]\n\n"

        yield frames()

    def extract_stream_delta(self, payload: dict[str, Any]) -> tuple[str | None, bool]:
        return payload["choices"][0]["delta"].get("content"), False

    def get_provider_name(self) -> str:
        return "mock_llm"

    def is_available(self) -> bool:
        return True

    async def validate_credentials(self) -> bool:
        return True
