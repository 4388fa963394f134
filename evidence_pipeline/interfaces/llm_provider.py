"""Abstract base class for completion (LLM) service providers.

Defines the contract for single-shot and streaming text generation.
Implementations wrap an OpenAI-compatible chat endpoint (OpenAI,
OpenRouter), the Anthropic Messages API, or a local prompt-echo mock.

Streaming is split in two on purpose: the provider only opens the raw
server-sent-event byte stream and knows how to read its own delta and
completion-marker format (:meth:`ILLMProvider.extract_stream_delta`); the
:class:`~evidence_pipeline.services.streaming.consumer.StreamingCompletionConsumer`
owns line buffering, the event state machine and reader cleanup.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from typing import Any


# Concrete implementations: OpenAILLMProvider, AnthropicLLMProvider, MockLLMProvider
# Located in: evidence_pipeline/providers/llm/
class ILLMProvider(ABC):
    """Contract for completion services used for summaries and drafting."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        model: str | None = None,
    ) -> str:
        """Generate a text completion from the model.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        user_prompt:
            The user-facing prompt containing the actual request or data.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.
        model:
            Override the provider's default model for this call.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        evidence_pipeline.utils.errors.CompletionError
            If the API call fails or returns an empty response.
        """

    @abstractmethod
    def open_stream(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        model: str | None = None,
    ) -> AbstractAsyncContextManager[AsyncIterator[bytes]]:
        """Open a streaming completion and yield its raw response body.

        Usage::

            async with provider.open_stream(system, user) as body:
                async for raw in body:
                    ...

        Leaving the ``async with`` block releases the HTTP connection on
        every exit path.

        Raises
        ------
        evidence_pipeline.utils.errors.StreamError
            On entry, for a non-2xx response or a connection failure;
            during iteration, for a read failure.
        """

    @abstractmethod
    def extract_stream_delta(self, payload: dict[str, Any]) -> tuple[str | None, bool]:
        """Interpret one parsed ``data:`` JSON payload from the stream.

        Returns
        -------
        tuple[str | None, bool]
            The text delta (``None`` when the payload carries no text) and
            whether this payload is the provider's completion marker.

        Raises
        ------
        KeyError, TypeError, IndexError
            When the payload does not have the provider's delta shape; the
            consumer logs and skips such payloads.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Verifies that credentials are present without making a call.
        """

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Perform a lightweight API call to confirm credentials are valid."""
