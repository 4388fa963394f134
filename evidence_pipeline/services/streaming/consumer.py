"""Consumer for streaming completions.

Turns a provider's raw server-sent-event byte stream into ordered
:class:`TokenEvent` objects followed by exactly one terminal event.

State machine (``consumer.state``)::

    idle --stream()--> streaming --+--> completed   ([DONE], provider marker,
                                   |                  or end of body)
                                   +--> errored     (transport failure)

Rules:

* Bytes are decoded with an incremental UTF-8 decoder, so multi-byte
  characters split across network reads are reassembled.
* Partial lines are buffered until their newline arrives; only ``data:``
  lines are interpreted.
* A malformed individual delta is logged and skipped; the stream goes on.
* A transport failure yields a single :class:`ErrorEvent`.  Nothing is
  yielded after a terminal event.
* The provider stream is opened inside ``async with``, so the HTTP reader
  is released however iteration ends, including ``aclose()`` by the
  caller and task cancellation.
"""

from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any

import structlog

from evidence_pipeline.interfaces.llm_provider import ILLMProvider
from evidence_pipeline.models.stream import DoneEvent, ErrorEvent, TokenEvent
from evidence_pipeline.utils.errors import PipelineError, StreamError

logger = structlog.get_logger(logger_name=__name__)

DONE_SENTINEL = "[DONE]"
_DATA_PREFIX = "data:"

Event = TokenEvent | DoneEvent | ErrorEvent


class StreamState(str, Enum):  # noqa: UP042
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"


def encode_sse(event: Event) -> str:
    """Serialize *event* as one server-sent-event frame."""
    return f"data: {event.model_dump_json()}\n\n"


class StreamingCompletionConsumer:
    """Single-use consumer of one streaming completion.

    Parameters
    ----------
    provider:
        Completion provider that opens the raw stream and interprets its
        delta payloads.
    """

    def __init__(self, provider: ILLMProvider) -> None:
        self._provider = provider
        self._state = StreamState.IDLE
        self._tokens = 0

    @property
    def state(self) -> StreamState:
        return self._state

    async def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        model: str | None = None,
    ) -> AsyncIterator[Event]:
        """Yield token events, then exactly one ``done`` or ``error`` event.

        Raises
        ------
        RuntimeError
            If the consumer has already been used.
        """
        if self._state != StreamState.IDLE:
            raise RuntimeError(f"Stream consumer already used (state={self._state.value})")
        self._state = StreamState.STREAMING
        provider_name = self._provider.get_provider_name()
        logger.info("stream_started", provider=provider_name)

        try:
            async with self._provider.open_stream(
                system_prompt,
                user_prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                model=model,
            ) as body:
                if body is None:
                    raise StreamError(
                        message="Completion stream has no response body",
                        provider_name=provider_name,
                    )
                decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
                buffer = ""
                async for raw in body:
                    buffer += decoder.decode(raw)
                    *lines, buffer = buffer.split("\n")
                    for line in lines:
                        token, finished = self._handle_line(line)
                        if token is not None:
                            yield token
                        if finished:
                            yield self._complete(reason="marker")
                            return

                # Flush whatever the body left without a trailing newline.
                buffer += decoder.decode(b"", final=True)
                for line in buffer.split("\n"):
                    token, finished = self._handle_line(line)
                    if token is not None:
                        yield token
                    if finished:
                        yield self._complete(reason="marker")
                        return
                yield self._complete(reason="end_of_body")
        except PipelineError as exc:
            if self._state == StreamState.COMPLETED:
                # Terminal event already sent; release failures are only logged.
                logger.warning("stream_release_failed", provider=provider_name, error=str(exc))
                return
            self._state = StreamState.ERRORED
            logger.warning(
                "stream_errored",
                provider=provider_name,
                error_kind=exc.kind.value,
                error=str(exc),
                tokens=self._tokens,
            )
            yield ErrorEvent(message=exc.message)
            return
        finally:
            if self._state == StreamState.STREAMING:
                # Closed or cancelled by the caller before a terminal event.
                self._state = StreamState.ERRORED
                logger.info("stream_abandoned", provider=provider_name, tokens=self._tokens)

    async def collect(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        model: str | None = None,
    ) -> str:
        """Drain the stream and return the full text.

        Raises
        ------
        StreamError
            If the stream terminated with an error event.
        """
        parts: list[str] = []
        async for event in self.stream(
            system_prompt, user_prompt, temperature=temperature, max_tokens=max_tokens, model=model
        ):
            if isinstance(event, TokenEvent):
                parts.append(event.content)
            elif isinstance(event, ErrorEvent):
                raise StreamError(
                    message=event.message, provider_name=self._provider.get_provider_name()
                )
        return "".join(parts)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _complete(self, reason: str) -> DoneEvent:
        self._state = StreamState.COMPLETED
        logger.info(
            "stream_completed",
            provider=self._provider.get_provider_name(),
            reason=reason,
            tokens=self._tokens,
        )
        return DoneEvent()

    def _handle_line(self, line: str) -> tuple[TokenEvent | None, bool]:
        """Interpret one SSE line; returns the token (if any) and whether the stream is done."""
        line = line.rstrip("\r")
        if not line.startswith(_DATA_PREFIX):
            # Blank separators, ":" comments and "event:" lines carry no deltas.
            return None, False
        data = line[len(_DATA_PREFIX) :].strip()
        if not data:
            return None, False
        if data == DONE_SENTINEL:
            return None, True

        try:
            payload: Any = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("stream_delta_unparseable", preview=data[:120])
            return None, False
        if not isinstance(payload, dict):
            logger.warning("stream_delta_not_object", preview=data[:120])
            return None, False

        try:
            content, finished = self._provider.extract_stream_delta(payload)
        except (KeyError, TypeError, IndexError, AttributeError) as exc:
            logger.warning("stream_delta_malformed", error=repr(exc), preview=data[:120])
            return None, False

        token = None
        if content:
            self._tokens += 1
            token = TokenEvent(content=content)
        return token, finished
