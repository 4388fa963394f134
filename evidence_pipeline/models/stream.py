"""Streaming completion events.

A stream yields any number of :class:`TokenEvent` followed by exactly one
terminal event, either :class:`DoneEvent` or :class:`ErrorEvent`.
``StreamEvent`` is the tagged union, discriminated on ``type``, so events
round-trip through JSON (e.g. server-sent events) without ambiguity.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class TokenEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["token"] = "token"
    content: str


class DoneEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["done"] = "done"


class ErrorEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["error"] = "error"
    message: str


StreamEvent = Annotated[Union[TokenEvent, DoneEvent, ErrorEvent], Field(discriminator="type")]  # noqa: UP007

stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def is_terminal(event: TokenEvent | DoneEvent | ErrorEvent) -> bool:
    return event.type != "token"
