"""httpx transport for server-sent-event completion streams.

Both remote completion providers stream over plain ``httpx`` rather than
their SDK stream helpers: the consumer needs the raw ``data:`` lines and
must control when the connection is released.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
import structlog

from evidence_pipeline.utils.errors import StreamError

logger = structlog.get_logger(logger_name=__name__)

_ERROR_DETAIL_CHARS = 300


@asynccontextmanager
async def open_sse_stream(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    body: dict[str, Any],
    provider_name: str,
) -> AsyncIterator[AsyncIterator[bytes]]:
    """POST *body* to *url* and yield an iterator over the raw response bytes.

    Raises
    ------
    StreamError
        On connection failure or a non-2xx status (raised on entry), and
        on read failures while iterating.
    """
    async with AsyncExitStack() as stack:
        try:
            response = await stack.enter_async_context(
                client.stream("POST", url, headers=headers, json=body)
            )
        except httpx.HTTPError as exc:
            raise StreamError(
                message=f"Could not open completion stream: {exc}",
                provider_name=provider_name,
            ) from exc

        if not response.is_success:
            detail = (await response.aread()).decode("utf-8", errors="replace")
            raise StreamError(
                message=(
                    f"Completion stream returned HTTP {response.status_code}: "
                    f"{detail[:_ERROR_DETAIL_CHARS]}"
                ),
                provider_name=provider_name,
                status_code=response.status_code,
            )

        logger.debug("sse_stream_opened", provider=provider_name, url=url)
        yield _iter_body(response, provider_name)


async def _iter_body(response: httpx.Response, provider_name: str) -> AsyncIterator[bytes]:
    try:
        async for raw in response.aiter_bytes():
            yield raw
    except httpx.HTTPError as exc:
        raise StreamError(
            message=f"Completion stream read failed: {exc}",
            provider_name=provider_name,
        ) from exc
