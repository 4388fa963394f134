"""Bounded-concurrency helpers for running independent pipeline jobs.

Independent sources can be ingested at the same time; they share nothing
but the document store.  :func:`throttled_gather` caps how many run at once
so a bulk import does not hit the embedding backend with every source in
parallel.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

import structlog

from evidence_pipeline.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    limit: int,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most *limit* at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    limit:
        Maximum number of awaitables running simultaneously.  The
        semaphore is created per call, so it is always bound to the
        running event loop.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    results = await asyncio.gather(
        *(_wrapped(c) for c in coros), return_exceptions=return_exceptions
    )
    failures = sum(1 for r in results if isinstance(r, BaseException))
    if failures:
        _logger.warning("throttled_gather_failures", failed=failures, total=len(results))
    return results
