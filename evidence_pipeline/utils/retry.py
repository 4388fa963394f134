"""Shared exponential-backoff executor for every external call.

The embedding client, the completion client and the ingestion
orchestrator's document-store batch writes all go through
:func:`with_retry`, so there is exactly one backoff policy in the codebase.

Retry decisions are made on :attr:`PipelineError.kind`, never on exception
class or message text.  Any exception that is not a :class:`PipelineError`
is wrapped as ``internal-error`` (non-retryable by default) with the
original exception chained as ``__cause__``.

The sleep between attempts is an ``asyncio`` suspension point: cancelling
the awaiting task raises :class:`asyncio.CancelledError` out of the sleep
and no further attempts are made.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from evidence_pipeline.utils.errors import RETRYABLE_KINDS, ErrorKind, PipelineError
from evidence_pipeline.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for one class of external call.

    Delays are in seconds.  ``max_retries`` counts retries, so the
    operation runs at most ``max_retries + 1`` times.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 15.0
    backoff_multiplier: float = 2.0
    retryable_kinds: Collection[ErrorKind] = RETRYABLE_KINDS

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before retrying after zero-based *attempt* failed."""
        return min(self.base_delay * self.backoff_multiplier**attempt, self.max_delay)

    def is_retryable(self, error: PipelineError) -> bool:
        return error.kind in self.retryable_kinds


@dataclass
class RetryContext:
    """Transient per-call state: attempt counter, correlation ids, failures seen.

    ``failures`` records the kind of every transient failure that was
    retried, so callers can report e.g. that one ``embedding-quota-exceeded``
    happened before the call succeeded.
    """

    operation: str
    source_id: str | None = None
    project_id: str | None = None
    request_id: str | None = None
    attempt: int = 0
    max_retries: int = 0
    failures: list[ErrorKind] = field(default_factory=list)

    def correlation(self) -> dict[str, Any]:
        ids = {
            "operation": self.operation,
            "source_id": self.source_id,
            "project_id": self.project_id,
            "request_id": self.request_id,
        }
        return {k: v for k, v in ids.items() if v is not None}


async def with_retry(
    operation: Callable[[], Awaitable[_T]],
    policy: RetryPolicy,
    context: RetryContext | None = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> _T:
    """Run *operation* with exponential backoff.

    Parameters
    ----------
    operation:
        Zero-argument coroutine factory.  A fresh coroutine is created for
        every attempt.
    policy:
        Backoff parameters and the set of retryable error kinds.
    context:
        Optional correlation context; updated in place with the attempt
        counter and any transient failures.
    sleep:
        Awaitable sleep function (injectable for tests).

    Returns
    -------
    _T
        The first successful result.

    Raises
    ------
    PipelineError
        The last error, once it is non-retryable or retries are exhausted.
        Its ``context`` carries ``attempt`` and ``max_retries``.
    """
    ctx = context or RetryContext(operation=getattr(operation, "__name__", "operation"))
    ctx.max_retries = policy.max_retries

    for attempt in range(policy.max_retries + 1):
        ctx.attempt = attempt
        try:
            return await operation()
        except PipelineError as exc:
            error = exc
            cause: BaseException | None = None
        except Exception as exc:  # noqa: BLE001 (wrapped and re-raised below)
            error = PipelineError(
                message=f"{ctx.operation} failed: {exc}",
                kind=ErrorKind.INTERNAL_ERROR,
            )
            cause = exc

        error.with_context(attempt=attempt + 1, max_retries=policy.max_retries, **ctx.correlation())
        last_attempt = attempt >= policy.max_retries

        if last_attempt or not policy.is_retryable(error):
            _logger.warning(
                "retry_giving_up",
                error_kind=error.kind.value,
                attempt=attempt + 1,
                max_retries=policy.max_retries,
                retryable=policy.is_retryable(error),
                error=str(error),
                **ctx.correlation(),
            )
            if cause is not None:
                raise error from cause
            raise error

        ctx.failures.append(error.kind)
        delay = policy.delay_for(attempt)
        _logger.info(
            "retry_scheduled",
            error_kind=error.kind.value,
            attempt=attempt + 1,
            max_retries=policy.max_retries,
            delay_s=delay,
            **ctx.correlation(),
        )
        await sleep(delay)

    # The loop always returns or raises; this guards a negative max_retries.
    raise PipelineError(
        message=f"{ctx.operation} was never attempted (max_retries={policy.max_retries})",
        kind=ErrorKind.CONFIGURATION_ERROR,
    )
