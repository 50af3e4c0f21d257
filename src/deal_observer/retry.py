"""Bounded retries for idempotent network calls.

``with_retries`` runs an async operation under a tenacity policy and hands
back a ``RetryOutcome`` instead of raising, so callers decide how a
transient failure (budget exhausted) differs from a terminal one (first
non-retryable error).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

log = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a retried operation: a value or the last error."""

    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0
    transient: bool = False  # error was retryable and the budget ran out

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def is_transient_http_error(exc: BaseException) -> bool:
    """Connection problems, timeouts, 429 and 5xx are worth another try."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return isinstance(exc, httpx.TransportError)


async def with_retries(
    attempts: int,
    is_retryable: Callable[[BaseException], bool],
    op: Callable[[], Awaitable[T]],
    *,
    backoff: float = 0.5,
    max_backoff: float = 10.0,
) -> RetryOutcome[T]:
    """Run ``op`` up to ``attempts`` times while failures are retryable."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=backoff, max=max_backoff),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(log, logging.WARNING),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                value = await op()
    except Exception as exc:
        made = retrying.statistics.get("attempt_number", 1)
        return RetryOutcome(error=exc, attempts=made, transient=is_retryable(exc))
    return RetryOutcome(value=value, attempts=retrying.statistics.get("attempt_number", 1))
