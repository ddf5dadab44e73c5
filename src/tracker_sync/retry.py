"""One parameterised retry policy shared by the fetcher and the embedding pipeline.

The policy is a small value object (attempt limits, backoff function,
retryable predicate) executed through tenacity's ``AsyncRetrying`` so the
same machinery handles HTTP rate limits and embedding-API hiccups.

Example
-------
    policy = RetryPolicy(
        max_attempts=3,
        backoff=exponential_backoff(initial=1.0, cap=30.0),
        retryable=is_retryable,
    )
    data = await policy.call(lambda: client.get(url))
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from tracker_sync.errors import RateLimited, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# attempt number (1-based, the attempt that just failed) + its exception → seconds
Backoff = Callable[[int, "BaseException | None"], float]
Sleep = Callable[[float], Awaitable[object]]


def exponential_backoff(
    initial: float = 1.0,
    factor: float = 2.0,
    cap: float = 30.0,
    jitter: float = 0.0,
) -> Backoff:
    """Delay ``initial * factor**(attempt-1)`` plus up to *jitter* seconds, capped at *cap*."""

    def _backoff(attempt: int, exc: BaseException | None) -> float:
        delay = initial * factor ** max(attempt - 1, 0)
        if jitter:
            delay += random.uniform(0, jitter)
        return min(delay, cap)

    return _backoff


def retry_after_or(fallback: Backoff, cap: float = 120.0) -> Backoff:
    """Honour :attr:`RateLimited.retry_after` when present, else defer to *fallback*."""

    def _backoff(attempt: int, exc: BaseException | None) -> float:
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            return min(max(exc.retry_after, 0.0), cap)
        return fallback(attempt, exc)

    return _backoff


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration.

    Attributes
    ----------
    max_attempts:
        Total attempts (first call included) when *attempt_limit* is unset.
    backoff:
        Delay function, see :data:`Backoff`.
    retryable:
        Predicate deciding whether an exception is worth another attempt.
        Non-retryable exceptions propagate immediately.
    attempt_limit:
        Optional per-exception override of *max_attempts*, e.g. more
        attempts for rate limits than for network errors.
    name:
        Label used in log lines.
    """

    max_attempts: int = 3
    backoff: Backoff = field(default_factory=exponential_backoff)
    retryable: Callable[[BaseException], bool] = is_retryable
    attempt_limit: Callable[[BaseException], int] | None = None
    name: str = "operation"

    def limit_for(self, exc: BaseException | None) -> int:
        if exc is not None and self.attempt_limit is not None:
            return self.attempt_limit(exc)
        return self.max_attempts

    # -- tenacity hooks -------------------------------------------------------

    def _stop(self, retry_state: RetryCallState) -> bool:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        return retry_state.attempt_number >= self.limit_for(exc)

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        return self.backoff(retry_state.attempt_number, exc)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "%s failed (attempt %d/%d): %s, retrying in %.1fs",
            self.name,
            retry_state.attempt_number,
            self.limit_for(exc),
            exc,
            delay,
        )

    # -- public API -----------------------------------------------------------

    async def call(self, fn: Callable[[], Awaitable[T]], *, sleep: Sleep = asyncio.sleep) -> T:
        """Await ``fn()`` until it succeeds, a non-retryable error occurs, or attempts run out.

        The last exception is re-raised unchanged when attempts are exhausted.
        """
        retrying = AsyncRetrying(
            stop=self._stop,
            wait=self._wait,
            retry=retry_if_exception(self.retryable),
            before_sleep=self._before_sleep,
            sleep=sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await fn()
        return result
