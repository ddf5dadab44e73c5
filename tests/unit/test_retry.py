"""Unit tests for the shared retry policy and back-off helpers."""

from __future__ import annotations

import pytest

from tracker_sync.errors import AuthFailure, RateLimited, TransientNetwork
from tracker_sync.retry import RetryPolicy, exponential_backoff, retry_after_or


class _Flaky:
    """Callable that raises the queued exceptions, then returns ``"ok"``."""

    def __init__(self, *errors: BaseException) -> None:
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestBackoff:
    def test_exponential_doubles_and_caps(self) -> None:
        backoff = exponential_backoff(initial=1.0, factor=2.0, cap=5.0)
        assert [backoff(n, None) for n in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_stays_in_range(self) -> None:
        backoff = exponential_backoff(initial=1.0, cap=30.0, jitter=0.5)
        for _ in range(20):
            assert 1.0 <= backoff(1, None) <= 1.5

    def test_retry_after_wins_over_fallback(self) -> None:
        backoff = retry_after_or(exponential_backoff(initial=10.0), cap=60.0)
        assert backoff(1, RateLimited("429", retry_after=2.0)) == 2.0
        assert backoff(1, RateLimited("429", retry_after=500.0)) == 60.0
        assert backoff(1, RateLimited("429")) == 10.0
        assert backoff(1, TransientNetwork("503")) == 10.0


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_succeeds_after_retryable_errors(self, recording_sleep) -> None:
        fn = _Flaky(TransientNetwork("a"), TransientNetwork("b"))
        policy = RetryPolicy(max_attempts=3, backoff=exponential_backoff(initial=1.0))
        assert await policy.call(fn, sleep=recording_sleep) == "ok"
        assert fn.calls == 3
        assert recording_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_reraises_last_error_when_exhausted(self, recording_sleep) -> None:
        fn = _Flaky(*(TransientNetwork(str(i)) for i in range(5)))
        policy = RetryPolicy(max_attempts=2)
        with pytest.raises(TransientNetwork, match="1"):
            await policy.call(fn, sleep=recording_sleep)
        assert fn.calls == 2

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self, recording_sleep) -> None:
        fn = _Flaky(AuthFailure("401"))
        with pytest.raises(AuthFailure):
            await RetryPolicy(max_attempts=5).call(fn, sleep=recording_sleep)
        assert fn.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_attempt_limit_per_exception_kind(self, recording_sleep) -> None:
        policy = RetryPolicy(
            max_attempts=2,
            attempt_limit=lambda exc: 4 if isinstance(exc, RateLimited) else 2,
        )
        rate_limited = _Flaky(*(RateLimited("429") for _ in range(3)))
        assert await policy.call(rate_limited, sleep=recording_sleep) == "ok"
        assert rate_limited.calls == 4

        transient = _Flaky(*(TransientNetwork("503") for _ in range(3)))
        with pytest.raises(TransientNetwork):
            await policy.call(transient, sleep=recording_sleep)
        assert transient.calls == 2
