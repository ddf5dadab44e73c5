"""Cursor-paginated HTTP client for the issue-tracker search API.

Every request goes through a :class:`RequestThrottle` (minimum spacing
between request starts) and the shared :class:`~tracker_sync.retry.RetryPolicy`.
HTTP failures are mapped onto the :mod:`tracker_sync.errors` taxonomy so
the policy can decide what to retry:

* 429 → :class:`RateLimited` (``Retry-After`` honoured, capped)
* 5xx, timeouts, connection errors → :class:`TransientNetwork`
* 401 / 403 → :class:`AuthFailure`
* any other 4xx → :class:`SourceRequestError`
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from tracker_sync.config import FetchConfig
from tracker_sync.errors import (
    AuthFailure,
    RateLimited,
    SourceError,
    SourceRequestError,
    TransientNetwork,
)
from tracker_sync.retry import RetryPolicy, Sleep, exponential_backoff, retry_after_or

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Throttle
# ---------------------------------------------------------------------------


class RequestThrottle:
    """Enforce at least *interval* seconds between consecutive request starts.

    Callers ``await throttle.wait()`` before each request; concurrent callers
    are queued behind an :class:`asyncio.Lock` and each gets its own slot.
    """

    def __init__(
        self,
        interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._next_slot = 0.0

    async def wait(self) -> None:
        if self.interval <= 0:
            return
        async with self._lock:
            now = self._clock()
            delay = self._next_slot - now
            if delay > 0:
                await self._sleep(delay)
                now = self._next_slot
            self._next_slot = now + self.interval


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given as delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparsable Retry-After %r", value)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def raise_for_status(response: httpx.Response) -> None:
    """Raise the :mod:`tracker_sync.errors` exception matching *response*, if any."""
    status = response.status_code
    if status < 400:
        return
    where = f"{response.request.method} {response.request.url.path}"
    if status == 429:
        raise RateLimited(
            f"{where} rate limited",
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if status >= 500:
        raise TransientNetwork(f"{where} returned {status}")
    if status in (401, 403):
        raise AuthFailure(f"{where} returned {status}; check tracker credentials")
    raise SourceRequestError(f"{where} returned {status}: {response.text[:200]}", status_code=status)


def fetch_retry_policy(config: FetchConfig) -> RetryPolicy:
    """Retry policy for source requests, with separate limits per failure kind."""

    def _limit(exc: BaseException) -> int:
        if isinstance(exc, RateLimited):
            return config.rate_limit_max_retries + 1
        return config.transient_max_retries + 1

    return RetryPolicy(
        max_attempts=config.transient_max_retries + 1,
        backoff=retry_after_or(
            exponential_backoff(initial=1.0, factor=2.0, cap=config.backoff_cap_seconds, jitter=1.0),
            cap=config.max_retry_after_seconds,
        ),
        attempt_limit=_limit,
        name="tracker request",
    )


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class PaginatedFetcher:
    """Async client that walks every page of the search endpoint.

    Parameters
    ----------
    config:
        Connection, query and pacing parameters.
    transport:
        Optional ``httpx`` transport; tests pass an :class:`httpx.MockTransport`.
    throttle:
        Request spacer; defaults to one built from
        ``config.request_interval_seconds``.
    sleep:
        Coroutine used for retry back-off.

    Use as an async context manager so the underlying
    :class:`httpx.AsyncClient` is closed::

        async with PaginatedFetcher(cfg) as fetcher:
            async for raw in fetcher.fetch_all():
                ...
    """

    def __init__(
        self,
        config: FetchConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        throttle: RequestThrottle | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self._throttle = throttle or RequestThrottle(config.request_interval_seconds)
        self._sleep = sleep
        self._policy = fetch_retry_policy(config)
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            auth=httpx.BasicAuth(config.user_email, config.api_token.get_secret_value()),
            headers={"Accept": "application/json"},
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> PaginatedFetcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- requests -------------------------------------------------------------

    async def _request_once(self, path: str, params: dict[str, Any]) -> Any:
        await self._throttle.wait()
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise TransientNetwork(f"GET {path} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientNetwork(f"GET {path} failed: {exc}") from exc
        raise_for_status(response)
        try:
            return response.json()
        except ValueError as exc:
            raise SourceError(f"GET {path} returned a non-JSON body") from exc

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET *path* with throttling and retries; return the decoded JSON body."""
        return await self._policy.call(
            lambda: self._request_once(path, params or {}),
            sleep=self._sleep,
        )

    # -- public API -----------------------------------------------------------

    async def fetch_all(
        self,
        page_size: int | None = None,
        max_records: int | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield raw records page by page in source order.

        Stops on ``isLast``, on a page without ``nextCursor``, on an empty
        page, or once *max_records* records were yielded (``0`` = unlimited).
        """
        page_size = page_size or self.config.page_size
        limit = self.config.max_records if max_records is None else max_records
        cursor: str | None = None
        yielded = 0
        page_no = 0

        while True:
            params: dict[str, Any] = {
                "query": self.config.query,
                "pageSize": page_size,
                "fields": ",".join(self.config.fields),
            }
            if cursor:
                params["cursor"] = cursor

            page = await self.get_json(self.config.search_path, params)
            if not isinstance(page, dict):
                raise SourceError(f"search page is {type(page).__name__}, expected an object")
            records = page.get("records") or []
            page_no += 1
            logger.debug("Fetched page %d with %d records", page_no, len(records))

            for record in records:
                yield record
                yielded += 1
                if limit and yielded >= limit:
                    logger.info("Reached max_records=%d", limit)
                    return

            cursor = page.get("nextCursor")
            if page.get("isLast") or not cursor or not records:
                logger.info("Fetched %d records in %d pages", yielded, page_no)
                return

    async def fetch_comments(self, record_id: str) -> list[dict[str, Any]]:
        """Return the full comment list of one record."""
        body = await self.get_json(f"{self.config.record_path}/{record_id}/comments")
        if isinstance(body, dict):
            body = body.get("comments", [])
        return body if isinstance(body, list) else []

    async def fetch_history(self, record_id: str) -> dict[str, Any]:
        """Return one record with its change history expanded."""
        body = await self.get_json(
            f"{self.config.record_path}/{record_id}", {"expand": "history"}
        )
        return body if isinstance(body, dict) else {}
