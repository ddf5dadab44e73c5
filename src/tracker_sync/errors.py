"""Exception taxonomy for a sync run.

Per-record problems (:class:`MalformedRecord`) are counted and skipped by
the orchestrator.  Everything else aborts the run and propagates to the
caller, which is expected to alert and reschedule.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by the sync pipeline."""


# -- source API --------------------------------------------------------------


class SourceError(SyncError):
    """A request to the source API failed."""


class RateLimited(SourceError):
    """HTTP 429.  ``retry_after`` is the server hint in seconds, if any."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientNetwork(SourceError):
    """Connection error, timeout or 5xx response."""


class AuthFailure(SourceError):
    """HTTP 401 / 403.  Never retried."""


class SourceRequestError(SourceError):
    """Any other 4xx response.  Never retried."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


# -- per-record --------------------------------------------------------------


class MalformedRecord(SyncError):
    """A raw record cannot be turned into a canonical document."""

    def __init__(self, message: str, record_ref: str = "unknown") -> None:
        super().__init__(message)
        self.record_ref = record_ref


# -- infrastructure ----------------------------------------------------------


class EmbeddingFailed(SyncError):
    """Embedding generation failed after all retries."""


class StoreWriteFailed(SyncError):
    """A write to the vector store or the job audit collection failed."""


def is_retryable(exc: BaseException) -> bool:
    """Return ``True`` for source errors that are worth another attempt."""
    return isinstance(exc, (RateLimited, TransientNetwork))
