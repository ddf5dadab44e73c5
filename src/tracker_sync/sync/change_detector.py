"""Classify fetched documents against their persisted snapshots."""

from __future__ import annotations

import logging
from datetime import timedelta

from tracker_sync.models import CanonicalDocument, ChangeKind, PersistedSnapshot
from tracker_sync.store.base import REQUIRED_VECTOR_FIELDS, VectorStoreBase

logger = logging.getLogger(__name__)


def classify(
    document: CanonicalDocument,
    persisted: PersistedSnapshot | None,
    tolerance_seconds: float = 1.0,
) -> ChangeKind:
    """Return how *document* differs from *persisted*.

    * ``ADDED``: no snapshot.
    * ``UPDATED``: either timestamp is unknown, or the document is newer
      than the snapshot by more than *tolerance_seconds*.
    * ``UNCHANGED``: otherwise, including a document older than its snapshot.
    """
    if persisted is None:
        return ChangeKind.ADDED
    if persisted.updated_at is None or document.updated_at is None:
        return ChangeKind.UPDATED
    if document.updated_at - persisted.updated_at > timedelta(seconds=tolerance_seconds):
        return ChangeKind.UPDATED
    return ChangeKind.UNCHANGED


class ChangeDetector:
    """:func:`classify` bound to a tolerance, plus the vector-store schema probe.

    Parameters
    ----------
    vector_store:
        Table probed by :meth:`is_store_empty_or_stale_schema`.
    tolerance_seconds:
        Timestamp deltas up to this value count as unchanged.
    required_fields:
        Metadata keys a sampled row must carry for the schema to be current.
    """

    def __init__(
        self,
        vector_store: VectorStoreBase,
        tolerance_seconds: float = 1.0,
        required_fields: tuple[str, ...] = REQUIRED_VECTOR_FIELDS,
    ) -> None:
        self.vector_store = vector_store
        self.tolerance_seconds = tolerance_seconds
        self.required_fields = required_fields

    def classify(self, document: CanonicalDocument, persisted: PersistedSnapshot | None) -> ChangeKind:
        return classify(document, persisted, self.tolerance_seconds)

    async def is_store_empty_or_stale_schema(self) -> bool:
        """``True`` when the table is empty or a sampled row lacks a required field."""
        if await self.vector_store.count() == 0:
            logger.info("Vector store %r is empty", self.vector_store.collection_name)
            return True
        sample = await self.vector_store.sample_metadata()
        missing = [f for f in self.required_fields if sample is None or f not in sample]
        if missing:
            logger.warning(
                "Vector store %r has a stale schema (missing %s)",
                self.vector_store.collection_name,
                ", ".join(missing),
            )
            return True
        return False
