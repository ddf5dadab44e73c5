"""Write vector records with either a full rebuild or a per-document diff upsert."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from tracker_sync.config import UpsertConfig
from tracker_sync.errors import StoreWriteFailed
from tracker_sync.models import SyncStage, VectorRecord
from tracker_sync.observability import NullObserver, SyncObserver
from tracker_sync.store.base import VectorStoreBase

logger = logging.getLogger(__name__)


def _batches(records: Sequence[VectorRecord], size: int) -> list[Sequence[VectorRecord]]:
    return [records[i : i + size] for i in range(0, len(records), size)]


def group_by_document(records: Sequence[VectorRecord]) -> dict[str, list[VectorRecord]]:
    """Group records by ``source_document_id`` in first-seen order, chunks in index order."""
    groups: dict[str, list[VectorRecord]] = {}
    for record in records:
        groups.setdefault(record.source_document_id, []).append(record)
    for rows in groups.values():
        rows.sort(key=lambda r: r.chunk_index or 0)
    return groups


class VectorStoreUpsertEngine:
    """Apply vector records to a :class:`VectorStoreBase`.

    Atomicity is per document only (delete, then insert).  A run that dies
    half-way is repaired by the next run, which classifies the unfinished
    documents as updated again.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        config: UpsertConfig | None = None,
        *,
        observer: SyncObserver | None = None,
    ) -> None:
        self.store = store
        self.config = config or UpsertConfig()
        self.observer = observer or NullObserver()

    async def bootstrap_rebuild(self, records: Sequence[VectorRecord]) -> int:
        """Drop and recreate the table, then bulk-insert *records*.  Returns rows written."""
        ordered = [r for rows in group_by_document(records).values() for r in rows]
        try:
            await self.store.recreate()
            written = 0
            for batch in _batches(ordered, self.config.rebuild_batch_size):
                await self.store.add(batch)
                written += len(batch)
                self.observer.progress(SyncStage.UPSERTING, written, len(ordered))
        except Exception as exc:
            raise StoreWriteFailed(f"bootstrap rebuild of {self.store.collection_name!r} failed: {exc}") from exc
        logger.info("Rebuilt %r with %d rows", self.store.collection_name, written)
        return written

    async def diff_upsert(
        self,
        records: Sequence[VectorRecord],
        document_ids: Sequence[str] = (),
    ) -> int:
        """Replace the rows of every document present in *records*.  Returns rows written.

        All existing rows of a document are deleted before its new rows are
        inserted, so a document that shrank from 5 chunks to 3 keeps exactly 3.
        Ids in *document_ids* without any record only have their rows deleted.
        """
        groups = group_by_document(records)
        for document_id in document_ids:
            groups.setdefault(document_id, [])
        written = 0
        for done, (document_id, rows) in enumerate(groups.items(), start=1):
            try:
                await self.store.delete_where_source(document_id)
                for batch in _batches(rows, self.config.upsert_batch_size):
                    await self.store.add(batch)
                    written += len(batch)
            except Exception as exc:
                raise StoreWriteFailed(f"upsert of document {document_id!r} failed: {exc}") from exc
            self.observer.progress(SyncStage.UPSERTING, done, len(groups))
        logger.info("Upserted %d rows for %d documents", written, len(groups))
        return written
