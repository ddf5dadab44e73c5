"""One end-to-end sync pass as a linear state machine.

::

    FETCHING → NORMALIZING → DIFFING → CHUNKING+EMBEDDING → UPSERTING
             → PERSISTING_CANONICAL → DONE            (any error → FAILED)

Each stage is awaited to completion before the next one starts.  Vector
rows are written before canonical documents are persisted, so a run that
dies in between leaves the documents classified as updated next time and
re-running is always safe.  A run that has to rebuild the vector store
fetches every record regardless of ``max_records``; otherwise records
outside the cap would keep their snapshots but lose their rows.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from tracker_sync.errors import AuthFailure, MalformedRecord, SourceError, StoreWriteFailed
from tracker_sync.ingestion.chunker import SemanticChunker
from tracker_sync.ingestion.embedder import EmbeddingBatchPipeline
from tracker_sync.ingestion.normalizer import Normalizer, apply_comments, apply_history
from tracker_sync.models import CanonicalDocument, ChangeKind, SyncJobRecord, SyncStage, SyncTotals
from tracker_sync.observability import LoggingObserver, SyncObserver
from tracker_sync.store.base import DocumentStoreBase
from tracker_sync.store.upsert import VectorStoreUpsertEngine
from tracker_sync.sync.change_detector import ChangeDetector

if TYPE_CHECKING:
    from tracker_sync.config import Settings, SyncConfig
    from tracker_sync.ingestion.fetcher import PaginatedFetcher

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Compose fetcher, normalizer, detector, chunker, embedder and stores.

    Parameters
    ----------
    config:
        Project key, page size, record cap, tolerance and batch sizes.
    fetcher:
        Source of raw records (``fetch_all``) and per-record enrichment
        (``fetch_comments``, ``fetch_history``).
    normalizer, chunker, embedder, upsert_engine:
        Pipeline components.
    document_store:
        Persisted snapshots, canonical documents and job records.
    detector:
        Change classifier and vector-store schema probe.
    observer:
        Receives stage transitions and progress.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        fetcher: PaginatedFetcher,
        normalizer: Normalizer,
        chunker: SemanticChunker,
        embedder: EmbeddingBatchPipeline,
        upsert_engine: VectorStoreUpsertEngine,
        document_store: DocumentStoreBase,
        detector: ChangeDetector | None = None,
        observer: SyncObserver | None = None,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.normalizer = normalizer
        self.chunker = chunker
        self.embedder = embedder
        self.upsert_engine = upsert_engine
        self.document_store = document_store
        self.detector = detector or ChangeDetector(
            upsert_engine.store, config.timestamp_tolerance_seconds
        )
        self.observer = observer or LoggingObserver()
        self.stage = SyncStage.PENDING

    async def __aenter__(self) -> SyncOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        close = getattr(self.fetcher, "aclose", None)
        if close is not None:
            await close()

    def _enter(self, stage: SyncStage) -> None:
        self.stage = stage
        self.observer.stage_changed(stage)

    # -- stages ---------------------------------------------------------------

    async def _fetch(self, max_records: int) -> list[Any]:
        return [raw async for raw in self.fetcher.fetch_all(self.config.page_size, max_records)]

    def _normalize(self, raws: list[Any], totals: SyncTotals) -> list[CanonicalDocument]:
        documents: dict[str, CanonicalDocument] = {}
        for raw in raws:
            try:
                doc = self.normalizer.normalize(raw)
            except MalformedRecord as exc:
                totals.skipped += 1
                logger.warning("Skipping malformed record %s: %s", exc.record_ref, exc)
                continue
            # Results are ordered newest first; keep the first copy of a key
            # that moved between pages while paginating.
            if doc.id in documents:
                logger.debug("Dropping repeated record %s", doc.id)
                continue
            documents[doc.id] = doc
        return list(documents.values())

    async def _enrich_one(self, doc: CanonicalDocument, semaphore: asyncio.Semaphore) -> CanonicalDocument:
        async with semaphore:
            try:
                doc = apply_comments(doc, await self.fetcher.fetch_comments(doc.id))
                doc = apply_history(doc, await self.fetcher.fetch_history(doc.id))
            except AuthFailure:
                raise
            except SourceError as exc:
                logger.warning("Enrichment of %s failed, keeping inline comments: %s", doc.id, exc)
        return doc

    async def _enrich(self, documents: list[CanonicalDocument]) -> list[CanonicalDocument]:
        flagged = [d for d in documents if d.needs_comment_enrichment]
        if not flagged:
            return documents
        logger.info("Fetching full comments and history for %d documents", len(flagged))
        semaphore = asyncio.Semaphore(self.config.enrichment_concurrency)
        enriched = await asyncio.gather(*(self._enrich_one(d, semaphore) for d in flagged))
        by_id = {d.id: d for d in enriched}
        return [by_id.get(d.id, d) for d in documents]

    async def _persist(self, documents: list[CanonicalDocument], totals: SyncTotals) -> None:
        size = self.config.persist_batch_size
        for start in range(0, len(documents), size):
            batch = documents[start : start + size]
            try:
                await self.document_store.upsert_documents(batch)
            except Exception:
                totals.skipped += len(batch)
                logger.exception(
                    "Persisting documents %d-%d failed; continuing", start, start + len(batch) - 1
                )
            self.observer.progress(SyncStage.PERSISTING, min(start + size, len(documents)), len(documents))

    # -- public API -----------------------------------------------------------

    async def run(self) -> SyncJobRecord:
        """Execute one sync pass and return its job record.

        Raises
        ------
        SyncError
            Any unrecoverable failure.  The stage moves to ``FAILED`` and no
            job record is written.
        """
        started_at = datetime.now(timezone.utc)
        totals = SyncTotals()
        try:
            self._enter(SyncStage.FETCHING)
            rebuild = await self.detector.is_store_empty_or_stale_schema()
            max_records = self.config.max_records
            if rebuild and max_records:
                logger.warning(
                    "Vector store needs a rebuild; ignoring max_records=%d and fetching every record",
                    max_records,
                )
                max_records = 0
            raws = await self._fetch(max_records)

            self._enter(SyncStage.NORMALIZING)
            documents = self._normalize(raws, totals)
            totals.total = len(documents) + totals.skipped
            if len(raws) > totals.total:
                logger.info("Dropped %d repeated records", len(raws) - totals.total)

            self._enter(SyncStage.DIFFING)
            snapshots = await self.document_store.load_snapshots()
            changed: list[CanonicalDocument] = []
            for doc in documents:
                kind = self.detector.classify(doc, snapshots.get(doc.id))
                if kind is ChangeKind.ADDED:
                    totals.added += 1
                elif kind is ChangeKind.UPDATED:
                    totals.updated += 1
                else:
                    totals.unchanged += 1
                if rebuild or kind is not ChangeKind.UNCHANGED:
                    changed.append(doc)
            logger.info(
                "Diff: %d added, %d updated, %d unchanged%s",
                totals.added,
                totals.updated,
                totals.unchanged,
                " (rebuilding vector store)" if rebuild else "",
            )
            # unchanged documents keep whatever was enriched into their last snapshot
            changed = await self._enrich(changed)

            self._enter(SyncStage.EMBEDDING)
            chunks = [c for doc in changed for c in self.chunker.chunk_document(doc)]
            records = await self.embedder.embed_all(chunks, {d.id: d for d in changed})

            self._enter(SyncStage.UPSERTING)
            if rebuild:
                written = await self.upsert_engine.bootstrap_rebuild(records)
            else:
                written = await self.upsert_engine.diff_upsert(records, [d.id for d in changed])
            totals.vector_records_written = written

            self._enter(SyncStage.PERSISTING)
            await self._persist(changed, totals)

            record = SyncJobRecord(
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                totals=totals,
                project_key=self.config.project_key,
                rebuild=rebuild,
            )
            try:
                await self.document_store.write_job(record)
            except Exception as exc:
                raise StoreWriteFailed(f"writing job record {record.job_id} failed: {exc}") from exc
        except Exception:
            self._enter(SyncStage.FAILED)
            logger.exception("Sync run failed")
            raise

        self._enter(SyncStage.DONE)
        logger.info("Sync run finished: %s", totals.model_dump())
        return record


def build_orchestrator(settings: Settings, *, observer: SyncObserver | None = None) -> SyncOrchestrator:
    """Wire the default Chroma, HuggingFace and HTTP components from *settings*."""
    from tracker_sync.ingestion.embedder import get_embedding_function
    from tracker_sync.ingestion.fetcher import PaginatedFetcher
    from tracker_sync.store.chroma_store import ChromaDocumentStore, ChromaVectorStore

    observer = observer or LoggingObserver()
    embedding_config = settings.embedding_config()
    vector_store = ChromaVectorStore(
        settings.vector_collection,
        dimension=embedding_config.dimension,
        host=settings.chroma_host,
        port=settings.chroma_port,
    )
    document_store = ChromaDocumentStore(
        settings.document_collection,
        settings.job_collection,
        host=settings.chroma_host,
        port=settings.chroma_port,
    )
    return SyncOrchestrator(
        settings.sync_config(),
        fetcher=PaginatedFetcher(settings.fetch_config()),
        normalizer=Normalizer(settings.normalizer_config()),
        chunker=SemanticChunker(settings.chunking_config()),
        embedder=EmbeddingBatchPipeline(
            get_embedding_function(embedding_config), embedding_config, observer=observer
        ),
        upsert_engine=VectorStoreUpsertEngine(vector_store, settings.upsert_config(), observer=observer),
        document_store=document_store,
        observer=observer,
    )
