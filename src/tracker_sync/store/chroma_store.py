"""Chroma implementations of the vector store and the document store.

``chromadb.HttpClient`` is synchronous; every call is pushed to a worker
thread with :func:`asyncio.to_thread` so the event loop keeps serving the
embedding and fetch tasks.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import chromadb
from chromadb.errors import ChromaError

from tracker_sync.ingestion.normalizer import parse_timestamp
from tracker_sync.models import CanonicalDocument, PersistedSnapshot, SyncJobRecord, VectorRecord
from tracker_sync.store.base import DocumentStoreBase, VectorStoreBase

logger = logging.getLogger(__name__)

CUSTOM_FIELD_PREFIX = "cf_"
_PAGE = 1000
# Chroma requires an embedding per row; canonical documents are looked up by
# id only, so they all share this one-dimensional placeholder.
_PLACEHOLDER_EMBEDDING = [0.0]


def _make_client(host: str, port: int) -> Any:
    return chromadb.HttpClient(host=host, port=port)


# ---------------------------------------------------------------------------
# Vector store
# ---------------------------------------------------------------------------


def record_to_metadata(record: VectorRecord) -> dict[str, Any]:
    """Flatten a :class:`VectorRecord` into Chroma-compatible metadata."""
    meta: dict[str, Any] = {
        "source_document_id": record.source_document_id,
        "title": record.title,
        "is_chunked": record.is_chunked,
    }
    if record.is_chunked:
        meta["chunk_index"] = record.chunk_index
        meta["total_chunks"] = record.total_chunks
    for name, value in record.custom_fields.items():
        meta[f"{CUSTOM_FIELD_PREFIX}{name}"] = value
    return meta


def metadata_to_record(
    record_id: str, content: str | None, embedding: Any, meta: dict[str, Any] | None
) -> VectorRecord:
    meta = meta or {}
    return VectorRecord(
        record_id=record_id,
        source_document_id=str(meta.get("source_document_id", "")),
        title=str(meta.get("title", "")),
        content=content or "",
        embedding=[float(x) for x in (embedding if embedding is not None else [])],
        custom_fields={
            k[len(CUSTOM_FIELD_PREFIX) :]: str(v)
            for k, v in meta.items()
            if k.startswith(CUSTOM_FIELD_PREFIX)
        },
        is_chunked=bool(meta.get("is_chunked", False)),
        chunk_index=meta.get("chunk_index"),
        total_chunks=meta.get("total_chunks"),
    )


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector table.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    dimension:
        Embedding dimension; rows of another size are rejected.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    distance_metric:
        ``"cosine"`` | ``"l2"`` | ``"ip"``, applied when the collection is created.
    client:
        Pre-built Chroma client (an ``EphemeralClient`` in local runs);
        overrides *host* / *port*.
    """

    def __init__(
        self,
        collection_name: str = "tracker_records",
        *,
        dimension: int = 768,
        distance_metric: str = "cosine",
        host: str = "localhost",
        port: int = 8000,
        client: Any = None,
    ) -> None:
        super().__init__(collection_name, dimension)
        self._client = client if client is not None else _make_client(host, port)
        self._collection_metadata = {"hnsw:space": distance_metric}
        self._collection = self._client.get_or_create_collection(
            name=collection_name, metadata=self._collection_metadata
        )

    async def count(self) -> int:
        return await asyncio.to_thread(self._collection.count)

    async def sample_metadata(self) -> dict[str, Any] | None:
        result = await asyncio.to_thread(self._collection.get, limit=1, include=["metadatas"])
        metas = result.get("metadatas") or []
        if not metas:
            return None
        return dict(metas[0] or {})

    async def recreate(self) -> None:
        def _recreate() -> Any:
            try:
                self._client.delete_collection(self.collection_name)
            except (ValueError, ChromaError):
                logger.info("Collection %r did not exist; creating it", self.collection_name)
            return self._client.create_collection(
                name=self.collection_name, metadata=self._collection_metadata
            )

        self._collection = await asyncio.to_thread(_recreate)
        logger.info("Recreated vector collection %r", self.collection_name)

    async def delete_where_source(self, source_document_id: str) -> None:
        await asyncio.to_thread(
            self._collection.delete, where={"source_document_id": source_document_id}
        )

    async def add(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        for record in records:
            if len(record.embedding) != self.dimension:
                raise ValueError(
                    f"record {record.record_id!r} has dimension {len(record.embedding)}, "
                    f"table expects {self.dimension}"
                )
        await asyncio.to_thread(
            self._collection.add,
            ids=[r.record_id for r in records],
            embeddings=[r.embedding for r in records],
            documents=[r.content for r in records],
            metadatas=[record_to_metadata(r) for r in records],
        )

    async def get_by_source(self, source_document_id: str) -> list[VectorRecord]:
        result = await asyncio.to_thread(
            self._collection.get,
            where={"source_document_id": source_document_id},
            include=["documents", "metadatas", "embeddings"],
        )
        ids = result.get("ids") or []
        docs = result.get("documents") or [None] * len(ids)
        metas = result.get("metadatas") or [None] * len(ids)
        embeddings = result.get("embeddings")
        if embeddings is None:
            embeddings = [None] * len(ids)
        records = [
            metadata_to_record(i, d, e, m) for i, d, e, m in zip(ids, docs, embeddings, metas)
        ]
        return sorted(records, key=lambda r: r.chunk_index or 0)


# ---------------------------------------------------------------------------
# Document store
# ---------------------------------------------------------------------------


def document_to_metadata(document: CanonicalDocument, synced_at: datetime) -> dict[str, Any]:
    """Flatten the canonical fields of *document* for Chroma metadata."""
    return {
        "title": document.title,
        "body_text": document.body_text,
        "custom_fields": json.dumps(document.custom_fields, ensure_ascii=False),
        "comments": json.dumps(
            [c.model_dump(mode="json") for c in document.comments], ensure_ascii=False
        ),
        "history": json.dumps(document.history, ensure_ascii=False),
        "created_at": document.created_at.isoformat() if document.created_at else "",
        "updated_at": document.updated_at.isoformat() if document.updated_at else "",
        "source_url": document.source_url,
        "synced_at": synced_at.isoformat(),
    }


class ChromaDocumentStore(DocumentStoreBase):
    """Canonical documents and job audit records kept in two Chroma collections.

    Each canonical document is one row keyed by its id: the raw payload is
    the row's document text and the canonical fields are its metadata.
    Job records are rows keyed by their ISO start timestamp.
    """

    def __init__(
        self,
        document_collection: str = "tracker_documents",
        job_collection: str = "tracker_sync_jobs",
        *,
        host: str = "localhost",
        port: int = 8000,
        client: Any = None,
    ) -> None:
        self._client = client if client is not None else _make_client(host, port)
        self._documents = self._client.get_or_create_collection(document_collection)
        self._jobs = self._client.get_or_create_collection(job_collection)

    async def load_snapshots(self) -> dict[str, PersistedSnapshot]:
        snapshots: dict[str, PersistedSnapshot] = {}
        offset = 0
        while True:
            page = await asyncio.to_thread(
                self._documents.get, include=["metadatas"], limit=_PAGE, offset=offset
            )
            ids = page.get("ids") or []
            metas = page.get("metadatas") or [None] * len(ids)
            for doc_id, meta in zip(ids, metas):
                updated = (meta or {}).get("updated_at")
                snapshots[doc_id] = PersistedSnapshot(id=doc_id, updated_at=parse_timestamp(updated))
            if len(ids) < _PAGE:
                break
            offset += _PAGE
        logger.info("Loaded %d persisted snapshots", len(snapshots))
        return snapshots

    async def upsert_documents(self, documents: Sequence[CanonicalDocument]) -> None:
        if not documents:
            return
        synced_at = datetime.now(timezone.utc)
        await asyncio.to_thread(
            self._documents.upsert,
            ids=[d.id for d in documents],
            embeddings=[_PLACEHOLDER_EMBEDDING for _ in documents],
            documents=[d.raw_payload or d.model_dump_json() for d in documents],
            metadatas=[document_to_metadata(d, synced_at) for d in documents],
        )

    async def write_job(self, record: SyncJobRecord) -> None:
        payload = record.to_payload()
        meta: dict[str, Any] = {
            "started_at": payload["started_at"],
            "finished_at": payload["finished_at"],
            "project_key": record.project_key,
            "rebuild": record.rebuild,
            "status": record.status,
        }
        meta.update(payload["totals"])
        await asyncio.to_thread(
            self._jobs.upsert,
            ids=[record.job_id],
            embeddings=[_PLACEHOLDER_EMBEDDING],
            documents=[json.dumps(payload)],
            metadatas=[meta],
        )
        logger.info("Wrote sync job record %s", record.job_id)
