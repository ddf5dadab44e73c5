"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from tracker_sync.models import (
    CanonicalDocument,
    PersistedSnapshot,
    SyncJobRecord,
    SyncStage,
    VectorRecord,
)
from tracker_sync.store.base import DocumentStoreBase, VectorStoreBase


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ──────────────────────────────────────────────────────────────────────
# In-memory fakes
# ──────────────────────────────────────────────────────────────────────


class InMemoryVectorStore(VectorStoreBase):
    """Vector table kept in a dict; ``rows`` maps record id → record."""

    def __init__(self, dimension: int = 8, *, fail_on_add: bool = False) -> None:
        super().__init__("test_vectors", dimension)
        self.rows: dict[str, VectorRecord] = {}
        self.metadata_override: dict[str, Any] | None = None
        self.fail_on_add = fail_on_add
        self.recreated = 0
        self.deleted_sources: list[str] = []

    async def count(self) -> int:
        return len(self.rows)

    async def sample_metadata(self) -> dict[str, Any] | None:
        if self.metadata_override is not None:
            return self.metadata_override
        if not self.rows:
            return None
        row = next(iter(self.rows.values()))
        return {"source_document_id": row.source_document_id, "is_chunked": row.is_chunked}

    async def recreate(self) -> None:
        self.rows.clear()
        self.recreated += 1

    async def delete_where_source(self, source_document_id: str) -> None:
        self.deleted_sources.append(source_document_id)
        self.rows = {k: v for k, v in self.rows.items() if v.source_document_id != source_document_id}

    async def add(self, records: Sequence[VectorRecord]) -> None:
        if self.fail_on_add:
            raise ConnectionError("vector store unreachable")
        for record in records:
            if record.record_id in self.rows:
                raise ValueError(f"duplicate id {record.record_id}")
            self.rows[record.record_id] = record

    async def get_by_source(self, source_document_id: str) -> list[VectorRecord]:
        rows = [r for r in self.rows.values() if r.source_document_id == source_document_id]
        return sorted(rows, key=lambda r: r.chunk_index or 0)


class InMemoryDocumentStore(DocumentStoreBase):
    """Document store kept in dicts, with switchable failures."""

    def __init__(self) -> None:
        self.documents: dict[str, CanonicalDocument] = {}
        self.jobs: dict[str, SyncJobRecord] = {}
        self.upsert_calls = 0
        self.fail_upsert_calls: set[int] = set()
        self.fail_write_job = False

    async def load_snapshots(self) -> dict[str, PersistedSnapshot]:
        return {
            doc_id: PersistedSnapshot(id=doc_id, updated_at=doc.updated_at)
            for doc_id, doc in self.documents.items()
        }

    async def upsert_documents(self, documents: Sequence[CanonicalDocument]) -> None:
        self.upsert_calls += 1
        if self.upsert_calls in self.fail_upsert_calls:
            raise ConnectionError("document store unreachable")
        for doc in documents:
            self.documents[doc.id] = doc

    async def write_job(self, record: SyncJobRecord) -> None:
        if self.fail_write_job:
            raise ConnectionError("job collection unreachable")
        self.jobs[record.job_id] = record


class RecordingObserver:
    """Observer that records every notification."""

    def __init__(self) -> None:
        self.stages: list[SyncStage] = []
        self.progress_events: list[tuple[SyncStage, int, int]] = []

    def stage_changed(self, stage: SyncStage) -> None:
        self.stages.append(stage)

    def progress(self, stage: SyncStage, done: int, total: int) -> None:
        self.progress_events.append((stage, done, total))


class RecordingSleep:
    """Async ``sleep`` replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_raw_record(
    key: str,
    *,
    summary: str = "Login fails",
    description: Any = None,
    updated: str | None = "2024-03-01T10:00:00.000+0000",
    comments: list[dict[str, Any]] | None = None,
    comment_total: int | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Build a raw search-API record."""
    if description is None:
        description = {
            "type": "doc",
            "content": [{"type": "paragraph", "content": [{"type": "text", "text": f"Body of {key}."}]}],
        }
    comment_list = comments or []
    record_fields: dict[str, Any] = {
        "summary": summary,
        "description": description,
        "status": {"name": "Open", "statusCategory": {"name": "To Do"}},
        "created": "2024-01-01T09:00:00.000+0000",
        "comment": {
            "comments": comment_list,
            "total": comment_total if comment_total is not None else len(comment_list),
        },
        **fields,
    }
    if updated is not None:
        record_fields["updated"] = updated
    return {"id": f"1{len(key)}{sum(map(ord, key))}", "key": key, "fields": record_fields}


# ──────────────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────────────


@pytest.fixture()
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture()
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def raw_record():
    """Factory fixture: ``raw_record("PROJ-1", summary=...)`` builds a raw record."""
    return make_raw_record
