"""Domain models flowing through a sync pass."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChangeKind(str, Enum):
    """Classification of a fetched document against its persisted snapshot."""

    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class SyncStage(str, Enum):
    """Linear stages of one sync pass."""

    PENDING = "pending"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    DIFFING = "diffing"
    EMBEDDING = "chunking+embedding"
    UPSERTING = "upserting"
    PERSISTING = "persisting_canonical"
    DONE = "done"
    FAILED = "failed"


class Comment(BaseModel):
    """One comment on a source record, already flattened to plain text."""

    author: str = "(unknown)"
    created_at: datetime | None = None
    body_text: str = ""

    def render(self) -> str:
        created = self.created_at.isoformat() if self.created_at else ""
        return f"{self.author} ({created}):\n{self.body_text}".strip()


class CanonicalDocument(BaseModel):
    """Flat, normalised representation of one source record.

    Attributes
    ----------
    id:
        Stable record key (e.g. ``"PROJ-123"``); also the document-store key.
    title:
        Record summary line.
    body_text:
        Rich-text description flattened to plain text.
    custom_fields:
        Readable name → string value, for status, assignee, labels and any
        configured custom field.
    created_at / updated_at:
        Source timestamps; ``None`` when absent or unparsable.
    source_url:
        Browser link to the record.
    comments:
        Comments ordered oldest first.
    history:
        Rendered change-history lines, filled by enrichment.
    needs_comment_enrichment:
        ``True`` when the inlined comment list was probably truncated by the
        source API and a full comment fetch is required.
    raw_payload:
        The original record serialised as JSON, stored alongside the
        canonical fields in the document store.
    """

    id: str
    title: str = ""
    body_text: str = ""
    custom_fields: dict[str, str] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    source_url: str = ""
    comments: list[Comment] = Field(default_factory=list)
    history: list[str] = Field(default_factory=list)
    needs_comment_enrichment: bool = False
    raw_payload: str = Field(default="", repr=False)

    def index_text(self) -> str:
        """Render the text that is chunked and embedded for this document."""
        sections = [self.title]
        if self.custom_fields:
            sections.append("\n".join(f"{k}: {v}" for k, v in self.custom_fields.items()))
        if self.body_text:
            sections.append(self.body_text)
        if self.comments:
            rendered = "\n\n".join(c.render() for c in self.comments)
            sections.append(f"Comments:\n{rendered}")
        if self.history:
            sections.append("History:\n" + "\n".join(self.history))
        return "\n\n".join(s for s in sections if s).strip()


class Chunk(BaseModel):
    """Bounded sub-span of a document's text; the unit of indexing."""

    document_id: str
    chunk_index: int
    text: str
    start_offset: int
    end_offset: int
    total_chunks: int = 1


class VectorRecord(BaseModel):
    """A chunk plus its embedding and metadata, as stored in the vector collection."""

    record_id: str
    source_document_id: str
    title: str = ""
    content: str
    embedding: list[float]
    custom_fields: dict[str, str] = Field(default_factory=dict)
    is_chunked: bool = False
    chunk_index: int | None = None
    total_chunks: int | None = None

    @staticmethod
    def make_id(document_id: str, chunk_index: int, total_chunks: int) -> str:
        """``document_id`` when unchunked, else ``document_id-chunk_index``."""
        if total_chunks <= 1:
            return document_id
        return f"{document_id}-{chunk_index}"

    @classmethod
    def from_chunk(
        cls, chunk: Chunk, document: CanonicalDocument, embedding: list[float]
    ) -> VectorRecord:
        is_chunked = chunk.total_chunks > 1
        return cls(
            record_id=cls.make_id(chunk.document_id, chunk.chunk_index, chunk.total_chunks),
            source_document_id=chunk.document_id,
            title=document.title,
            content=chunk.text,
            embedding=embedding,
            custom_fields=dict(document.custom_fields),
            is_chunked=is_chunked,
            chunk_index=chunk.chunk_index if is_chunked else None,
            total_chunks=chunk.total_chunks if is_chunked else None,
        )


class PersistedSnapshot(BaseModel):
    """Last-known state of a document, read from the document store before diffing."""

    id: str
    updated_at: datetime | None = None


class SyncTotals(BaseModel):
    """Counters aggregated over one sync pass."""

    total: int = 0
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    vector_records_written: int = 0


class SyncJobRecord(BaseModel):
    """Audit record written once per completed run."""

    model_config = ConfigDict(frozen=True)

    started_at: datetime
    finished_at: datetime
    totals: SyncTotals
    project_key: str = ""
    rebuild: bool = False
    status: str = "completed"

    @property
    def job_id(self) -> str:
        return self.started_at.isoformat()

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
