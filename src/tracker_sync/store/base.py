"""Abstract base classes for the vector store and the document store.

Adding a new backend (LanceDB, pgvector, Firestore …) only requires
subclassing :class:`VectorStoreBase` or :class:`DocumentStoreBase` and
implementing the abstract coroutines.  The sync layer is backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from tracker_sync.models import CanonicalDocument, PersistedSnapshot, SyncJobRecord, VectorRecord

# Metadata keys every vector row must carry; a sampled row without them
# marks the collection as stale.
REQUIRED_VECTOR_FIELDS = ("source_document_id", "is_chunked")


class VectorStoreBase(ABC):
    """Backend-agnostic vector-table interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / table.
    dimension:
        Fixed embedding dimension of the table.
    """

    def __init__(self, collection_name: str, dimension: int = 768) -> None:
        self.collection_name = collection_name
        self.dimension = dimension

    @abstractmethod
    async def count(self) -> int:
        """Return the number of rows in the table."""
        ...

    @abstractmethod
    async def sample_metadata(self) -> dict[str, Any] | None:
        """Return the metadata of one arbitrary row, or ``None`` when empty."""
        ...

    @abstractmethod
    async def recreate(self) -> None:
        """Drop the table and create it again, empty."""
        ...

    @abstractmethod
    async def delete_where_source(self, source_document_id: str) -> None:
        """Delete every row whose ``source_document_id`` equals the argument."""
        ...

    @abstractmethod
    async def add(self, records: Sequence[VectorRecord]) -> None:
        """Insert *records* (ids are assumed not to exist yet)."""
        ...

    @abstractmethod
    async def get_by_source(self, source_document_id: str) -> list[VectorRecord]:
        """Return the rows of one document, ordered by chunk index."""
        ...


class DocumentStoreBase(ABC):
    """Key-value store for canonical documents and the per-run job audit."""

    @abstractmethod
    async def load_snapshots(self) -> dict[str, PersistedSnapshot]:
        """Return ``{document_id: PersistedSnapshot}`` for every stored document."""
        ...

    @abstractmethod
    async def upsert_documents(self, documents: Sequence[CanonicalDocument]) -> None:
        """Merge-write *documents* (canonical fields, raw payload, sync timestamp)."""
        ...

    @abstractmethod
    async def write_job(self, record: SyncJobRecord) -> None:
        """Store *record* keyed by its ISO start timestamp."""
        ...
