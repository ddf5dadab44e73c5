"""
Store: the vector table and the document store behind backend-agnostic interfaces.

Public surface
--------------
- :class:`VectorStoreBase` / :class:`DocumentStoreBase`: abstract backends.
- :class:`VectorStoreUpsertEngine`: full rebuild or per-document diff upsert.
- :class:`ChromaVectorStore` / :class:`ChromaDocumentStore`: default Chroma backends.
"""

from tracker_sync.store.base import REQUIRED_VECTOR_FIELDS, DocumentStoreBase, VectorStoreBase
from tracker_sync.store.upsert import VectorStoreUpsertEngine

__all__ = [
    "REQUIRED_VECTOR_FIELDS",
    "ChromaDocumentStore",
    "ChromaVectorStore",
    "DocumentStoreBase",
    "VectorStoreBase",
    "VectorStoreUpsertEngine",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import the Chroma backends to avoid pulling in chromadb at import time."""
    if name in ("ChromaVectorStore", "ChromaDocumentStore"):
        from tracker_sync.store import chroma_store

        return getattr(chroma_store, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
