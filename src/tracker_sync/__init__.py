"""
tracker_sync: incremental sync of an issue tracker into a chunked vector index.

One pass fetches every record of a project, classifies it against the last
persisted snapshot, chunks and embeds what changed, and rewrites those
documents' rows in the vector store.  See
:class:`tracker_sync.sync.SyncOrchestrator`.
"""

__version__ = "0.1.0"
