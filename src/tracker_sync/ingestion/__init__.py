"""
Ingestion: fetching, normalising, chunking and embedding source records.

This package turns pages of raw issue-tracker records into ordered
:class:`~tracker_sync.models.VectorRecord` objects ready for the vector
store.  Nothing here writes to a store.
"""
