"""Sentence-boundary-aware text chunking with overlap.

Chunks end just after a sentence terminator (``。！？.!?``) found near the
size limit, and the next chunk starts at the first sentence boundary inside
the overlap zone.  Two guards keep the loop finite on pathological input
(no terminators, ``overlap >= max_size``): every step advances by at least
``max(1, max_size // 10)`` characters, and a hard ceiling caps the number
of chunks per document.
"""

from __future__ import annotations

import logging
import re

from tracker_sync.config import ChunkingConfig
from tracker_sync.models import CanonicalDocument, Chunk

logger = logging.getLogger(__name__)

SENTENCE_TERMINATORS = "。！？.!?"
_TERMINATOR_RUN = re.compile(r"[。！？.!?]+")


def _snap_end(text: str, start: int, end: int, window: int, min_progress: int) -> int:
    """Move *end* back to just after the closest terminator run within *window* chars."""
    search_start = max(start, end - window)
    best = None
    for match in _TERMINATOR_RUN.finditer(text, search_start, end):
        best = match.end()
    if best is not None and best - start >= min_progress:
        return best
    return end


def _next_start(text: str, start: int, end: int, effective_overlap: int, respect_boundaries: bool) -> int:
    overlap_start = max(start, end - effective_overlap)
    if respect_boundaries:
        match = _TERMINATOR_RUN.search(text, overlap_start, end)
        if match is not None:
            return match.end()
    return end - effective_overlap


def chunk_text(
    text: str,
    max_size: int = 1800,
    overlap: int = 200,
    respect_boundaries: bool = True,
    *,
    document_id: str = "",
    boundary_window: int = 50,
    max_chunks: int = 1000,
) -> list[Chunk]:
    """Split *text* into ordered, overlapping chunks of at most *max_size* characters.

    Parameters
    ----------
    text:
        Document text.
    max_size:
        Maximum characters per chunk (before trimming).
    overlap:
        Desired overlap between consecutive chunks; capped at 80 % of
        *max_size*.
    respect_boundaries:
        Snap chunk ends and starts to sentence terminators.  When ``False``
        the text is cut into fixed windows.
    document_id:
        Copied into every :class:`Chunk`.
    boundary_window:
        How far back from the size limit to look for a terminator.
    max_chunks:
        Hard ceiling; chunking stops with a warning once reached.

    Returns
    -------
    list[Chunk]
        Empty for blank input.  ``start_offset`` / ``end_offset`` are the raw
        ``[start, end)`` span in *text*; ``Chunk.text`` is that span trimmed.
    """
    if not text or not text.strip():
        return []

    length = len(text)
    if len(text.strip()) <= max_size:
        return [
            Chunk(
                document_id=document_id,
                chunk_index=0,
                text=text.strip(),
                start_offset=0,
                end_offset=length,
                total_chunks=1,
            )
        ]

    effective_overlap = min(overlap, int(max_size * 0.8))
    min_progress = max(1, int(max_size * 0.1))

    spans: list[tuple[int, int, str]] = []
    start = 0
    while start < length:
        if len(spans) >= max_chunks:
            logger.warning(
                "Chunk ceiling reached for %r (%d chunks, stopped at offset %d of %d)",
                document_id or "<text>",
                max_chunks,
                start,
                length,
            )
            break

        end = min(start + max_size, length)
        if respect_boundaries and end < length:
            end = _snap_end(text, start, end, boundary_window, min_progress)

        piece = text[start:end].strip()
        if piece:
            spans.append((start, end, piece))

        if end >= length:
            break

        next_start = _next_start(text, start, end, effective_overlap, respect_boundaries)
        if next_start - start < min_progress:
            next_start = start + min_progress
        start = next_start

    total = len(spans)
    return [
        Chunk(
            document_id=document_id,
            chunk_index=i,
            text=piece,
            start_offset=s,
            end_offset=e,
            total_chunks=total,
        )
        for i, (s, e, piece) in enumerate(spans)
    ]


class SemanticChunker:
    """:func:`chunk_text` bound to a :class:`ChunkingConfig`."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(self, text: str, document_id: str = "") -> list[Chunk]:
        return chunk_text(
            text,
            self.config.max_size,
            self.config.overlap,
            self.config.respect_boundaries,
            document_id=document_id,
            boundary_window=self.config.boundary_window,
            max_chunks=self.config.max_chunks,
        )

    def chunk_document(self, document: CanonicalDocument) -> list[Chunk]:
        """Chunk the rendered index text of *document*."""
        return self.chunk(document.index_text(), document_id=document.id)
