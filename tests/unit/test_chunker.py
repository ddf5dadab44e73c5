"""Unit tests for the sentence-aware chunker."""

from __future__ import annotations

import logging
import math

import pytest

from tracker_sync.config import ChunkingConfig
from tracker_sync.ingestion.chunker import SemanticChunker, chunk_text
from tracker_sync.models import CanonicalDocument


def _sentences(n: int) -> str:
    # each sentence is exactly 28 characters including the trailing space
    return "".join(f"Sentence number {i:02d} is here. " for i in range(n))


def _assert_covers(text: str, chunks) -> None:
    """Chunks start at 0, end at len(text), leave no gap and hold their trimmed span."""
    assert chunks[0].start_offset == 0
    assert chunks[-1].end_offset == len(text)
    for prev, cur in zip(chunks, chunks[1:]):
        assert cur.start_offset <= prev.end_offset
        assert cur.start_offset > prev.start_offset
    for c in chunks:
        assert c.text == text[c.start_offset : c.end_offset].strip()


class TestTrivialInput:
    def test_empty_string(self) -> None:
        assert chunk_text("") == []

    def test_whitespace_only(self) -> None:
        assert chunk_text("   \n\t  ") == []

    def test_short_text_is_one_trimmed_chunk(self) -> None:
        """Text within max_size yields exactly one chunk over the trimmed text."""
        chunks = chunk_text("  Hello world.  ", max_size=100, document_id="D-1")
        assert len(chunks) == 1
        assert chunks[0].text == "Hello world."
        assert chunks[0].chunk_index == 0
        assert chunks[0].total_chunks == 1
        assert chunks[0].document_id == "D-1"

    def test_exactly_max_size_is_single_chunk(self) -> None:
        assert len(chunk_text("a" * 100, max_size=100)) == 1


class TestNoTerminators:
    def test_5000_chars_default_sizes(self) -> None:
        """5000 chars without terminators: several chunks, each within bounds."""
        text = "word " * 1000
        chunks = chunk_text(text, max_size=1800, overlap=200)
        assert len(chunks) > 1
        assert abs(len(chunks) - math.ceil(5000 / 1600)) <= 2
        assert all(len(c.text) <= 1850 for c in chunks)
        _assert_covers(text, chunks)

    def test_consecutive_chunks_overlap(self) -> None:
        text = "word " * 1000
        chunks = chunk_text(text, max_size=1800, overlap=200)
        assert [c.start_offset for c in chunks] == [0, 1600, 3200]
        assert [c.end_offset for c in chunks] == [1800, 3400, 5000]

    def test_overlap_larger_than_max_size_terminates(self) -> None:
        """overlap >= max_size is capped and the progress guard keeps the loop moving."""
        text = "x" * 1000
        chunks = chunk_text(text, max_size=100, overlap=500)
        assert 1 < len(chunks) < 1000
        min_progress = 10
        for prev, cur in zip(chunks, chunks[1:]):
            assert cur.start_offset - prev.start_offset >= min_progress
        _assert_covers(text, chunks)

    def test_every_chunk_within_max_size(self) -> None:
        text = "abc def ghi " * 400
        chunks = chunk_text(text, max_size=250, overlap=60)
        assert all(len(c.text) <= 250 for c in chunks)


class TestSentenceBoundaries:
    def test_chunks_end_after_a_terminator(self) -> None:
        text = _sentences(40)
        chunks = chunk_text(text, max_size=100, overlap=40)
        assert len(chunks) > 1
        assert all(c.text.endswith(".") for c in chunks)

    def test_next_chunk_starts_at_a_sentence(self) -> None:
        text = _sentences(40)
        chunks = chunk_text(text, max_size=100, overlap=40)
        assert all(c.text.startswith("Sentence number") for c in chunks)

    def test_reconstructs_input(self) -> None:
        text = _sentences(40)
        chunks = chunk_text(text, max_size=100, overlap=40)
        _assert_covers(text, chunks)

    def test_cjk_terminators(self) -> None:
        text = "これはテストの文章です。" * 60
        chunks = chunk_text(text, max_size=100, overlap=20)
        assert len(chunks) > 1
        assert all(c.text.endswith("。") for c in chunks)
        _assert_covers(text, chunks)

    def test_fixed_windows_when_boundaries_ignored(self) -> None:
        text = "Short one. " * 50  # 550 chars
        chunks = chunk_text(text[:500], max_size=100, overlap=20, respect_boundaries=False)
        assert [(c.start_offset, c.end_offset) for c in chunks] == [
            (0, 100),
            (80, 180),
            (160, 260),
            (240, 340),
            (320, 420),
            (400, 500),
        ]


class TestIndexing:
    def test_indices_are_contiguous_and_total_is_filled(self) -> None:
        chunks = chunk_text(_sentences(40), max_size=100, overlap=40, document_id="PROJ-9")
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert {c.total_chunks for c in chunks} == {len(chunks)}
        assert {c.document_id for c in chunks} == {"PROJ-9"}

    def test_hard_ceiling_stops_and_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="tracker_sync.ingestion.chunker"):
            chunks = chunk_text("x" * 10_000, max_size=10, overlap=0, max_chunks=5, document_id="BIG")
        assert len(chunks) == 5
        assert "Chunk ceiling reached" in caplog.text


class TestSemanticChunker:
    def test_uses_config(self) -> None:
        chunker = SemanticChunker(ChunkingConfig(max_size=100, overlap=40))
        chunks = chunker.chunk(_sentences(10), document_id="A-1")
        assert len(chunks) > 1
        assert all(len(c.text) <= 100 for c in chunks)

    def test_chunk_document_uses_index_text(self) -> None:
        doc = CanonicalDocument(id="PROJ-1", title="Crash on save", body_text="Steps to reproduce.")
        chunks = SemanticChunker().chunk_document(doc)
        assert len(chunks) == 1
        assert chunks[0].document_id == "PROJ-1"
        assert "Crash on save" in chunks[0].text
        assert "Steps to reproduce." in chunks[0].text
