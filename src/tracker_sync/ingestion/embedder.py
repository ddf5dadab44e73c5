"""Embedding function and the batched, bounded-concurrency embedding pipeline."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

from tracker_sync.config import EmbeddingConfig
from tracker_sync.errors import EmbeddingFailed
from tracker_sync.models import CanonicalDocument, Chunk, SyncStage, VectorRecord
from tracker_sync.observability import NullObserver, SyncObserver
from tracker_sync.retry import RetryPolicy, Sleep, exponential_backoff

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


class _RetryableEmbeddingError(Exception):
    """Wraps a provider error so the retry policy treats it as retryable."""


def get_embedding_function(config: EmbeddingConfig | None = None) -> Embeddings:
    """Return the configured sentence-transformer embedding function (L2-normalised)."""
    from langchain_huggingface import HuggingFaceEmbeddings

    config = config or EmbeddingConfig()
    return HuggingFaceEmbeddings(
        model_name=config.model_name,
        encode_kwargs={"normalize_embeddings": True},
    )


class EmbeddingBatchPipeline:
    """Turn chunks into :class:`VectorRecord` objects, preserving input order.

    Chunks are processed in batches of ``config.batch_size``; inside a batch
    at most ``config.concurrency`` calls run at once, and each group is
    awaited before the next one starts.  A short pause separates batches.

    Parameters
    ----------
    embeddings:
        Any LangChain :class:`~langchain_core.embeddings.Embeddings`.
    config:
        Batch, concurrency and retry parameters.
    observer:
        Receives ``progress(EMBEDDING, done, total)`` roughly every
        ``config.progress_interval`` of the work.
    sleep:
        Coroutine used for retry back-off and the inter-batch pause.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        config: EmbeddingConfig | None = None,
        *,
        observer: SyncObserver | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.embeddings = embeddings
        self.config = config or EmbeddingConfig()
        self.observer = observer or NullObserver()
        self._sleep = sleep
        self._policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            backoff=exponential_backoff(initial=self.config.initial_delay_seconds, factor=2.0, cap=60.0),
            retryable=lambda exc: isinstance(exc, _RetryableEmbeddingError),
            name="embedding call",
        )

    async def _embed_once(self, text: str) -> list[float]:
        try:
            vector = await self.embeddings.aembed_query(text)
        except Exception as exc:
            raise _RetryableEmbeddingError(str(exc)) from exc
        return list(vector)

    async def embed_text(self, text: str) -> list[float]:
        """Embed one text with retries.

        Raises
        ------
        EmbeddingFailed
            When every attempt failed or the vector has the wrong dimension.
        """
        try:
            vector = await self._policy.call(lambda: self._embed_once(text), sleep=self._sleep)
        except _RetryableEmbeddingError as exc:
            raise EmbeddingFailed(
                f"embedding failed after {self.config.max_attempts} attempts: {exc}"
            ) from exc.__cause__
        if len(vector) != self.config.dimension:
            raise EmbeddingFailed(
                f"embedding has dimension {len(vector)}, expected {self.config.dimension}"
            )
        return vector

    async def embed_all(
        self,
        chunks: Sequence[Chunk],
        documents: Mapping[str, CanonicalDocument],
    ) -> list[VectorRecord]:
        """Embed *chunks*; output index ``i`` corresponds to ``chunks[i]``.

        *documents* maps ``document_id`` to its canonical document, which
        supplies the title and custom fields copied onto each record.
        """
        total = len(chunks)
        if total == 0:
            return []

        cfg = self.config
        step = max(1, math.ceil(total * cfg.progress_interval))
        next_report = step
        vectors: list[list[float]] = []

        for batch_start in range(0, total, cfg.batch_size):
            batch = chunks[batch_start : batch_start + cfg.batch_size]
            for group_start in range(0, len(batch), cfg.concurrency):
                group = batch[group_start : group_start + cfg.concurrency]
                results = await asyncio.gather(
                    *(self.embed_text(c.text) for c in group), return_exceptions=True
                )
                # every call in the group has settled; surface the first failure
                for result in results:
                    if isinstance(result, BaseException):
                        raise result
                vectors.extend(results)
                done = len(vectors)
                if done >= next_report or done == total:
                    self.observer.progress(SyncStage.EMBEDDING, done, total)
                    while next_report <= done:
                        next_report += step
            if batch_start + cfg.batch_size < total and cfg.batch_pause_seconds:
                await self._sleep(cfg.batch_pause_seconds)

        logger.info("Embedded %d chunks", total)
        return [
            VectorRecord.from_chunk(chunk, documents[chunk.document_id], vector)
            for chunk, vector in zip(chunks, vectors)
        ]
