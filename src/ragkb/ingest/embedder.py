"""Embedding gateway: batched, LRU-cached text → vector via a ProviderChain.

Failure policy is drop-and-continue: a batch whose capabilities are all
exhausted contributes no EmbeddedChunk and the remaining batches still run.
Callers receive only the chunks that were embedded; each result carries its
chunk, so nothing is correlated by position.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog
from cachetools import LRUCache

from ragkb.db.models import Chunk, EmbeddedChunk
from ragkb.errors import EmbeddingError, ProviderError
from ragkb.rag.llm_client import ProviderChain, Sleeper, embed

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingGateway:
    """Embed chunks and queries through an ordered capability chain.

    Args:
        chain: Retry-then-advance chain of embedding models.
        batch_size: Texts per backend call.
        cache_size: Capacity of the in-process LRU cache (keyed by exact text).
        batch_delay: Seconds to wait between successive batches.
        sleep: Awaitable sleep function (injectable for tests).
    """

    def __init__(
        self,
        chain: ProviderChain,
        batch_size: int = 10,
        cache_size: int = 1000,
        batch_delay: float = 0.2,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._chain = chain
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._sleep = sleep
        self._cache: LRUCache[str, tuple[list[float], str]] = LRUCache(maxsize=cache_size)

    @property
    def chain(self) -> ProviderChain:
        return self._chain

    @property
    def cache(self) -> LRUCache:
        return self._cache

    async def embed_chunks(self, chunks: Sequence[Chunk]) -> list[EmbeddedChunk]:
        """Return an EmbeddedChunk for every chunk that could be embedded, in order."""
        results: list[EmbeddedChunk] = []
        for start in range(0, len(chunks), self._batch_size):
            if start:
                await self._sleep(self._batch_delay)
            batch = list(chunks[start:start + self._batch_size])
            results.extend(await self._embed_batch(batch, batch_no=start // self._batch_size))
        if len(results) < len(chunks):
            logger.warning(
                "embedding_incomplete", embedded=len(results), requested=len(chunks)
            )
        return results

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query string.

        Raises:
            EmbeddingError: If no capability could embed *text*.
        """
        cached = self._cache.get(text)
        if cached is not None:
            return cached[0]
        try:
            vectors, capability = await self._chain.run(lambda c: embed(c.model, [text]))
        except ProviderError as exc:
            raise EmbeddingError(f"Could not embed query: {exc}") from exc
        self._cache[text] = (vectors[0], capability.model)
        return vectors[0]

    async def _embed_batch(self, batch: list[Chunk], batch_no: int) -> list[EmbeddedChunk]:
        hits: dict[int, EmbeddedChunk] = {}
        misses: list[int] = []
        for i, chunk in enumerate(batch):
            cached = self._cache.get(chunk.content)
            if cached is not None:
                hits[i] = EmbeddedChunk(chunk=chunk, embedding=cached[0], model=cached[1])
            else:
                misses.append(i)

        if misses:
            texts = [batch[i].content for i in misses]
            try:
                vectors, capability = await self._chain.run(
                    lambda c: embed(c.model, texts)
                )
            except ProviderError as exc:
                logger.warning(
                    "embedding_batch_failed",
                    batch=batch_no,
                    dropped=len(misses),
                    error=str(exc),
                )
                vectors, capability = [], None
            if capability is not None:
                for i, vector in zip(misses, vectors):
                    self._cache[batch[i].content] = (vector, capability.model)
                    hits[i] = EmbeddedChunk(
                        chunk=batch[i], embedding=vector, model=capability.model
                    )

        return [hits[i] for i in range(len(batch)) if i in hits]
