"""Query-time entry point: embed the query, then run the hybrid search.

Any embedding problem (backend unavailable, timeout, dimension mismatch)
degrades the request to fulltext mode instead of failing it; the response's
``mode`` tells the caller which path actually ran.
"""
from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator, Iterable, Optional

from wiki_scout.errors import EmbeddingDimensionMismatch, EmbeddingError
from wiki_scout.logger import get_logger
from wiki_scout.search.content_types import ContentType, parse_types
from wiki_scout.search.embeddings import QueryEmbedder
from wiki_scout.search.hybrid import HybridSearchEngine, ScoredResult, SearchResponse
from wiki_scout.search.index import SearchFilters

__all__ = ("SearchService",)

log = get_logger("search")

_STREAM_DONE = object()


class SearchService:
    """Owns the query embedder and the search engine for the life of the process."""

    def __init__(
        self,
        engine: HybridSearchEngine,
        embedder: Optional[QueryEmbedder] = None,
        *,
        prewarm_queries: Iterable[str] = (),
        stream_buffer: int = 8,
    ) -> None:
        self.engine = engine
        self.embedder = embedder
        self.prewarm_queries = list(prewarm_queries)
        self.stream_buffer = stream_buffer

    async def initialize(self) -> None:
        """Preload the embedding model; a failure leaves the service in fulltext-only mode."""
        if self.embedder is None:
            log.debug("No query embedder configured, searches run in fulltext mode")
            await self._preload_reranker()
            return
        try:
            await self.embedder.initialize()
            if self.prewarm_queries:
                await self.embedder.prewarm(self.prewarm_queries)
        except EmbeddingError as exc:
            log.error("Query embedder unavailable at startup, falling back to fulltext: %s", exc)
        await self._preload_reranker()

    async def _preload_reranker(self) -> None:
        reranker = self.engine.reranker
        if reranker is None or not hasattr(reranker, "initialize"):
            return
        try:
            await reranker.initialize()
        except Exception as exc:
            log.warning("Reranker unavailable at startup, results keep the fused order: %s", exc)

    async def shutdown(self) -> None:
        if self.embedder is not None:
            await self.embedder.shutdown()
        reranker = self.engine.reranker
        if reranker is not None and hasattr(reranker, "shutdown"):
            await reranker.shutdown()

    async def search(
        self,
        query: str,
        *,
        types: Optional[Iterable[ContentType | str]] = None,
        limit: Optional[int] = None,
        rerank: Optional[bool] = None,
    ) -> SearchResponse:
        started = time.perf_counter()
        filters = SearchFilters(types=parse_types(types))

        vector = None
        embed_ms = None
        if self.embedder is not None and query.strip():
            embed_started = time.perf_counter()
            try:
                vector = await self.embedder.embed(query)
            except EmbeddingDimensionMismatch as exc:
                log.error("Embedding rejected, searching fulltext only: %s", exc)
            except EmbeddingError as exc:
                log.warning("Embedding failed, searching fulltext only: %s", exc)
            embed_ms = (time.perf_counter() - embed_started) * 1000

        response = await self.engine.search(query, vector, filters, limit, rerank=rerank)
        response.timing.embedding = embed_ms
        response.timing.total = (time.perf_counter() - started) * 1000
        return response

    async def stream(
        self,
        query: str,
        *,
        types: Optional[Iterable[ContentType | str]] = None,
        limit: Optional[int] = None,
        rerank: Optional[bool] = None,
    ) -> AsyncIterator[ScoredResult]:
        """Yield results one by one through a bounded queue.

        The search runs in a producer task; leaving the ``async for`` early
        closes the generator, which cancels the producer.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.stream_buffer)

        async def produce() -> None:
            try:
                response = await self.search(query, types=types, limit=limit, rerank=rerank)
                for result in response.results:
                    await queue.put(result)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await queue.put(exc)
                return
            await queue.put(_STREAM_DONE)

        producer = asyncio.create_task(produce())
        try:
            while True:
                item = await queue.get()
                if item is _STREAM_DONE:
                    break
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)
