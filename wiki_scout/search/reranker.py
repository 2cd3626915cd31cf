"""Cross-encoder reranking of the top search candidates.

A cross-encoder reads the query and a passage together, which ranks better
than comparing two independent embeddings but costs one model call per pair.
It is therefore only applied to the short candidate list the hybrid engine
has already fused.
"""
from __future__ import annotations

import asyncio
import time
from typing import List, Optional, Protocol, Sequence

from wiki_scout.logger import get_logger

__all__ = ("DEFAULT_RERANK_MODEL", "CrossEncoderReranker", "Reranker")

log = get_logger("reranker")

DEFAULT_RERANK_MODEL = "BAAI/bge-reranker-base"


class Reranker(Protocol):
    async def score(self, query: str, passages: Sequence[str]) -> List[float]: ...


class CrossEncoderReranker:
    """``sentence-transformers`` cross-encoder, loaded on first use.

    Loading and inference block, so both run in a worker thread. Concurrent
    first calls share one load. Single-label models such as the bge rerankers
    come out of ``predict`` already squashed into (0, 1).
    """

    def __init__(self, model_name: str = DEFAULT_RERANK_MODEL, *, batch_size: int = 8, max_length: int = 512) -> None:
        self.model_name = model_name
        self.batch_size = batch_size
        self.max_length = max_length
        self._model = None
        self._init_task: Optional[asyncio.Future] = None

    async def initialize(self) -> None:
        if self._model is not None:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._load())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
            raise

    async def _load(self) -> None:
        from sentence_transformers import CrossEncoder

        log.info("Loading reranker model %s", self.model_name)
        started = time.monotonic()
        self._model = await asyncio.to_thread(CrossEncoder, self.model_name, max_length=self.max_length)
        log.info("Reranker model loaded in %.0f ms", (time.monotonic() - started) * 1000)

    async def score(self, query: str, passages: Sequence[str]) -> List[float]:
        if not passages:
            return []
        await self.initialize()
        pairs = [(query, passage) for passage in passages]
        raw = await asyncio.to_thread(self._model.predict, pairs, batch_size=self.batch_size)
        return [float(x) for x in raw]

    def is_ready(self) -> bool:
        return self._model is not None

    async def shutdown(self) -> None:
        task, self._init_task = self._init_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._model = None
