"""Query embeddings with a TTL + LRU cache.

Repeated queries from an interactive search box must not pay inference
latency twice. :class:`QueryEmbedder` wraps a lazily loaded embedding backend
and keeps recent query vectors in an :class:`EmbeddingCache`.

The embedder is a plain service object: build one at process start, pass it
to whatever needs it, call :meth:`QueryEmbedder.initialize` to preload the
model and :meth:`QueryEmbedder.shutdown` on exit.
"""
from __future__ import annotations

import asyncio
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

from wiki_scout.errors import (
    EmbeddingDimensionMismatch,
    EmbeddingError,
    EmbeddingTimeout,
    EmbeddingUnavailable,
)
from wiki_scout.logger import get_logger

__all__ = (
    "DEFAULT_MODEL_NAME",
    "EMBEDDING_DIMENSIONS",
    "EmbeddingBackend",
    "EmbeddingCache",
    "QueryEmbedder",
    "SentenceTransformerBackend",
)

log = get_logger("embeddings")

DEFAULT_MODEL_NAME = "BAAI/bge-small-en-v1.5"
EMBEDDING_DIMENSIONS = 384

# embeddings slower than this are logged
_SLOW_EMBED_SECONDS = 0.1


class EmbeddingBackend(Protocol):
    async def embed(self, text: str) -> Sequence[float]: ...


BackendFactory = Callable[[], Awaitable[EmbeddingBackend]]


@dataclass(slots=True)
class _Entry:
    vector: Tuple[float, ...]
    cached_at: float


class EmbeddingCache:
    """Process-local LRU cache whose entries expire after *ttl* seconds."""

    def __init__(
        self,
        capacity: int = 100,
        ttl: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[List[float]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.cached_at > self.ttl:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return list(entry.vector)

    def put(self, key: str, vector: Sequence[float]) -> None:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.capacity:
                self._entries.popitem(last=False)
            self._entries[key] = _Entry(tuple(vector), self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def size(self) -> int:
        return len(self._entries)

    __len__ = size

    def __contains__(self, key: object) -> bool:
        return key in self._entries


class QueryEmbedder:
    """Embeds search queries through a lazily initialized backend, with caching."""

    def __init__(
        self,
        backend_factory: BackendFactory,
        *,
        dimensions: int = EMBEDDING_DIMENSIONS,
        cache: Optional[EmbeddingCache] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._backend_factory = backend_factory
        self.dimensions = dimensions
        self.cache = cache if cache is not None else EmbeddingCache()
        self.timeout = timeout
        self._backend: Optional[EmbeddingBackend] = None
        self._init_task: Optional[asyncio.Future] = None

    @staticmethod
    def cache_key(text: str) -> str:
        return text.strip().lower()

    async def initialize(self) -> None:
        """Load the backend once; concurrent callers await the same load."""
        if self._backend is not None:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._load())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except EmbeddingUnavailable:
            if self._init_task is task:
                self._init_task = None
            raise

    async def _load(self) -> None:
        log.info("Loading query embedding backend")
        started = time.monotonic()
        try:
            backend = await self._backend_factory()
        except Exception as exc:
            log.error("Embedding backend failed to initialize: %s", exc)
            raise EmbeddingUnavailable(f"embedding backend failed to initialize: {exc}") from exc
        self._backend = backend
        log.info("Query embedding backend loaded in %.0f ms", (time.monotonic() - started) * 1000)

    async def embed(self, text: str) -> List[float]:
        key = self.cache_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        await self.initialize()
        backend = self._backend
        if backend is None:
            raise EmbeddingUnavailable("embedding backend is not initialized")

        started = time.monotonic()
        try:
            if self.timeout is not None:
                raw = await asyncio.wait_for(backend.embed(text), timeout=self.timeout)
            else:
                raw = await backend.embed(text)
        except asyncio.TimeoutError as exc:
            raise EmbeddingTimeout(f"embedding timed out after {self.timeout}s") from exc
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingUnavailable(f"embedding backend call failed: {exc}") from exc

        vector = [float(x) for x in raw]
        if len(vector) != self.dimensions:
            log.error("Embedding dimension mismatch: expected %d, got %d", self.dimensions, len(vector))
            raise EmbeddingDimensionMismatch(self.dimensions, len(vector))

        self.cache.put(key, vector)
        elapsed = time.monotonic() - started
        if elapsed > _SLOW_EMBED_SECONDS:
            log.warning("Query embedding took %.0f ms", elapsed * 1000)
        return vector

    async def prewarm(self, queries: Iterable[str]) -> int:
        """Embed popular queries ahead of time; return how many were cached."""
        warmed = 0
        for query in queries:
            try:
                await self.embed(query)
            except EmbeddingDimensionMismatch:
                raise
            except EmbeddingError as exc:
                log.warning("Prewarm failed for %r: %s", query, exc)
                continue
            warmed += 1
        log.info("Prewarmed %d query embeddings", warmed)
        return warmed

    def clear(self) -> None:
        self.cache.clear()

    def size(self) -> int:
        return self.cache.size()

    def is_ready(self) -> bool:
        return self._backend is not None

    async def shutdown(self) -> None:
        task, self._init_task = self._init_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        backend, self._backend = self._backend, None
        close = getattr(backend, "close", None)
        if close is not None:
            result = close()
            if asyncio.iscoroutine(result):
                await result
        self.cache.clear()


class SentenceTransformerBackend:
    """Embedding backend on top of ``sentence-transformers``.

    Model loading and inference are blocking, so both run in a worker thread.
    """

    def __init__(self, model) -> None:
        self._model = model

    @classmethod
    async def load(cls, model_name: str = DEFAULT_MODEL_NAME) -> SentenceTransformerBackend:
        from sentence_transformers import SentenceTransformer

        model = await asyncio.to_thread(SentenceTransformer, model_name)
        log.info("Loaded %s (dimension %s)", model_name, model.get_sentence_embedding_dimension())
        return cls(model)

    async def embed(self, text: str) -> List[float]:
        vector = await asyncio.to_thread(
            self._model.encode, text, convert_to_numpy=True, normalize_embeddings=True
        )
        return vector.tolist()

    @staticmethod
    def factory(model_name: str = DEFAULT_MODEL_NAME) -> BackendFactory:
        async def _factory() -> EmbeddingBackend:
            return await SentenceTransformerBackend.load(model_name)

        return _factory
