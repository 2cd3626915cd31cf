# File: tests/test_embeddings.py
"""EmbeddingCache and QueryEmbedder tests with fake backends and a fake clock."""
from __future__ import annotations

import asyncio

import pytest

from wiki_scout.errors import (
    EmbeddingDimensionMismatch,
    EmbeddingTimeout,
    EmbeddingUnavailable,
)
from wiki_scout.search.embeddings import EmbeddingCache, QueryEmbedder

DIM = 4


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeBackend:
    def __init__(self, dimensions: int = DIM, delay: float = 0.0, error: Exception | None = None) -> None:
        self.dimensions = dimensions
        self.delay = delay
        self.error = error
        self.calls: list[str] = []

    async def embed(self, text: str):
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [float(len(text))] * self.dimensions


def factory_for(backend: FakeBackend, counter: dict | None = None, delay: float = 0.0):
    async def _factory():
        if counter is not None:
            counter["loads"] = counter.get("loads", 0) + 1
        if delay:
            await asyncio.sleep(delay)
        return backend

    return _factory


# --------------------------------------------------------------------------- #
#                                EmbeddingCache                               #
# --------------------------------------------------------------------------- #


def test_ttl_boundary():
    clock = FakeClock()
    cache = EmbeddingCache(capacity=10, ttl=300.0, clock=clock)
    cache.put("margit", [1.0])

    clock.now = 300.0 - 0.001
    assert cache.get("margit") == [1.0]

    cache.put("wylder", [2.0])
    clock.now += 300.0 + 0.001
    assert cache.get("wylder") is None
    assert "wylder" not in cache


def test_lru_evicts_least_recently_used():
    cache = EmbeddingCache(capacity=3, ttl=300.0, clock=FakeClock())
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.put("c", [3.0])
    assert cache.get("a") == [1.0]

    cache.put("d", [4.0])
    assert "b" not in cache
    assert cache.keys() == ["c", "a", "d"]
    assert cache.size() == 3


def test_reinsert_refreshes_position():
    cache = EmbeddingCache(capacity=2, ttl=300.0, clock=FakeClock())
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.put("a", [1.5])
    cache.put("c", [3.0])
    assert cache.keys() == ["a", "c"]
    assert cache.get("a") == [1.5]


def test_clear_and_capacity_validation():
    cache = EmbeddingCache(capacity=1)
    cache.put("a", [1.0])
    cache.clear()
    assert len(cache) == 0
    with pytest.raises(ValueError):
        EmbeddingCache(capacity=0)


# --------------------------------------------------------------------------- #
#                                QueryEmbedder                                #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_cache_key_is_trimmed_and_lowercased():
    backend = FakeBackend()
    embedder = QueryEmbedder(factory_for(backend), dimensions=DIM)
    first = await embedder.embed("  Wylder ")
    second = await embedder.embed("wylder")
    assert first == second
    assert backend.calls == ["  Wylder "]
    assert embedder.size() == 1


@pytest.mark.asyncio()
async def test_caller_mutation_does_not_corrupt_cache():
    backend = FakeBackend()
    embedder = QueryEmbedder(factory_for(backend), dimensions=DIM)
    first = await embedder.embed("margit")
    first[0] = -1.0
    hit = await embedder.embed("margit")
    assert hit == [6.0] * DIM
    hit.append(0.0)
    assert await embedder.embed("margit") == [6.0] * DIM
    assert backend.calls == ["margit"]


@pytest.mark.asyncio()
async def test_expired_entry_is_recomputed():
    clock = FakeClock()
    backend = FakeBackend()
    embedder = QueryEmbedder(factory_for(backend), dimensions=DIM, cache=EmbeddingCache(10, 300.0, clock=clock))
    await embedder.embed("bleed build")
    clock.now = 301.0
    await embedder.embed("bleed build")
    assert len(backend.calls) == 2


@pytest.mark.asyncio()
async def test_dimension_mismatch_is_fatal_and_not_cached():
    backend = FakeBackend(dimensions=DIM - 1)
    embedder = QueryEmbedder(factory_for(backend), dimensions=DIM)
    with pytest.raises(EmbeddingDimensionMismatch) as exc_info:
        await embedder.embed("margit")
    assert exc_info.value.expected == DIM
    assert exc_info.value.actual == DIM - 1
    assert embedder.size() == 0


@pytest.mark.asyncio()
async def test_concurrent_initialize_loads_once():
    counter: dict = {}
    embedder = QueryEmbedder(factory_for(FakeBackend(), counter, delay=0.02), dimensions=DIM)
    await asyncio.gather(*(embedder.initialize() for _ in range(5)), embedder.embed("x"))
    assert counter["loads"] == 1
    assert embedder.is_ready()


@pytest.mark.asyncio()
async def test_failed_initialize_can_be_retried():
    attempts = {"n": 0}
    backend = FakeBackend()

    async def flaky_factory():
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise OSError("model download failed")
        return backend

    embedder = QueryEmbedder(flaky_factory, dimensions=DIM)
    with pytest.raises(EmbeddingUnavailable):
        await embedder.initialize()
    assert not embedder.is_ready()

    await embedder.initialize()
    assert embedder.is_ready()
    assert attempts["n"] == 2


@pytest.mark.asyncio()
async def test_embedding_timeout():
    embedder = QueryEmbedder(factory_for(FakeBackend(delay=1.0)), dimensions=DIM, timeout=0.01)
    with pytest.raises(EmbeddingTimeout) as exc_info:
        await embedder.embed("slow")
    assert exc_info.value.retryable
    assert embedder.size() == 0


@pytest.mark.asyncio()
async def test_backend_error_becomes_unavailable():
    embedder = QueryEmbedder(factory_for(FakeBackend(error=RuntimeError("cuda"))), dimensions=DIM)
    with pytest.raises(EmbeddingUnavailable):
        await embedder.embed("anything")


@pytest.mark.asyncio()
async def test_prewarm_and_shutdown():
    backend = FakeBackend()
    embedder = QueryEmbedder(factory_for(backend), dimensions=DIM)
    warmed = await embedder.prewarm(["Wylder", "Executor", "wylder"])
    assert warmed == 3
    assert embedder.size() == 2
    assert len(backend.calls) == 2

    await embedder.shutdown()
    assert embedder.size() == 0
    assert not embedder.is_ready()
