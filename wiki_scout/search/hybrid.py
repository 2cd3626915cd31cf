"""Hybrid search: fuse lexical and vector rankings into one result list.

Without a query vector the engine runs a fulltext search and returns the raw
lexical scores. With a vector it issues both index queries concurrently,
max-normalizes each list and combines them by identifier:

* in both lists: ``lexical_weight * nl + vector_weight * nv``
* in one list only: ``weight * n * single_source_penalty``

If one of the two queries fails the engine answers from the other one and
reports that through ``mode``. Ties are broken by identifier, so the same
index state, query and vector always give the same ordering.

When a reranker is attached and the query has text, the top
``limit * candidate_multiplier`` candidates are rescored by it and reordered
by that score. A reranker failure keeps the fused order.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Awaitable, Dict, List, Literal, Optional, Sequence, Tuple

from wiki_scout.errors import IndexQueryFailure
from wiki_scout.logger import get_logger
from wiki_scout.search.index import DocumentIndex, IndexHit, SearchFilters
from wiki_scout.search.reranker import Reranker

__all__ = ("HybridSearchEngine", "ScoredResult", "SearchMode", "SearchResponse", "SearchTiming")

log = get_logger("hybrid")

SearchMode = Literal["hybrid", "vector", "fulltext"]


@dataclass(frozen=True, slots=True)
class ScoredResult:
    id: str
    fused_score: float
    lexical_score: Optional[float] = None
    vector_score: Optional[float] = None
    rerank_score: Optional[float] = None


@dataclass(slots=True)
class SearchTiming:
    """Milliseconds spent per stage."""

    total: float = 0.0
    search: float = 0.0
    embedding: Optional[float] = None
    rerank: Optional[float] = None


@dataclass(slots=True)
class SearchResponse:
    results: List[ScoredResult]
    mode: SearchMode
    timing: SearchTiming = field(default_factory=SearchTiming)

    @property
    def count(self) -> int:
        return len(self.results)


class HybridSearchEngine:
    """Read-only ranking layer over a :class:`DocumentIndex`."""

    def __init__(
        self,
        index: DocumentIndex,
        *,
        lexical_weight: float = 0.5,
        vector_weight: float = 0.5,
        single_source_penalty: float = 0.8,
        candidate_multiplier: int = 3,
        default_limit: int = 10,
        max_limit: int = 100,
        query_timeout: Optional[float] = None,
        reranker: Optional[Reranker] = None,
    ) -> None:
        if lexical_weight < 0 or vector_weight < 0 or lexical_weight + vector_weight <= 0:
            raise ValueError("weights must be >= 0 and not both 0")
        if not 0 <= single_source_penalty <= 1:
            raise ValueError("single_source_penalty must be within [0, 1]")
        self.index = index
        self.lexical_weight = lexical_weight
        self.vector_weight = vector_weight
        self.single_source_penalty = single_source_penalty
        self.candidate_multiplier = max(1, candidate_multiplier)
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.query_timeout = query_timeout
        self.reranker = reranker

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            limit = self.default_limit
        return max(1, min(int(limit), self.max_limit))

    async def search(
        self,
        query: str,
        vector: Optional[Sequence[float]] = None,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        *,
        rerank: Optional[bool] = None,
    ) -> SearchResponse:
        """Rank the index for *query* and/or *vector*.

        *rerank* defaults to on whenever a reranker is attached; it never
        applies to a query without text.
        """
        started = time.perf_counter()
        filters = filters or SearchFilters()
        limit = self.clamp_limit(limit)
        text = (query or "").strip()
        reranking = self.reranker is not None and rerank is not False and bool(text)
        pool = limit * self.candidate_multiplier if reranking else limit

        if not text and vector is None:
            return SearchResponse([], "fulltext")

        if vector is None:
            hits = await self._query("lexical", self.index.lexical_query(text, filters, pool))
            results = self._single(hits, "lexical")
            mode: SearchMode = "fulltext"
        elif not text:
            hits = await self._query("vector", self.index.vector_query(vector, filters, limit))
            results = self._single(hits, "vector")
            mode = "vector"
        else:
            results, mode = await self._hybrid(text, vector, filters, limit)

        ranked = self._rank(results)
        search_ms = (time.perf_counter() - started) * 1000
        timing = SearchTiming(search=search_ms)
        if reranking and ranked:
            rerank_started = time.perf_counter()
            try:
                ranked = await self._rerank(text, ranked[:pool])
            except Exception as exc:
                log.warning("Reranking failed, keeping fused order: %s", exc)
            else:
                timing.rerank = (time.perf_counter() - rerank_started) * 1000
        timing.total = (time.perf_counter() - started) * 1000
        return SearchResponse(results=ranked[:limit], mode=mode, timing=timing)

    async def find_similar(
        self,
        vector: Sequence[float],
        *,
        filters: Optional[SearchFilters] = None,
        limit: int = 5,
        exclude_id: Optional[str] = None,
    ) -> SearchResponse:
        """Vector-only neighbours of *vector*, optionally without the item itself."""
        limit = self.clamp_limit(limit)
        response = await self.search("", vector, filters, limit + 1, rerank=False)
        results = [r for r in response.results if r.id != exclude_id]
        response.results = results[:limit]
        return response

    # ------------------------------------------------------------------ #

    async def _hybrid(
        self,
        text: str,
        vector: Sequence[float],
        filters: SearchFilters,
        limit: int,
    ) -> Tuple[List[ScoredResult], SearchMode]:
        candidates = limit * self.candidate_multiplier
        lexical, semantic = await asyncio.gather(
            self._query("lexical", self.index.lexical_query(text, filters, candidates)),
            self._query("vector", self.index.vector_query(vector, filters, candidates)),
            return_exceptions=True,
        )
        lexical_failed = isinstance(lexical, BaseException)
        vector_failed = isinstance(semantic, BaseException)
        for outcome in (lexical, semantic):
            if isinstance(outcome, BaseException) and not isinstance(outcome, IndexQueryFailure):
                raise outcome

        if lexical_failed and vector_failed:
            raise IndexQueryFailure("both lexical and vector queries failed") from lexical
        if vector_failed:
            log.warning("Vector query failed, answering from lexical results: %s", semantic)
            return self._single(lexical, "lexical"), "fulltext"
        if lexical_failed:
            log.warning("Lexical query failed, answering from vector results: %s", lexical)
            return self._single(semantic, "vector"), "vector"
        return self.fuse(lexical, semantic), "hybrid"

    async def _rerank(self, text: str, candidates: List[ScoredResult]) -> List[ScoredResult]:
        passages = [self._passage(r.id) for r in candidates]
        scores = await self.reranker.score(text, passages)
        if len(scores) != len(candidates):
            raise ValueError(f"reranker returned {len(scores)} scores for {len(candidates)} passages")
        rescored = [replace(r, rerank_score=float(s)) for r, s in zip(candidates, scores)]
        return sorted(rescored, key=lambda r: (-r.rerank_score, -r.fused_score, r.id))

    def _passage(self, doc_id: str) -> str:
        chunk = self.index.get(doc_id)
        if chunk is None:
            return doc_id
        if chunk.section:
            return f"{chunk.name} ({chunk.section}): {chunk.content}"
        return f"{chunk.name}: {chunk.content}"

    async def _query(self, path: str, call: Awaitable[List[IndexHit]]) -> List[IndexHit]:
        try:
            if self.query_timeout is not None:
                return await asyncio.wait_for(call, timeout=self.query_timeout)
            return await call
        except asyncio.TimeoutError as exc:
            raise IndexQueryFailure(f"{path} query timed out after {self.query_timeout}s", path=path) from exc
        except IndexQueryFailure:
            raise
        except Exception as exc:
            raise IndexQueryFailure(f"{path} query failed: {exc}", path=path) from exc

    def fuse(self, lexical: Sequence[IndexHit], semantic: Sequence[IndexHit]) -> List[ScoredResult]:
        """Combine two ranked hit lists by identifier (pure, synchronous)."""
        lex_raw = _best_scores(lexical)
        vec_raw = _best_scores(semantic)
        lex_norm = _max_normalize(lex_raw)
        vec_norm = _max_normalize(vec_raw)

        fused: List[ScoredResult] = []
        for doc_id in lex_raw.keys() | vec_raw.keys():
            in_lex = doc_id in lex_raw
            in_vec = doc_id in vec_raw
            if in_lex and in_vec:
                score = self.lexical_weight * lex_norm[doc_id] + self.vector_weight * vec_norm[doc_id]
            elif in_lex:
                score = self.lexical_weight * lex_norm[doc_id] * self.single_source_penalty
            else:
                score = self.vector_weight * vec_norm[doc_id] * self.single_source_penalty
            fused.append(
                ScoredResult(
                    id=doc_id,
                    fused_score=score,
                    lexical_score=lex_raw.get(doc_id),
                    vector_score=vec_raw.get(doc_id),
                )
            )
        return fused

    @staticmethod
    def _single(hits: Sequence[IndexHit], path: str) -> List[ScoredResult]:
        results = []
        for doc_id, score in _best_scores(hits).items():
            if path == "lexical":
                results.append(ScoredResult(doc_id, score, lexical_score=score))
            else:
                results.append(ScoredResult(doc_id, score, vector_score=score))
        return results

    @staticmethod
    def _rank(results: List[ScoredResult]) -> List[ScoredResult]:
        return sorted(results, key=lambda r: (-r.fused_score, r.id))


def _best_scores(hits: Sequence[IndexHit]) -> Dict[str, float]:
    scores: Dict[str, float] = {}
    for hit in hits:
        if hit.id not in scores or hit.score > scores[hit.id]:
            scores[hit.id] = float(hit.score)
    return scores


def _max_normalize(scores: Dict[str, float]) -> Dict[str, float]:
    top = max(scores.values(), default=0.0)
    if top <= 0:
        return {k: 0.0 for k in scores}
    return {k: max(v, 0.0) / top for k, v in scores.items()}
