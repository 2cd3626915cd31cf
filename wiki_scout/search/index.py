"""Document index used by the hybrid search engine.

:class:`DocumentIndex` is the read/write contract the engine depends on.
:class:`InMemoryDocumentIndex` is the bundled implementation: an in-memory
SQLite FTS5 table ranked by its weighted ``bm25()`` for lexical queries,
cosine similarity over stored embeddings for vector queries, and a JSON file
for persistence between runs.
"""
from __future__ import annotations

import json
import re
import sqlite3
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional, Protocol, Sequence, Union

import numpy as np

from wiki_scout.search.content_types import ContentType
from wiki_scout.logger import get_logger

__all__ = (
    "DocumentIndex",
    "FIELD_BOOST",
    "IndexHit",
    "IndexedChunk",
    "InMemoryDocumentIndex",
    "SearchFilters",
    "tokenize",
)

log = get_logger("index")

# Entity names are the strongest signal; the type field is categorical and
# should be filtered on, not matched as text.
FIELD_BOOST: Mapping[str, float] = {
    "name": 5.0,
    "body": 2.0,
    "tags": 1.5,
    "section": 1.0,
    "kind": 0.3,
}

_FTS_DDL = """
CREATE VIRTUAL TABLE chunks_fts USING fts5(
    chunk_id UNINDEXED,
    ctype UNINDEXED,
    name,
    body,
    tags,
    section,
    kind
)
"""

# bm25() takes one weight per column, unindexed ones included
_BM25 = "bm25(chunks_fts, 0.0, 0.0, {})".format(", ".join(str(w) for w in FIELD_BOOST.values()))

_TOKEN_RE = re.compile(r"[a-z0-9]+(?:'[a-z0-9]+)?")

STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "a", "an", "the", "is", "are", "was", "were", "be", "been", "do", "does",
        "did", "what", "which", "who", "how", "when", "where", "why", "i", "me",
        "my", "you", "your", "it", "its", "of", "in", "on", "to", "for", "with",
        "and", "or", "at", "by", "from", "this", "that", "can", "should",
    }
)


def tokenize(text: str) -> List[str]:
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in STOP_WORDS]


@dataclass(frozen=True, slots=True)
class SearchFilters:
    types: Optional[FrozenSet[ContentType]] = None

    def accepts(self, content_type: ContentType) -> bool:
        return not self.types or content_type in self.types


@dataclass(frozen=True, slots=True)
class IndexHit:
    id: str
    score: float


@dataclass(slots=True)
class IndexedChunk:
    """One searchable chunk of wiki content."""

    id: str
    type: ContentType
    name: str
    content: str
    section: str = ""
    tags: List[str] = field(default_factory=list)
    source_url: str = ""
    embedding: Optional[List[float]] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> IndexedChunk:
        return cls(
            id=str(data["id"]),
            type=ContentType.parse(data.get("type")),
            name=data.get("name", ""),
            content=data.get("content", ""),
            section=data.get("section", ""),
            tags=list(data.get("tags") or []),
            source_url=data.get("source_url", ""),
            embedding=data.get("embedding"),
        )


class DocumentIndex(Protocol):
    async def lexical_query(self, text: str, filters: SearchFilters, limit: int) -> List[IndexHit]: ...

    async def vector_query(self, vector: Sequence[float], filters: SearchFilters, limit: int) -> List[IndexHit]: ...

    async def upsert(self, chunk: IndexedChunk) -> None: ...

    def get(self, chunk_id: str) -> Optional[IndexedChunk]: ...


@dataclass(slots=True)
class _Posting:
    chunk: IndexedChunk
    unit: Optional[np.ndarray]


class InMemoryDocumentIndex:
    """FTS5 + cosine index held in memory; reads never mutate state."""

    def __init__(self, *, dimensions: Optional[int] = None) -> None:
        self.dimensions = dimensions
        self._docs: Dict[str, _Posting] = {}
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        self._conn.execute(_FTS_DDL)

    # ------------------------------------------------------------------ #
    # Write path                                                         #
    # ------------------------------------------------------------------ #

    async def upsert(self, chunk: IndexedChunk) -> None:
        self.add(chunk)

    def add(self, chunk: IndexedChunk) -> None:
        unit = None
        if chunk.embedding is not None:
            vec = np.asarray(chunk.embedding, dtype=np.float32)
            if self.dimensions is not None and vec.shape != (self.dimensions,):
                raise ValueError(f"chunk {chunk.id}: expected {self.dimensions} dimensions, got {vec.shape[0]}")
            norm = float(np.linalg.norm(vec))
            unit = vec / norm if norm > 0 else vec

        with self._lock, self._conn:
            self._conn.execute("DELETE FROM chunks_fts WHERE chunk_id = ?", (chunk.id,))
            self._conn.execute(
                "INSERT INTO chunks_fts (chunk_id, ctype, name, body, tags, section, kind)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    chunk.id,
                    chunk.type.value,
                    chunk.name,
                    chunk.content,
                    " ".join(chunk.tags),
                    chunk.section,
                    chunk.type.value,
                ),
            )
            self._docs[chunk.id] = _Posting(chunk, unit)

    def remove(self, chunk_id: str) -> bool:
        with self._lock, self._conn:
            if self._docs.pop(chunk_id, None) is None:
                return False
            self._conn.execute("DELETE FROM chunks_fts WHERE chunk_id = ?", (chunk_id,))
            return True

    def clear(self) -> None:
        with self._lock, self._conn:
            self._docs.clear()
            self._conn.execute("DELETE FROM chunks_fts")

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------ #
    # Read path                                                          #
    # ------------------------------------------------------------------ #

    async def lexical_query(self, text: str, filters: SearchFilters, limit: int) -> List[IndexHit]:
        return self.lexical_search(text, filters, limit)

    async def vector_query(self, vector: Sequence[float], filters: SearchFilters, limit: int) -> List[IndexHit]:
        return self.vector_search(vector, filters, limit)

    def lexical_search(self, text: str, filters: SearchFilters, limit: int) -> List[IndexHit]:
        terms = tokenize(text)
        if not terms or limit < 1:
            return []
        # any term may match; bm25() ranks documents matching more of them higher
        match = " OR ".join(f'"{term}"' for term in dict.fromkeys(terms))
        sql = f"SELECT chunk_id, {_BM25} AS score FROM chunks_fts WHERE chunks_fts MATCH ?"
        params: list = [match]
        if filters.types:
            types = sorted(t.value for t in filters.types)
            sql += f" AND ctype IN ({','.join('?' * len(types))})"
            params.extend(types)
        sql += " ORDER BY score, chunk_id LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        # bm25() is negated so that better matches sort first
        return [IndexHit(chunk_id, -score) for chunk_id, score in rows]

    def vector_search(self, vector: Sequence[float], filters: SearchFilters, limit: int) -> List[IndexHit]:
        if limit < 1:
            return []
        query = np.asarray(vector, dtype=np.float32)
        norm = float(np.linalg.norm(query))
        if norm == 0:
            return []
        query = query / norm
        with self._lock:
            candidates = [
                p for p in self._docs.values()
                if p.unit is not None and filters.accepts(p.chunk.type)
            ]
        if not candidates:
            return []
        matrix = np.stack([p.unit for p in candidates])
        if matrix.shape[1] != query.shape[0]:
            raise ValueError(f"query has {query.shape[0]} dimensions, index has {matrix.shape[1]}")
        scores = matrix @ query
        hits = [IndexHit(p.chunk.id, float(s)) for p, s in zip(candidates, scores)]
        hits.sort(key=lambda h: (-h.score, h.id))
        return hits[:limit]

    def get(self, chunk_id: str) -> Optional[IndexedChunk]:
        posting = self._docs.get(chunk_id)
        return posting.chunk if posting else None

    def count(self) -> int:
        return len(self._docs)

    __len__ = count

    # ------------------------------------------------------------------ #
    # Persistence                                                        #
    # ------------------------------------------------------------------ #

    def save(self, path: Union[str, Path]) -> Path:
        output = Path(path)
        output.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            data = {
                "dimensions": self.dimensions,
                "chunks": [p.chunk.to_dict() for p in self._docs.values()],
            }
        output.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        log.info("Index saved to %s (%d chunks)", output, len(data["chunks"]))
        return output

    @classmethod
    def load(cls, path: Union[str, Path]) -> InMemoryDocumentIndex:
        source = Path(path)
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid index file {source}: {exc}") from exc
        index = cls(dimensions=data.get("dimensions"))
        for raw in data.get("chunks", []):
            index.add(IndexedChunk.from_dict(raw))
        log.info("Index restored from %s (%d chunks)", source, index.count())
        return index
