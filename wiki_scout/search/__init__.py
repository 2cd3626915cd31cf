# File: wiki_scout/search/__init__.py
"""wiki_scout.search: query embeddings, document index and hybrid ranking."""

from .content_types import ContentType
from .embeddings import EmbeddingCache, QueryEmbedder
from .hybrid import HybridSearchEngine, ScoredResult, SearchResponse
from .index import IndexedChunk, IndexHit, InMemoryDocumentIndex, SearchFilters
from .reranker import CrossEncoderReranker
from .service import SearchService

__all__ = [
    "ContentType",
    "CrossEncoderReranker",
    "EmbeddingCache",
    "HybridSearchEngine",
    "IndexHit",
    "IndexedChunk",
    "InMemoryDocumentIndex",
    "QueryEmbedder",
    "ScoredResult",
    "SearchFilters",
    "SearchResponse",
    "SearchService",
]
