# wiki_scout/crawler/models.py
"""
Data models for the WikiScout crawler.
"""
from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True, slots=True)
class CachedPage:
    """Raw HTML of one page as stored in the content cache."""

    url: str
    html: str
    fetched_at: float


@dataclass(slots=True)
class CacheMetadata:
    """Per-URL bookkeeping kept in ``metadata.json``."""

    url: str
    fetched_at: float
    content_hash: str
    etag: Optional[str] = None
    last_modified: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CacheStats:
    total_entries: int
    expired_entries: int
    total_size_bytes: int


@dataclass(frozen=True, slots=True)
class FrontierItem:
    """A queued URL and the depth at which it was first discovered."""

    url: str
    depth: int


@dataclass(slots=True)
class FetchOutcome:
    """Result of fetching (or reusing) one page."""

    url: str
    success: bool
    html: str = ""
    title: str = ""
    cached: bool = False
    error: Optional[str] = None
    fetched_at: float = field(default_factory=time.time)

    @classmethod
    def ok(cls, url: str, html: str, *, title: str = "", cached: bool = False) -> FetchOutcome:
        return cls(url=url, success=True, html=html, title=title, cached=cached)

    @classmethod
    def failure(cls, url: str, error: str) -> FetchOutcome:
        return cls(url=url, success=False, error=error)


@dataclass(frozen=True, slots=True)
class CrawlError:
    url: str
    error: str


@dataclass(frozen=True, slots=True)
class CrawlProgress:
    """Snapshot handed to the progress sink every N processed pages."""

    total_discovered: int
    total_visited: int
    total_queued: int
    current_depth: int
    pages_fetched: int
    pages_from_cache: int
    error_count: int
    started_at: float
    pages_per_second: float


@dataclass(slots=True)
class CrawlStats:
    total_pages: int = 0
    new_pages: int = 0
    cached_pages: int = 0
    error_pages: int = 0
    duration: float = 0.0
    max_depth_reached: int = 0


@dataclass(slots=True)
class CrawlResult:
    """Everything a crawl produced, including partial results after a stop."""

    results: List[FetchOutcome] = field(default_factory=list)
    visited: List[str] = field(default_factory=list)
    errors: List[CrawlError] = field(default_factory=list)
    depths: Dict[str, int] = field(default_factory=dict)
    stats: CrawlStats = field(default_factory=CrawlStats)
    cancelled: bool = False


@dataclass(slots=True)
class CacheLinkAnalysis:
    total_cached_pages: int
    total_links_found: int
    new_urls_to_discover: int
    urls_by_domain: Counter = field(default_factory=Counter)
