# File: wiki_scout/crawler/__init__.py
"""wiki_scout.crawler: URL normalization, content cache and the BFS crawler."""

from .cache import ContentCache
from .crawler import BfsCrawler
from .fetcher import Fetcher
from .link_extractor import LinkExtractor
from .models import CachedPage, CrawlError, CrawlProgress, CrawlResult, CrawlStats, FetchOutcome, FrontierItem
from .rate_limiter import RateLimiter
from .url_normalizer import UrlNormalizer

__all__ = [
    "BfsCrawler",
    "CachedPage",
    "ContentCache",
    "CrawlError",
    "CrawlProgress",
    "CrawlResult",
    "CrawlStats",
    "FetchOutcome",
    "Fetcher",
    "FrontierItem",
    "LinkExtractor",
    "RateLimiter",
    "UrlNormalizer",
]
