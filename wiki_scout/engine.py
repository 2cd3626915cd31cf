# File: wiki_scout/engine.py
"""wiki_scout.engine: wires config into crawler and search components."""

from __future__ import annotations

import asyncio
import signal
from typing import Awaitable, Callable, Iterable, Optional

from wiki_scout.config import ScoutConfig
from wiki_scout.crawler.cache import ContentCache
from wiki_scout.crawler.crawler import BfsCrawler, ProgressSink
from wiki_scout.crawler.fetcher import Fetcher
from wiki_scout.crawler.link_extractor import LinkExtractor
from wiki_scout.crawler.models import CacheLinkAnalysis, CrawlResult
from wiki_scout.crawler.rate_limiter import RateLimiter
from wiki_scout.crawler.url_normalizer import UrlNormalizer
from wiki_scout.errors import InvalidURL
from wiki_scout.logger import logger
from wiki_scout.search.embeddings import EmbeddingCache, QueryEmbedder, SentenceTransformerBackend
from wiki_scout.search.hybrid import HybridSearchEngine
from wiki_scout.search.index import DocumentIndex, InMemoryDocumentIndex
from wiki_scout.search.reranker import CrossEncoderReranker
from wiki_scout.search.service import SearchService

__all__ = ["Engine", "start_crawl", "build_search_service"]


class Engine:
    """Facade for the CLI and tests: owns the HTTP session and the crawler built from config."""

    def __init__(self, config: ScoutConfig) -> None:
        self.config = config
        self.normalizer = UrlNormalizer(str(config.crawl.base_url))
        self.cache = ContentCache(
            config.cache.cache_dir,
            self.normalizer,
            ttl_seconds=config.cache.ttl_seconds,
        )
        self._session = None
        self.crawler: Optional[BfsCrawler] = None

    async def __aenter__(self) -> Engine:
        crawl = self.config.crawl
        self._session = Fetcher.create_session(timeout=crawl.timeout, user_agent=crawl.user_agent)
        fetcher = Fetcher(
            self._session,
            RateLimiter(crawl.rate_limit),
            retry_times=crawl.retry_times,
            backoff_base=crawl.backoff_base,
        )
        self.crawler = BfsCrawler(
            self.normalizer,
            self.cache,
            fetcher,
            LinkExtractor(self.normalizer),
            concurrency=crawl.concurrency,
            fetch_timeout=crawl.timeout * (crawl.retry_times + 1),
            progress_interval=crawl.progress_interval,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _require_crawler(self) -> BfsCrawler:
        if self.crawler is None:
            raise RuntimeError("Engine is not started; use 'async with Engine(config)'")
        return self.crawler

    async def crawl(
        self,
        seeds: Optional[Iterable[str]] = None,
        *,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
        category: Optional[str] = None,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressSink] = None,
    ) -> CrawlResult:
        crawl = self.config.crawl
        seed_list = list(seeds) if seeds is not None else crawl.seeds
        category = category or crawl.category
        return await self._bounded(
            self._require_crawler().crawl(
                seed_list,
                max_depth=max_depth if max_depth is not None else crawl.max_depth,
                max_pages=max_pages if max_pages is not None else crawl.max_pages,
                should_visit=self._category_filter(seed_list, category) if category else None,
                on_progress=on_progress,
            ),
            timeout,
        )

    async def crawl_from_cache(
        self,
        *,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressSink] = None,
    ) -> CrawlResult:
        crawl = self.config.crawl
        return await self._bounded(
            self._require_crawler().crawl_from_cache(
                max_depth=max_depth if max_depth is not None else crawl.max_depth,
                max_pages=max_pages if max_pages is not None else crawl.max_pages,
                on_progress=on_progress,
            ),
            timeout,
        )

    async def analyze_cache(self) -> CacheLinkAnalysis:
        return await self._require_crawler().analyze_cache_links()

    def stop(self) -> None:
        """Ask the running crawl to finish its in-flight fetches and return."""
        if self.crawler is not None and not self.crawler.stopping:
            logger.info("Stop requested, waiting for in-flight fetches")
            self.crawler.stop()

    async def _bounded(self, run: Awaitable[CrawlResult], timeout: Optional[float]) -> CrawlResult:
        """Await *run*; once *timeout* expires, stop the crawl instead of cancelling it."""
        if timeout is None:
            return await run
        timer = asyncio.get_running_loop().call_later(timeout, self._stop_on_timeout, timeout)
        try:
            return await run
        finally:
            timer.cancel()

    def _stop_on_timeout(self, timeout: float) -> None:
        logger.warning("Crawl timeout of %ss reached", timeout)
        self.stop()

    def _category_filter(self, seeds: Iterable[str], category: str) -> Callable[[str], bool]:
        exempt = set()
        for seed in seeds:
            try:
                exempt.add(self.normalizer.normalize(self.normalizer.to_absolute(seed)))
            except InvalidURL:
                continue

        def should_visit(url: str) -> bool:
            if url in exempt:
                return True
            if self.normalizer.should_exclude_from_category(url, category):
                logger.debug("Excluded from %s listing: %s", category, url)
                return False
            return True

        return should_visit


def _log_progress(progress) -> None:
    logger.info(
        "Progress: visited=%d discovered=%d queued=%d depth=%d fetched=%d cached=%d errors=%d (%.2f pages/s)",
        progress.total_visited, progress.total_discovered, progress.total_queued,
        progress.current_depth, progress.pages_fetched, progress.pages_from_cache,
        progress.error_count, progress.pages_per_second,
    )


async def start_crawl(
    cfg: ScoutConfig,
    seeds: Optional[Iterable[str]] = None,
    *,
    from_cache: bool = False,
    max_depth: Optional[int] = None,
    max_pages: Optional[int] = None,
    category: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CrawlResult:
    """
    Run one crawl (or crawl-from-cache) inside a managed Engine.
    SIGINT and *timeout* both stop the crawl cooperatively; the partial result is returned.
    """
    async with Engine(cfg) as engine:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, engine.stop)
            interruptible = True
        except (NotImplementedError, RuntimeError):
            interruptible = False
        try:
            if from_cache:
                return await engine.crawl_from_cache(
                    max_depth=max_depth, max_pages=max_pages, timeout=timeout, on_progress=_log_progress
                )
            return await engine.crawl(
                seeds, max_depth=max_depth, max_pages=max_pages, category=category,
                timeout=timeout, on_progress=_log_progress,
            )
        finally:
            if interruptible:
                loop.remove_signal_handler(signal.SIGINT)


def build_search_service(
    cfg: ScoutConfig,
    index: Optional[DocumentIndex] = None,
    *,
    use_embeddings: bool = True,
    use_reranker: bool = True,
) -> SearchService:
    """Build the query-time service graph once, at process start.

    The reranker is attached only when both *use_reranker* and
    ``search.rerank`` are set.
    """
    search = cfg.search
    reranker = None
    if use_reranker and search.rerank:
        reranker = CrossEncoderReranker(search.rerank_model)
    if index is None:
        if search.index_path is None:
            raise ValueError("search.index_path is not configured")
        index = InMemoryDocumentIndex.load(search.index_path)
    engine = HybridSearchEngine(
        index,
        lexical_weight=search.lexical_weight,
        vector_weight=search.vector_weight,
        single_source_penalty=search.single_source_penalty,
        candidate_multiplier=search.candidate_multiplier,
        default_limit=search.default_limit,
        max_limit=search.max_limit,
        query_timeout=search.query_timeout,
        reranker=reranker,
    )
    embedder = None
    if use_embeddings:
        emb = cfg.embedding
        embedder = QueryEmbedder(
            SentenceTransformerBackend.factory(emb.model_name),
            dimensions=emb.dimensions,
            cache=EmbeddingCache(emb.cache_size, emb.cache_ttl),
            timeout=emb.timeout,
        )
    return SearchService(engine, embedder, prewarm_queries=cfg.embedding.prewarm_queries if use_embeddings else ())
