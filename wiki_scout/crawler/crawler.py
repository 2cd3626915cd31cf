# wiki_scout/crawler/crawler.py
"""
Resumable breadth-first crawler.

The scheduling loop in :meth:`BfsCrawler.crawl` is the only code that touches
the frontier, the visited set and the discovered set; fetches run as worker
tasks and report back into the loop. The visited set is seeded from the
content cache, so a crawl started after a partial run skips everything that
was already fetched.
"""
from __future__ import annotations

import asyncio
import inspect
import time
from collections import Counter, deque
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Protocol, Set
from urllib.parse import urlsplit

from wiki_scout.crawler.cache import ContentCache
from wiki_scout.crawler.models import (
    CacheLinkAnalysis,
    CrawlError,
    CrawlProgress,
    CrawlResult,
    CrawlStats,
    FetchOutcome,
    FrontierItem,
)
from wiki_scout.crawler.url_normalizer import UrlNormalizer
from wiki_scout.errors import FetchFailure, InvalidURL
from wiki_scout.logger import get_logger

__all__ = ("BfsCrawler", "FetchCollaborator", "LinkParser", "ProgressSink")

log = get_logger("crawler")


class FetchCollaborator(Protocol):
    """Returns a failed :class:`FetchOutcome` or raises :class:`FetchFailure` for a page it cannot get."""

    async def fetch(self, url: str) -> FetchOutcome: ...


class LinkParser(Protocol):
    def extract_links(self, html: str, base_url: str) -> List[str]: ...


ProgressSink = Callable[[CrawlProgress], Optional[Awaitable[Any]]]


class _CrawlRun:
    """Mutable state of one crawl invocation."""

    def __init__(self, visited: Set[str]) -> None:
        self.started_at = time.time()
        self.started_mono = time.monotonic()
        self.visited = visited
        self.discovered: Set[str] = set(visited)
        self.frontier: Deque[FrontierItem] = deque()
        self.visited_order: List[str] = []
        self.depths: Dict[str, int] = {}
        self.results: List[FetchOutcome] = []
        self.errors: List[CrawlError] = []
        self.pages_fetched = 0
        self.pages_from_cache = 0
        self.max_depth_reached = 0

    def enqueue(self, url: str, depth: int) -> bool:
        if url in self.discovered:
            return False
        self.discovered.add(url)
        self.depths[url] = depth
        self.frontier.append(FrontierItem(url, depth))
        return True


class BfsCrawler:
    """Breadth-first crawler with resume, partial-failure tolerance and cooperative stop."""

    def __init__(
        self,
        normalizer: UrlNormalizer,
        cache: ContentCache,
        fetcher: FetchCollaborator,
        link_parser: LinkParser,
        *,
        concurrency: int = 5,
        fetch_timeout: Optional[float] = None,
        progress_interval: int = 10,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if progress_interval < 1:
            raise ValueError("progress_interval must be >= 1")
        self.normalizer = normalizer
        self.cache = cache
        self.fetcher = fetcher
        self.link_parser = link_parser
        self.concurrency = concurrency
        self.fetch_timeout = fetch_timeout
        self.progress_interval = progress_interval
        self._stop = asyncio.Event()
        self._sink_tasks: Set[asyncio.Task] = set()

    def stop(self) -> None:
        """Let in-flight fetches finish but pop nothing new."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    # ------------------------------------------------------------------ #
    # Entry points                                                       #
    # ------------------------------------------------------------------ #

    async def crawl(
        self,
        seeds: Iterable[str],
        *,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
        should_visit: Optional[Callable[[str], bool]] = None,
        on_progress: Optional[ProgressSink] = None,
        progress_interval: Optional[int] = None,
    ) -> CrawlResult:
        try:
            return await self._run(seeds, max_depth, max_pages, should_visit, on_progress, progress_interval)
        finally:
            # a stop() issued before the loop started still applies to this run
            self._stop.clear()

    async def _run(
        self,
        seeds: Iterable[str],
        max_depth: Optional[int],
        max_pages: Optional[int],
        should_visit: Optional[Callable[[str], bool]],
        on_progress: Optional[ProgressSink],
        progress_interval: Optional[int],
    ) -> CrawlResult:
        interval = progress_interval or self.progress_interval
        cached_keys = self.cache.list_keys()
        run = _CrawlRun(visited=set(cached_keys))
        log.info("Initialized visited set from cache: %d urls", len(cached_keys))

        seed_list = list(seeds)
        for seed in seed_list:
            try:
                url = self.normalizer.normalize(self.normalizer.to_absolute(seed))
            except InvalidURL as exc:
                log.warning("Skipping invalid seed %r: %s", seed, exc)
                continue
            if url not in run.visited:
                run.enqueue(url, 0)

        log.info(
            "Starting crawl: seeds=%d queued=%d already_visited=%d max_depth=%s max_pages=%s",
            len(seed_list), len(run.frontier), len(run.visited), max_depth, max_pages,
        )

        in_flight: Dict[asyncio.Task, FrontierItem] = {}
        try:
            while True:
                self._fill(run, in_flight, max_depth, max_pages, should_visit)
                if not in_flight:
                    break
                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=lambda t: t.get_name()):
                    item = in_flight.pop(task)
                    self._record(run, item, task.result())
                    if on_progress is not None and len(run.results) % interval == 0:
                        self._emit_progress(on_progress, run, item.depth)
        except asyncio.CancelledError:
            for task in in_flight:
                task.cancel()
            await asyncio.gather(*in_flight, return_exceptions=True)
            raise

        result = self._finish(run)
        if self.stopping:
            result.cancelled = True
            log.info("Crawl stopped early after %d pages", result.stats.total_pages)
        return result

    async def crawl_from_cache(
        self,
        *,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
        on_progress: Optional[ProgressSink] = None,
    ) -> CrawlResult:
        """Crawl only the links found in cached pages that are not cached yet."""
        cache_urls = self.cache.list_keys()
        log.info("Starting crawl from cache: %d cached pages", len(cache_urls))
        all_links = self._links_from_cache(cache_urls)

        cached = set(cache_urls)
        new_urls = [link for link in all_links if link not in cached]
        log.info("New URLs to crawl: %d (already cached: %d)", len(new_urls), len(all_links) - len(new_urls))

        if not new_urls:
            log.info("No new URLs to crawl - cache is complete")
            self._stop.clear()
            return CrawlResult(visited=sorted(cached), stats=CrawlStats(cached_pages=len(cache_urls)))

        return await self.crawl(new_urls, max_depth=max_depth, max_pages=max_pages, on_progress=on_progress)

    async def analyze_cache_links(self) -> CacheLinkAnalysis:
        cache_urls = self.cache.list_keys()
        all_links = self._links_from_cache(cache_urls)
        by_domain: Counter = Counter(urlsplit(link).hostname or "" for link in all_links)
        cached = set(cache_urls)
        return CacheLinkAnalysis(
            total_cached_pages=len(cache_urls),
            total_links_found=len(all_links),
            new_urls_to_discover=sum(1 for link in all_links if link not in cached),
            urls_by_domain=by_domain,
        )

    # ------------------------------------------------------------------ #
    # Scheduling loop internals                                          #
    # ------------------------------------------------------------------ #

    def _fill(
        self,
        run: _CrawlRun,
        in_flight: Dict[asyncio.Task, FrontierItem],
        max_depth: Optional[int],
        max_pages: Optional[int],
        should_visit: Optional[Callable[[str], bool]],
    ) -> None:
        while run.frontier and len(in_flight) < self.concurrency and not self.stopping:
            if max_pages is not None and len(run.results) + len(in_flight) >= max_pages:
                if not in_flight:
                    log.info("Max pages limit reached: %d", max_pages)
                return
            item = run.frontier[0]
            # a deeper item waits until the shallower level has drained
            if in_flight and item.depth > min(i.depth for i in in_flight.values()):
                return
            run.frontier.popleft()
            if item.url in run.visited:
                continue
            if max_depth is not None and item.depth > max_depth:
                continue
            if should_visit is not None and not should_visit(item.url):
                continue

            run.visited.add(item.url)
            run.visited_order.append(item.url)
            run.max_depth_reached = max(run.max_depth_reached, item.depth)
            seq = len(run.visited_order)
            task = asyncio.create_task(self._visit(item.url), name=f"crawl-{seq:08d}")
            in_flight[task] = item

    async def _visit(self, url: str) -> FetchOutcome:
        cached = self.cache.get(url)
        if cached is not None:
            log.debug("Cache hit %s", url)
            return FetchOutcome.ok(url, cached.html, cached=True)
        try:
            if self.fetch_timeout is not None:
                outcome = await asyncio.wait_for(self.fetcher.fetch(url), timeout=self.fetch_timeout)
            else:
                outcome = await self.fetcher.fetch(url)
        except asyncio.TimeoutError:
            return FetchOutcome.failure(url, f"fetch timed out after {self.fetch_timeout}s")
        except FetchFailure as exc:
            return FetchOutcome.failure(url, exc.message)
        except Exception as exc:
            return FetchOutcome.failure(url, f"{type(exc).__name__}: {exc}")

        if outcome.success and not outcome.cached:
            try:
                self.cache.set(url, outcome.html)
            except OSError as exc:
                log.error("Could not cache %s: %s", url, exc)
        return outcome

    def _record(self, run: _CrawlRun, item: FrontierItem, outcome: FetchOutcome) -> None:
        run.results.append(outcome)
        if not outcome.success:
            run.errors.append(CrawlError(item.url, outcome.error or "unknown error"))
            log.warning("Page fetch failed %s: %s", item.url, outcome.error)
            return

        if outcome.cached:
            run.pages_from_cache += 1
        else:
            run.pages_fetched += 1

        try:
            links = self.link_parser.extract_links(outcome.html, item.url)
        except Exception as exc:
            run.errors.append(CrawlError(item.url, f"link extraction failed: {exc}"))
            log.warning("Link extraction failed %s: %s", item.url, exc)
            return

        new_links = sum(1 for link in links if run.enqueue(link, item.depth + 1))
        log.debug(
            "Page processed %s depth=%d links=%d new=%d queued=%d",
            item.url, item.depth, len(links), new_links, len(run.frontier),
        )

    def _emit_progress(self, sink: ProgressSink, run: _CrawlRun, depth: int) -> None:
        elapsed = time.monotonic() - run.started_mono
        progress = CrawlProgress(
            total_discovered=len(run.discovered),
            total_visited=len(run.visited),
            total_queued=len(run.frontier),
            current_depth=depth,
            pages_fetched=run.pages_fetched,
            pages_from_cache=run.pages_from_cache,
            error_count=len(run.errors),
            started_at=run.started_at,
            pages_per_second=len(run.results) / elapsed if elapsed > 0 else 0.0,
        )
        try:
            ret = sink(progress)
        except Exception as exc:
            log.warning("Progress sink raised: %s", exc)
            return
        if inspect.isawaitable(ret):
            task = asyncio.ensure_future(ret)
            self._sink_tasks.add(task)
            task.add_done_callback(self._sink_done)

    def _sink_done(self, task: asyncio.Task) -> None:
        self._sink_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.warning("Progress sink raised: %s", task.exception())

    def _finish(self, run: _CrawlRun) -> CrawlResult:
        duration = time.monotonic() - run.started_mono
        stats = CrawlStats(
            total_pages=len(run.results),
            new_pages=run.pages_fetched,
            cached_pages=run.pages_from_cache,
            error_pages=len(run.errors),
            duration=duration,
            max_depth_reached=run.max_depth_reached,
        )
        log.info(
            "Crawl complete: %d pages (%d new, %d cached, %d errors) in %.1fs, max depth %d, discovered %d",
            stats.total_pages, stats.new_pages, stats.cached_pages, stats.error_pages,
            duration, stats.max_depth_reached, len(run.discovered),
        )
        return CrawlResult(
            results=run.results,
            visited=sorted(run.visited),
            errors=run.errors,
            depths=dict(run.depths),
            stats=stats,
        )

    def _links_from_cache(self, cache_urls: List[str]) -> List[str]:
        links: Dict[str, None] = {}
        for processed, url in enumerate(cache_urls, start=1):
            page = self.cache.get(url)
            if page is not None:
                for link in self.link_parser.extract_links(page.html, url):
                    links.setdefault(link)
            if processed % 100 == 0:
                log.info("Extracting links from cache: %d/%d, %d links", processed, len(cache_urls), len(links))
        log.info("Link extraction from cache complete: %d links from %d pages", len(links), len(cache_urls))
        return list(links)
