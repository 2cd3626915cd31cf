# File: tests/conftest.py
import asyncio
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import pytest

from wiki_scout.crawler.cache import ContentCache
from wiki_scout.crawler.crawler import BfsCrawler
from wiki_scout.crawler.link_extractor import LinkExtractor
from wiki_scout.crawler.models import FetchOutcome
from wiki_scout.crawler.url_normalizer import DEFAULT_BASE_URL, UrlNormalizer

BASE = DEFAULT_BASE_URL


def wiki_page(*hrefs: str, title: str = "Page", outside: Iterable[str] = ()) -> str:
    """
    Build a minimal Fextralife-like page.
    *hrefs* go into the content block, *outside* into the navigation bar.
    """
    nav = "".join(f'<a href="{h}">nav</a>' for h in outside)
    body = "".join(f'<a href="{h}">{h}</a>' for h in hrefs)
    return (
        f"<html><head><title>{title}</title></head><body>"
        f"<nav>{nav}</nav>"
        f'<div id="wiki-content-block">{body}</div>'
        f"</body></html>"
    )


class FakeFetcher:
    """
    In-memory fetch collaborator over a link graph.
    Keys of *pages* are normalized URLs; unknown URLs come back as HTTP 404.
    """

    def __init__(
        self,
        pages: Dict[str, str],
        *,
        failing: Optional[Set[str]] = None,
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.pages = pages
        self.failing = failing or set()
        self.delays = delays or {}
        self.calls: List[str] = []
        self.on_fetch = None

    async def fetch(self, url: str) -> FetchOutcome:
        self.calls.append(url)
        if self.on_fetch is not None:
            self.on_fetch(url)
        delay = self.delays.get(url, 0)
        if delay:
            await asyncio.sleep(delay)
        else:
            await asyncio.sleep(0)
        if url in self.failing:
            return FetchOutcome.failure(url, "HTTP 500")
        if url not in self.pages:
            return FetchOutcome.failure(url, "HTTP 404")
        return FetchOutcome.ok(url, self.pages[url], title="Page")


@pytest.fixture()
def normalizer() -> UrlNormalizer:
    return UrlNormalizer(BASE)


@pytest.fixture()
def url(normalizer):
    """Return a helper that turns a wiki path into its normalized URL."""
    return lambda path: normalizer.normalize(BASE + path)


@pytest.fixture()
def cache_dir(tmp_path) -> Path:
    return tmp_path / "cache"


@pytest.fixture()
def cache(cache_dir, normalizer) -> ContentCache:
    return ContentCache(cache_dir, normalizer)


@pytest.fixture()
def make_crawler(normalizer, cache):
    """Factory building a BfsCrawler over a FakeFetcher."""

    def _make(fetcher, **kwargs) -> BfsCrawler:
        return BfsCrawler(normalizer, cache, fetcher, LinkExtractor(normalizer), **kwargs)

    return _make
