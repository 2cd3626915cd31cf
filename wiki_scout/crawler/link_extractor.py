# wiki_scout/crawler/link_extractor.py
"""
Link extraction from wiki content regions.
"""
from __future__ import annotations

from typing import List, Sequence

from bs4 import BeautifulSoup
from bs4.element import Tag

from wiki_scout.crawler.url_normalizer import UrlNormalizer
from wiki_scout.errors import InvalidURL

# regions that hold content links on Fextralife pages
CONTENT_SELECTORS: Sequence[str] = (
    "#wiki-content-block a",
    "table.wiki_table a",
    ".infobox a",
    ".wiki-content a",
    "article a",
    "#tagged-pages a",
    ".page-content a",
)

_SKIP_PREFIXES = ("#", "javascript:", "mailto:", "tel:")


class LinkExtractor:
    """Document parser collaborator: HTML in, normalized in-scope URLs out."""

    def __init__(self, normalizer: UrlNormalizer, selectors: Sequence[str] = CONTENT_SELECTORS) -> None:
        self.normalizer = normalizer
        self.selectors = tuple(selectors)

    def extract_links(self, html: str, base_url: str) -> List[str]:
        soup = BeautifulSoup(html, "html.parser")
        seen: set[str] = set()
        links: List[str] = []
        for selector in self.selectors:
            for tag in soup.select(selector):
                if not isinstance(tag, Tag):
                    continue
                href = tag.get("href")
                if not isinstance(href, str):
                    continue
                href = href.strip()
                if not href or href.lower().startswith(_SKIP_PREFIXES):
                    continue
                try:
                    absolute = self.normalizer.resolve(href, base_url)
                    if not self.normalizer.is_in_scope(absolute):
                        continue
                    url = self.normalizer.normalize(absolute)
                except (InvalidURL, ValueError):
                    continue
                if url not in seen:
                    seen.add(url)
                    links.append(url)
        return links

    __call__ = extract_links
