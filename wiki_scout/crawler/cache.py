# wiki_scout/crawler/cache.py
"""
Persistent HTML cache keyed by normalized URL.

Pages are written to ``<cache_dir>/<sanitized-url>_<md5>.html``; a single
``metadata.json`` maps every normalized URL to its fetch time and content hash.
The cache lets the crawler resume without network calls and lets ingestion
reprocess pages without hitting the wiki again.
"""
from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
import time
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from wiki_scout.crawler.models import CachedPage, CacheMetadata, CacheStats
from wiki_scout.crawler.url_normalizer import UrlNormalizer
from wiki_scout.logger import get_logger

__all__ = ("ContentCache",)

log = get_logger("cache")

_METADATA_FILE = "metadata.json"


def url_to_filename(url: str) -> str:
    """Filesystem-safe, collision-resistant file stem for *url*."""
    digest = hashlib.md5(url.encode("utf-8")).hexdigest()[:8]
    safe = re.sub(r"[^a-zA-Z0-9]", "_", re.sub(r"^https?://", "", url))[:100]
    return f"{safe}_{digest}"


def hash_content(html: str) -> str:
    return hashlib.sha256(html.encode("utf-8")).hexdigest()


class ContentCache:
    """Filesystem-backed key -> document store for crawled pages."""

    def __init__(
        self,
        cache_dir: Union[str, Path],
        normalizer: Optional[UrlNormalizer] = None,
        *,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = Path(cache_dir).expanduser()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.normalizer = normalizer or UrlNormalizer()
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._metadata_path = self.cache_dir / _METADATA_FILE
        self._metadata: Dict[str, CacheMetadata] = self._load_metadata()

    # ------------------------------------------------------------------ #
    # Key-value contract                                                 #
    # ------------------------------------------------------------------ #

    def get(self, url: str) -> Optional[CachedPage]:
        key = self.normalizer.normalize(url)
        meta = self._metadata.get(key)
        if meta is None or self._is_expired(meta):
            return None
        path = self._html_path(key)
        try:
            html = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            log.warning("Dropping cache entry %s: %s", key, exc)
            self._metadata.pop(key, None)
            self._save_metadata()
            return None
        return CachedPage(url=key, html=html, fetched_at=meta.fetched_at)

    def set(
        self,
        url: str,
        html: str,
        *,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> None:
        key = self.normalizer.normalize(url)
        self._html_path(key).write_text(html, encoding="utf-8")
        self._metadata[key] = CacheMetadata(
            url=key,
            fetched_at=self._clock(),
            content_hash=hash_content(html),
            etag=etag,
            last_modified=last_modified,
        )
        self._save_metadata()

    def has(self, url: str) -> bool:
        meta = self._metadata.get(self.normalizer.normalize(url))
        return meta is not None and not self._is_expired(meta)

    def list_keys(self) -> List[str]:
        return [key for key, meta in self._metadata.items() if not self._is_expired(meta)]

    # ------------------------------------------------------------------ #
    # Maintenance helpers                                                #
    # ------------------------------------------------------------------ #

    def has_changed(self, url: str, html: str) -> bool:
        """True if *html* differs from what is cached (or nothing is cached)."""
        meta = self._metadata.get(self.normalizer.normalize(url))
        return meta is None or meta.content_hash != hash_content(html)

    def get_meta(self, url: str) -> Optional[CacheMetadata]:
        return self._metadata.get(self.normalizer.normalize(url))

    def remove(self, url: str) -> None:
        key = self.normalizer.normalize(url)
        if self._metadata.pop(key, None) is not None:
            self._html_path(key).unlink(missing_ok=True)
            self._save_metadata()

    def clear(self) -> None:
        """Purge every cached page."""
        for key in list(self._metadata):
            self._html_path(key).unlink(missing_ok=True)
        self._metadata.clear()
        self._save_metadata()
        log.info("Content cache purged: %s", self.cache_dir)

    def stats(self) -> CacheStats:
        expired = 0
        size = 0
        for key, meta in self._metadata.items():
            if self._is_expired(meta):
                expired += 1
            try:
                size += self._html_path(key).stat().st_size
            except OSError:
                pass
        return CacheStats(total_entries=len(self._metadata), expired_entries=expired, total_size_bytes=size)

    def __len__(self) -> int:
        return len(self._metadata)

    # ------------------------------------------------------------------ #

    def _html_path(self, key: str) -> Path:
        return self.cache_dir / f"{url_to_filename(key)}.html"

    def _is_expired(self, meta: CacheMetadata) -> bool:
        return self.ttl_seconds is not None and self._clock() - meta.fetched_at > self.ttl_seconds

    def _load_metadata(self) -> Dict[str, CacheMetadata]:
        if not self._metadata_path.exists():
            return {}
        try:
            raw = json.loads(self._metadata_path.read_text(encoding="utf-8"))
            return {url: CacheMetadata(**entry) for url, entry in raw.items()}
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            log.error("Unreadable cache metadata %s, starting empty: %s", self._metadata_path, exc)
            return {}

    def _save_metadata(self) -> None:
        data = {url: asdict(meta) for url, meta in self._metadata.items()}
        fd, tmp = tempfile.mkstemp(dir=self.cache_dir, prefix=".metadata-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, self._metadata_path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
