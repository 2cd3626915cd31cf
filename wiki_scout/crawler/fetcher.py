# wiki_scout/crawler/fetcher.py
"""
Fetcher module: HTTP GET with shared rate limiting, retry/backoff and timeout.
"""
from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from aiohttp import ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup

from wiki_scout.crawler.models import FetchOutcome
from wiki_scout.crawler.rate_limiter import RateLimiter, backoff_delay
from wiki_scout.logger import get_logger

log = get_logger("fetcher")

RETRY_STATUS: Sequence[int] = (408, 429, 500, 502, 503, 504)


def extract_title(html: str) -> str:
    """Return the ``<title>`` text of *html*, or ``""``."""
    soup = BeautifulSoup(html, "html.parser")
    tag = soup.find("title")
    return tag.get_text(strip=True) if tag else ""


class Fetcher:
    """Fetch collaborator backed by an aiohttp session.

    HTTP-level problems never raise: they come back as a failed
    :class:`FetchOutcome` so the crawler can record them and move on.
    """

    def __init__(
        self,
        session: ClientSession,
        rate_limiter: RateLimiter,
        *,
        retry_times: int = 3,
        backoff_base: float = 1.0,
        retry_status: Sequence[int] = RETRY_STATUS,
    ) -> None:
        self.session = session
        self.rate_limiter = rate_limiter
        self.retry_times = retry_times
        self.backoff_base = backoff_base
        self._retry_status = frozenset(retry_status)

    @classmethod
    def create_session(cls, *, timeout: float, user_agent: str) -> ClientSession:
        return ClientSession(
            timeout=ClientTimeout(total=timeout),
            headers={"User-Agent": user_agent},
            raise_for_status=False,
        )

    async def fetch(self, url: str) -> FetchOutcome:
        attempts = 0
        last_error: Optional[str] = None
        while attempts <= self.retry_times:
            await self.rate_limiter.acquire()
            try:
                async with self.session.get(url, allow_redirects=True) as resp:
                    if resp.status in self._retry_status:
                        raise ClientError(f"retryable status {resp.status}")
                    if resp.status != 200:
                        return FetchOutcome.failure(url, f"HTTP {resp.status}")
                    mime = resp.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()
                    if mime and mime not in ("text/html", "application/xhtml+xml"):
                        return FetchOutcome.failure(url, f"non-HTML content type: {mime}")
                    html = await resp.text()
                    return FetchOutcome.ok(url, html, title=extract_title(html))
            except (ClientError, asyncio.TimeoutError) as exc:
                last_error = str(exc) or type(exc).__name__
                attempts += 1
                if attempts > self.retry_times:
                    break
                delay = backoff_delay(attempts - 1, self.backoff_base)
                log.debug("Retry %d/%d for %s after %.2f s (%s)", attempts, self.retry_times, url, delay, last_error)
                await asyncio.sleep(delay)
        log.warning("Failed %s after %d attempts: %s", url, attempts, last_error)
        return FetchOutcome.failure(url, last_error or "unknown error")


__all__ = ("Fetcher", "RETRY_STATUS", "extract_title")
