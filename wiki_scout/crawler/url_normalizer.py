"""
URL canonicalization for the wiki crawler.

Every dedup decision in the crawler and the content cache keys off
:meth:`UrlNormalizer.normalize`, so it must stay deterministic and idempotent.
Fextralife encodes spaces as ``+`` and treats page names case-insensitively;
``Attack+Power+Up``, ``attack_power_up`` and ``Attack%20Power%20Up/`` are the
same page.
"""
from __future__ import annotations

import posixpath
import re
from typing import Dict, FrozenSet, List, Mapping, Optional, Pattern, Sequence
from urllib.parse import parse_qsl, quote, unquote, urlencode, urljoin, urlsplit, urlunsplit

from wiki_scout.errors import InvalidURL

__all__ = (
    "DEFAULT_BASE_URL",
    "CATEGORY_EXCLUSION_PATTERNS",
    "UrlNormalizer",
)

DEFAULT_BASE_URL = "https://eldenringnightreign.wiki.fextralife.com"

# meta/navigation pages without game content
SKIP_PAGES: FrozenSet[str] = frozenset(
    {
        "builds",
        "walkthrough",
        "guides & walkthroughs",
        "multiplayer coop and online",
        "solo play",
        "duo mode",
        "new player help",
        "new game plus",
        "network test",
        "interactive map",
        "page",
        "all options",
        "analyze",
        "online information",
        "dlc",
        "heroes",
    }
)

# lowercase typo -> lowercase correction
TYPO_CORRECTIONS: Mapping[str, str] = {
    "blessed iron coin (key iem)": "blessed iron coin (key item)",
    "weatheivane's words": "weathervane's words",
    "soulblood songe": "soulblood song",
}

TRACKING_PARAMS: FrozenSet[str] = frozenset({"fbclid", "gclid", "mc_cid", "mc_eid", "ref", "_ga"})

_SPECIAL_PREFIXES: Sequence[str] = (
    "/special:",
    "/category:",
    "/file:",
    "/template:",
    "/talk:",
    "/user:",
    "/help:",
    "/mediawiki:",
)
_UTILITY_PREFIXES: Sequence[str] = ("/search", "/login", "/register", "/api/", "/admin/", "/.well-known/")
_MEDIA_SUFFIXES: Sequence[str] = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".pdf", ".mp4", ".webm")

# characters left unescaped in a normalized path
_PATH_SAFE = "/+()'!,:;=@$*&-._~"

CATEGORY_EXCLUSION_PATTERNS: Dict[str, List[Pattern[str]]] = {
    "nightfarer": [
        re.compile(r"sorcery|sorceries|incantation|incantations|spell|spells", re.I),
        re.compile(r"shield|sword|weapon|armor|helm|gauntlet|greaves|talisman", re.I),
        re.compile(r"^vigor$|^mind$|^endurance$|^strength$|^dexterity$|^intelligence$|^faith$|^arcane$", re.I),
        re.compile(r"boss|enemy|creature|everdark sovereign", re.I),
        re.compile(r"expedition|tricephalos|gaping jaw|fissure in the fog", re.I),
        re.compile(r"^iron menial$|^merchant$|^npc$", re.I),
        re.compile(r"wiki$|classes\)$", re.I),
        re.compile(r"urn$|vessel$", re.I),
    ],
    "boss": [re.compile(r"walkthrough|guide|strategy", re.I)],
    "weapon": [re.compile(r"walkthrough|guide|strategy", re.I)],
}


class UrlNormalizer:
    """Canonicalizes, scopes and absolutizes URLs for one wiki origin."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        skip_pages: Optional[FrozenSet[str]] = None,
        case_insensitive_paths: bool = True,
    ) -> None:
        parsed = urlsplit(str(base_url).strip())
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise InvalidURL(base_url, "base URL must be an absolute http(s) URL")
        self.host = parsed.hostname.lower()
        self.base_url = f"https://{parsed.netloc.lower()}"
        self.skip_pages = SKIP_PAGES if skip_pages is None else skip_pages
        self.case_insensitive_paths = case_insensitive_paths
        self._domain_in_path = f"/{self.host}"

    def normalize(self, url: str) -> str:
        """Return the canonical form of *url*; raise :class:`InvalidURL` if unparseable."""
        if not isinstance(url, str) or not url.strip():
            raise InvalidURL(url, "empty URL")
        raw = url.strip()
        if raw.startswith("/") and not raw.startswith("//"):
            raw = self.base_url + raw
        try:
            parsed = urlsplit(raw)
            hostname = parsed.hostname
            port = parsed.port
        except ValueError as exc:
            raise InvalidURL(url, str(exc)) from exc
        if parsed.scheme.lower() not in ("http", "https"):
            raise InvalidURL(url, "unsupported scheme")
        if not hostname:
            raise InvalidURL(url, "missing host")

        netloc = hostname.lower()
        if port is not None and port not in (80, 443):
            netloc = f"{netloc}:{port}"

        path = self._normalize_path(parsed.path)
        query = self._normalize_query(parsed.query)
        return urlunsplit(("https", netloc, path, query, ""))

    def is_in_scope(self, url: str) -> bool:
        """True for content pages on the wiki host; never raises."""
        try:
            normalized = self.normalize(url)
        except InvalidURL:
            return False
        parsed = urlsplit(normalized)
        if parsed.hostname != self.host:
            return False
        path = unquote(parsed.path).lower()
        if not path or path == "/":
            return False
        if path.startswith(_SPECIAL_PREFIXES) or path.startswith(_UTILITY_PREFIXES):
            return False
        if path.endswith(_MEDIA_SUFFIXES):
            return False
        return path[1:].replace("+", " ") not in self.skip_pages

    def to_absolute(self, path: str) -> str:
        """Resolve a root-relative path or bare page name against the base origin."""
        if path.startswith(("http://", "https://")):
            return path
        if path.startswith(self._domain_in_path):
            return self.base_url + path[len(self._domain_in_path):]
        if path.startswith("/"):
            return self.base_url + path
        return f"{self.base_url}/{path}"

    def resolve(self, href: str, base_url: str) -> str:
        """Resolve an ``href`` found on *base_url* to an absolute URL."""
        href = href.strip()
        if href.startswith("/") and not href.startswith("//"):
            return self.to_absolute(href)
        if href.startswith(("http://", "https://")):
            return href
        return urljoin(base_url, href)

    def page_name(self, url: str) -> str:
        """Display name of a wiki page (``+`` shown as spaces)."""
        try:
            normalized = self.normalize(url)
        except InvalidURL:
            return url
        return unquote(urlsplit(normalized).path[1:]).replace("+", " ")

    def is_same_url(self, first: str, second: str) -> bool:
        try:
            return self.normalize(first) == self.normalize(second)
        except InvalidURL:
            return False

    def should_exclude_from_category(self, url: str, category: str) -> bool:
        """True if the page name matches one of *category*'s exclusion patterns."""
        patterns = CATEGORY_EXCLUSION_PATTERNS.get(category)
        if not patterns:
            return False
        try:
            name = unquote(urlsplit(url).path[1:]).replace("+", " ")
        except ValueError:
            name = url
        return any(p.search(name) for p in patterns)

    # ------------------------------------------------------------------ #

    def _normalize_path(self, raw_path: str) -> str:
        path = unquote(raw_path)
        path = path.replace("_", " ")
        path = re.sub(r"\s+", " ", path).strip()
        path = path.replace(" /", "/").replace("/ ", "/")
        path = re.sub(r"/{2,}", "/", path)
        if path:
            if not path.startswith("/"):
                path = "/" + path
            path = posixpath.normpath(path)
        path = path.rstrip("/")
        if self.case_insensitive_paths:
            path = path.lower()

        head, _, page = path.rpartition("/")
        corrected = TYPO_CORRECTIONS.get(page.replace("+", " "))
        if corrected:
            path = f"{head}/{corrected}"

        if self._domain_in_path in path:
            idx = path.index(self._domain_in_path)
            path = path[idx + len(self._domain_in_path):].rstrip("/")

        return quote(path.replace(" ", "+"), safe=_PATH_SAFE)

    @staticmethod
    def _normalize_query(raw_query: str) -> str:
        if not raw_query:
            return ""
        params = [
            (key, value)
            for key, value in parse_qsl(raw_query, keep_blank_values=True)
            if not key.lower().startswith("utm_") and key.lower() not in TRACKING_PARAMS
        ]
        params.sort()
        return urlencode(params, doseq=True)
