# File: tests/test_cache.py
"""Tests for the filesystem content cache."""
import json

from wiki_scout.crawler.cache import ContentCache, hash_content, url_to_filename

BASE = "https://eldenringnightreign.wiki.fextralife.com"


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_set_get_uses_normalized_key(cache):
    cache.set(f"{BASE}/Bosses/", "<html>bosses</html>")
    page = cache.get("/bosses")
    assert page is not None
    assert page.url == f"{BASE}/bosses"
    assert page.html == "<html>bosses</html>"
    assert cache.has(f"{BASE}/BOSSES")
    assert cache.list_keys() == [f"{BASE}/bosses"]
    assert len(cache) == 1


def test_get_missing_returns_none(cache):
    assert cache.get(f"{BASE}/Nothing") is None
    assert not cache.has(f"{BASE}/Nothing")


def test_entries_survive_reopen(cache_dir, normalizer):
    first = ContentCache(cache_dir, normalizer)
    first.set(f"{BASE}/Weapons", "<p>weapons</p>", etag='"abc"')
    second = ContentCache(cache_dir, normalizer)
    assert second.get(f"{BASE}/Weapons").html == "<p>weapons</p>"
    meta = second.get_meta(f"{BASE}/Weapons")
    assert meta.etag == '"abc"'
    assert meta.content_hash == hash_content("<p>weapons</p>")


def test_ttl_expiry(cache_dir, normalizer):
    clock = FakeClock()
    cache = ContentCache(cache_dir, normalizer, ttl_seconds=60, clock=clock)
    cache.set(f"{BASE}/Relics", "<p>relics</p>")

    clock.now += 59
    assert cache.has(f"{BASE}/Relics")

    clock.now += 2
    assert cache.get(f"{BASE}/Relics") is None
    assert cache.list_keys() == []
    assert cache.stats().expired_entries == 1


def test_has_changed(cache):
    assert cache.has_changed(f"{BASE}/Skills", "<p>v1</p>")
    cache.set(f"{BASE}/Skills", "<p>v1</p>")
    assert not cache.has_changed(f"{BASE}/Skills", "<p>v1</p>")
    assert cache.has_changed(f"{BASE}/Skills", "<p>v2</p>")


def test_remove_and_clear(cache, cache_dir):
    cache.set(f"{BASE}/A", "a")
    cache.set(f"{BASE}/B", "b")
    cache.remove(f"{BASE}/A")
    assert not cache.has(f"{BASE}/A")
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0
    assert list(cache_dir.glob("*.html")) == []


def test_stats_counts_bytes(cache):
    cache.set(f"{BASE}/A", "12345")
    cache.set(f"{BASE}/B", "123")
    stats = cache.stats()
    assert stats.total_entries == 2
    assert stats.expired_entries == 0
    assert stats.total_size_bytes == 8


def test_corrupt_metadata_starts_empty(cache_dir, normalizer):
    cache_dir.mkdir(parents=True)
    (cache_dir / "metadata.json").write_text("{not json", encoding="utf-8")
    cache = ContentCache(cache_dir, normalizer)
    assert len(cache) == 0
    cache.set(f"{BASE}/A", "a")
    data = json.loads((cache_dir / "metadata.json").read_text(encoding="utf-8"))
    assert list(data) == [f"{BASE}/a"]


def test_missing_html_file_drops_entry(cache, cache_dir):
    cache.set(f"{BASE}/A", "a")
    for path in cache_dir.glob("*.html"):
        path.unlink()
    assert cache.get(f"{BASE}/A") is None
    assert len(cache) == 0


def test_undecodable_html_file_is_a_miss(cache, cache_dir):
    cache.set(f"{BASE}/A", "a")
    cache.set(f"{BASE}/B", "b")
    (cache_dir / f"{url_to_filename(f'{BASE}/a')}.html").write_bytes(b"\xff\xfe")
    assert cache.get(f"{BASE}/A") is None
    assert not cache.has(f"{BASE}/A")
    assert cache.list_keys() == [f"{BASE}/b"]


def test_url_to_filename_is_safe_and_distinct():
    first = url_to_filename(f"{BASE}/bosses")
    second = url_to_filename(f"{BASE}/bosses?page=2")
    assert first != second
    assert first.startswith("eldenringnightreign_wiki_fextralife_com_bosses_")
    assert all(ch.isalnum() or ch == "_" for ch in second)
    assert len(url_to_filename(f"{BASE}/" + "x" * 500)) == 100 + 1 + 8
