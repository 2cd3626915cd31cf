# File: tests/test_engine.py
"""Engine wiring, crawl reports and logger setup."""
import json
import logging

import pytest

from wiki_scout.config import ScoutConfig
from wiki_scout.crawler.models import CrawlError, CrawlResult, CrawlStats, FetchOutcome
from wiki_scout.engine import Engine, build_search_service
from wiki_scout.logger import configure, get_logger, init_logging
from wiki_scout.report.json_report import crawl_report_data, render_crawl_report
from wiki_scout.search.content_types import ContentType
from wiki_scout.search.index import IndexedChunk, InMemoryDocumentIndex

BASE = "https://eldenringnightreign.wiki.fextralife.com"


@pytest.fixture()
def config(tmp_path) -> ScoutConfig:
    return ScoutConfig(
        cache={"cache_dir": tmp_path / "cache"},
        crawl={"seeds": ["/Bosses"], "max_depth": 1},
        search={"index_path": tmp_path / "index.json"},
    )


@pytest.mark.asyncio()
async def test_engine_builds_crawler_and_closes_session(config):
    engine = Engine(config)
    with pytest.raises(RuntimeError):
        await engine.analyze_cache()

    async with engine:
        assert engine.crawler is not None
        assert engine.crawler.fetch_timeout == config.crawl.timeout * (config.crawl.retry_times + 1)
        session = engine._session
        analysis = await engine.analyze_cache()
        assert analysis.total_cached_pages == 0
    assert session.closed


@pytest.mark.asyncio()
async def test_engine_crawl_from_complete_cache(config):
    engine = Engine(config)
    engine.cache.set(f"{BASE}/Bosses", "<p>no links</p>")
    async with engine:
        result = await engine.crawl_from_cache()
        second = await engine.crawl()
    assert result.stats.cached_pages == 1
    assert second.stats.total_pages == 0


def _swap_fetcher(engine, fetcher):
    from wiki_scout.crawler.crawler import BfsCrawler
    from wiki_scout.crawler.link_extractor import LinkExtractor

    engine.crawler = BfsCrawler(engine.normalizer, engine.cache, fetcher, LinkExtractor(engine.normalizer))


@pytest.mark.asyncio()
async def test_engine_timeout_stops_and_keeps_partial_result(config):
    from tests.conftest import FakeFetcher, wiki_page

    pages = {
        f"{BASE}/bosses": wiki_page("/Margit"),
        f"{BASE}/margit": wiki_page("/Morgott"),
        f"{BASE}/morgott": wiki_page(),
    }
    fetcher = FakeFetcher(pages, delays={f"{BASE}/margit": 0.3})
    async with Engine(config) as engine:
        _swap_fetcher(engine, fetcher)
        result = await engine.crawl(max_depth=5, timeout=0.1)
    assert result.cancelled
    assert [r.url for r in result.results] == [f"{BASE}/bosses", f"{BASE}/margit"]
    assert f"{BASE}/morgott" not in fetcher.calls


@pytest.mark.asyncio()
async def test_engine_category_filter_spares_seeds(config):
    from tests.conftest import FakeFetcher, wiki_page

    pages = {
        f"{BASE}/bosses": wiki_page("/Margit", "/Margit+Strategy"),
        f"{BASE}/margit": wiki_page(),
    }
    fetcher = FakeFetcher(pages)
    async with Engine(config) as engine:
        _swap_fetcher(engine, fetcher)
        result = await engine.crawl(["/Boss+Guide", "/Bosses"], category="boss")
    assert f"{BASE}/boss+guide" in fetcher.calls
    assert f"{BASE}/margit+strategy" not in fetcher.calls
    assert f"{BASE}/margit" in result.visited


def test_build_search_service_loads_index(config, tmp_path):
    index = InMemoryDocumentIndex()
    index.add(IndexedChunk("boss-margit", ContentType.BOSS, "Margit", "Early boss."))
    index.save(tmp_path / "index.json")

    service = build_search_service(config, use_embeddings=False)
    assert service.embedder is None
    assert service.engine.index.count() == 1
    assert service.engine.default_limit == 10


def test_build_search_service_with_embeddings(config):
    service = build_search_service(config, InMemoryDocumentIndex())
    assert service.embedder is not None
    assert service.embedder.dimensions == 384
    assert not service.embedder.is_ready()


def test_build_search_service_reranker_switches(config):
    service = build_search_service(config, InMemoryDocumentIndex(), use_embeddings=False)
    assert service.engine.reranker is not None
    assert service.engine.reranker.model_name == "BAAI/bge-reranker-base"
    assert not service.engine.reranker.is_ready()

    service = build_search_service(config, InMemoryDocumentIndex(), use_embeddings=False, use_reranker=False)
    assert service.engine.reranker is None

    off = config.model_copy(update={"search": config.search.model_copy(update={"rerank": False})})
    assert build_search_service(off, InMemoryDocumentIndex(), use_embeddings=False).engine.reranker is None


def test_build_search_service_requires_index_path():
    with pytest.raises(ValueError):
        build_search_service(ScoutConfig(), use_embeddings=False)


def _result() -> CrawlResult:
    return CrawlResult(
        results=[
            FetchOutcome.ok(f"{BASE}/bosses", "<html>big</html>", title="Bosses"),
            FetchOutcome.failure(f"{BASE}/margit", "HTTP 500"),
        ],
        visited=[f"{BASE}/bosses", f"{BASE}/margit"],
        errors=[CrawlError(f"{BASE}/margit", "HTTP 500")],
        depths={f"{BASE}/bosses": 0, f"{BASE}/margit": 1},
        stats=CrawlStats(total_pages=2, new_pages=1, error_pages=1, max_depth_reached=1),
    )


def test_report_leaves_out_html():
    data = crawl_report_data(_result())
    assert data["stats"]["error_pages"] == 1
    assert [p["depth"] for p in data["pages"]] == [0, 1]
    assert all("html" not in p for p in data["pages"])
    assert data["errors"] == [{"url": f"{BASE}/margit", "error": "HTTP 500"}]


def test_render_crawl_report(tmp_path):
    path = render_crawl_report(_result(), tmp_path / "out" / "crawl.json", pretty=False)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["cancelled"] is False
    assert len(data["pages"]) == 2


def test_logger_configuration(tmp_path):
    log_file = tmp_path / "logs" / "scout.log"
    lg = configure(level="DEBUG", log_file=log_file)
    try:
        assert len(lg.handlers) == 2
        assert logging.getLogger("sentence_transformers").level == logging.WARNING
        assert not lg.propagate
        child = get_logger("crawler")
        assert child.name == "WikiScout.crawler"
        child.debug("hello from the crawler")
        for handler in lg.handlers:
            handler.flush()
        assert "hello from the crawler" in log_file.read_text(encoding="utf-8")
        assert lg.level == logging.DEBUG
    finally:
        init_logging()
    assert len(get_logger().handlers) == 1


def test_strict_level_also_applies_to_third_party_loggers():
    try:
        configure(level="ERROR")
        assert logging.getLogger("huggingface_hub").level == logging.ERROR
    finally:
        init_logging()
    assert logging.getLogger("huggingface_hub").level == logging.WARNING
