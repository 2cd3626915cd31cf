# File: tests/test_index.py
"""InMemoryDocumentIndex: BM25 field boosts, cosine queries and persistence."""
import pytest

from wiki_scout.search.content_types import ContentType
from wiki_scout.search.index import IndexedChunk, InMemoryDocumentIndex, SearchFilters, tokenize

NO_FILTER = SearchFilters()


@pytest.fixture()
def index() -> InMemoryDocumentIndex:
    idx = InMemoryDocumentIndex(dimensions=3)
    idx.add(IndexedChunk("boss-margit", ContentType.BOSS, "Margit", "A boss fought early.", embedding=[1.0, 0.0, 0.0]))
    idx.add(IndexedChunk(
        "guide-bosses", ContentType.GUIDE, "Boss guide",
        "How to beat Margit and other bosses with bleed.", tags=["margit"], embedding=[0.7, 0.7, 0.0],
    ))
    idx.add(IndexedChunk("weapon-uchi", ContentType.WEAPON, "Uchigatana", "Katana with bleed.", embedding=[0.0, 0.0, 1.0]))
    return idx


def test_tokenize_drops_stop_words():
    assert tokenize("What is the best bleed build?") == ["best", "bleed", "build"]


def test_name_match_outranks_content_match(index):
    hits = index.lexical_search("margit", NO_FILTER, 10)
    assert [h.id for h in hits] == ["boss-margit", "guide-bosses"]
    assert hits[0].score > hits[1].score > 0


def test_lexical_filters_and_limits(index):
    hits = index.lexical_search("bleed", SearchFilters(types=frozenset({ContentType.WEAPON})), 10)
    assert [h.id for h in hits] == ["weapon-uchi"]
    assert len(index.lexical_search("bleed", NO_FILTER, 1)) == 1
    assert index.lexical_search("the of and", NO_FILTER, 10) == []
    assert index.lexical_search("nonexistent", NO_FILTER, 10) == []


def test_vector_search_orders_by_cosine(index):
    hits = index.vector_search([1.0, 0.1, 0.0], NO_FILTER, 3)
    assert [h.id for h in hits] == ["boss-margit", "guide-bosses", "weapon-uchi"]
    assert hits[0].score == pytest.approx(0.995, abs=1e-3)


def test_vector_dimension_mismatch(index):
    with pytest.raises(ValueError):
        index.vector_search([1.0, 0.0], NO_FILTER, 3)
    with pytest.raises(ValueError):
        index.add(IndexedChunk("bad", ContentType.BOSS, "Bad", "x", embedding=[1.0]))


def test_zero_query_vector_returns_nothing(index):
    assert index.vector_search([0.0, 0.0, 0.0], NO_FILTER, 3) == []


@pytest.mark.asyncio()
async def test_upsert_replaces_document(index):
    await index.upsert(IndexedChunk("boss-margit", ContentType.BOSS, "Morgott", "Renamed."))
    assert index.count() == 3
    assert [h.id for h in index.lexical_search("margit", NO_FILTER, 10)] == ["guide-bosses"]
    assert await index.lexical_query("morgott", NO_FILTER, 10) == index.lexical_search("morgott", NO_FILTER, 10)


def test_remove_and_clear(index):
    assert index.remove("weapon-uchi")
    assert not index.remove("weapon-uchi")
    assert index.get("weapon-uchi") is None
    index.clear()
    assert len(index) == 0
    assert index.lexical_search("margit", NO_FILTER, 10) == []


def test_save_and_load(index, tmp_path):
    path = index.save(tmp_path / "data" / "index.json")
    restored = InMemoryDocumentIndex.load(path)
    assert restored.count() == 3
    assert restored.dimensions == 3
    assert restored.get("guide-bosses").tags == ["margit"]
    assert restored.get("boss-margit").type is ContentType.BOSS
    assert restored.lexical_search("margit", NO_FILTER, 10) == index.lexical_search("margit", NO_FILTER, 10)


def test_load_rejects_invalid_file(tmp_path):
    path = tmp_path / "index.json"
    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(ValueError):
        InMemoryDocumentIndex.load(path)


def test_unknown_type_parses_to_unknown():
    chunk = IndexedChunk.from_dict({"id": "x", "type": "dragon", "name": "X", "content": ""})
    assert chunk.type is ContentType.UNKNOWN
    with pytest.raises(ValueError):
        ContentType.parse("dragon", strict=True)
