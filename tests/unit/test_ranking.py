"""Tests for fused similarity/recency ranking."""

import asyncio
import math

import numpy as np
import pytest

from recollect.core.embeddings import EmbeddingCoordinator
from recollect.core.ranking import (
    RECENCY_WEIGHT,
    SIMILARITY_WEIGHT,
    RankingEngine,
    SearchSession,
    dot,
    fused_score,
    recency_boost,
)
from recollect.database.store import DocumentStore
from recollect.models import Document
from tests.conftest import FakeBackend

DAY_MS = 24 * 3600 * 1000
NOW = 1_700_000_000_000


def _insert(store: DocumentStore, url: str, days_ago: float, vector=None, site="example.com"):
    doc_id = store.insert(
        Document(url=url, title=url, site=site, timestamp=int(NOW - days_ago * DAY_MS))
    )
    assert doc_id is not None
    if vector is not None:
        store.put_vector(doc_id, vector)
    return doc_id


def _ranking(store: DocumentStore, backend: FakeBackend, **kw) -> RankingEngine:
    return RankingEngine(store, EmbeddingCoordinator(backend), clock=lambda: NOW, **kw)


def test_recency_boost_and_fused_score() -> None:
    assert recency_boost(NOW, NOW) == pytest.approx(1.0)
    assert recency_boost(NOW - 21 * DAY_MS, NOW) == pytest.approx(math.exp(-1))
    # future timestamps count as brand new
    assert recency_boost(NOW + DAY_MS, NOW) == pytest.approx(1.0)

    assert fused_score(1.0, 1.0) == pytest.approx(SIMILARITY_WEIGHT + RECENCY_WEIGHT)
    assert fused_score(-0.5, 0.0) == 0.0


def test_dot_uses_common_prefix() -> None:
    a = np.array([1.0, 2.0, 3.0], dtype=np.float32)
    b = np.array([1.0, 1.0], dtype=np.float32)
    assert dot(a, b) == pytest.approx(3.0)
    assert dot(a, np.array([], dtype=np.float32)) == 0.0


@pytest.mark.asyncio
async def test_degrades_to_recency_when_backend_unavailable(store: DocumentStore) -> None:
    """Three documents, one with a vector: all three come back newest first."""
    _insert(store, "https://a.com/old", 3)
    _insert(store, "https://a.com/mid", 2, vector=[1.0, 0.0])
    _insert(store, "https://a.com/new", 1)
    backend = FakeBackend(init_error=RuntimeError("model missing"))

    results = await _ranking(store, backend).search("anything")

    assert [r.url for r in results] == [
        "https://a.com/new",
        "https://a.com/mid",
        "https://a.com/old",
    ]
    assert all(r.score == 0.0 for r in results)


@pytest.mark.asyncio
async def test_degrades_when_no_candidate_has_a_vector(store: DocumentStore) -> None:
    _insert(store, "https://a.com/1", 2)
    _insert(store, "https://a.com/2", 1)
    backend = FakeBackend(fixed={"q": [1.0, 0.0]})

    results = await _ranking(store, backend).search("q")

    assert [r.url for r in results] == ["https://a.com/2", "https://a.com/1"]
    assert all(r.score == 0.0 for r in results)


@pytest.mark.asyncio
async def test_similarity_dominates_ordering(store: DocumentStore) -> None:
    _insert(store, "https://a.com/match", 1, vector=[1.0, 0.0])
    _insert(store, "https://a.com/orthogonal", 1, vector=[0.0, 1.0])
    backend = FakeBackend(fixed={"q": [1.0, 0.0]})

    results = await _ranking(store, backend).search("q")

    assert [r.url for r in results] == ["https://a.com/match", "https://a.com/orthogonal"]
    rec = math.exp(-1 / 21)
    assert results[0].score == pytest.approx(SIMILARITY_WEIGHT + RECENCY_WEIGHT * rec, rel=1e-5)
    assert results[1].score == pytest.approx(RECENCY_WEIGHT * rec, rel=1e-5)


@pytest.mark.asyncio
async def test_newer_wins_at_equal_similarity(store: DocumentStore) -> None:
    _insert(store, "https://a.com/old", 30, vector=[0.6, 0.8])
    _insert(store, "https://a.com/new", 0, vector=[0.6, 0.8])
    backend = FakeBackend(fixed={"q": [0.6, 0.8]})

    results = await _ranking(store, backend).search("q")

    assert [r.url for r in results] == ["https://a.com/new", "https://a.com/old"]
    assert results[0].score > results[1].score


@pytest.mark.asyncio
async def test_documents_without_vectors_are_not_scored(store: DocumentStore) -> None:
    _insert(store, "https://a.com/plain", 0)
    _insert(store, "https://a.com/vec", 5, vector=[1.0, 0.0])
    backend = FakeBackend(fixed={"q": [1.0, 0.0]})

    results = await _ranking(store, backend).search("q")

    assert [r.url for r in results] == ["https://a.com/vec"]


@pytest.mark.asyncio
async def test_one_result_per_url_ignoring_fragment(store: DocumentStore) -> None:
    _insert(store, "https://a.com/page#intro", 0, vector=[0.0, 1.0])
    _insert(store, "https://a.com/page#usage", 10, vector=[1.0, 0.0])
    _insert(store, "https://a.com/other", 1, vector=[0.5, 0.5])
    backend = FakeBackend(fixed={"q": [1.0, 0.0]})

    results = await _ranking(store, backend).search("q")

    urls = [r.url for r in results]
    assert urls == ["https://a.com/page#usage", "https://a.com/other"]


@pytest.mark.asyncio
async def test_equal_scores_keep_newest_first_order(store: DocumentStore) -> None:
    first = _insert(store, "https://a.com/first", 1, vector=[1.0, 0.0])
    second = _insert(store, "https://a.com/second", 1, vector=[1.0, 0.0])
    backend = FakeBackend(fixed={"q": [1.0, 0.0]})

    results = await _ranking(store, backend, batch_size=1).search("q")

    assert [r.id for r in results] == [second, first]
    assert results[0].score == results[1].score


@pytest.mark.asyncio
async def test_filters_and_top_k(store: DocumentStore) -> None:
    for i in range(5):
        _insert(store, f"https://github.com/{i}", i, vector=[1.0, 0.0], site="github.com")
    _insert(store, "https://docs.python.org/", 0, vector=[1.0, 0.0], site="docs.python.org")
    backend = FakeBackend(fixed={"q": [1.0, 0.0]})

    results = await _ranking(store, backend).search("site:github q", top_k=3)

    assert [r.url for r in results] == [
        "https://github.com/0",
        "https://github.com/1",
        "https://github.com/2",
    ]
    assert backend.embedded == ["q"]


@pytest.mark.asyncio
async def test_candidate_limit_bounds_the_scan(store: DocumentStore) -> None:
    _insert(store, "https://a.com/old-but-perfect", 10, vector=[1.0, 0.0])
    _insert(store, "https://a.com/new-and-weak", 0, vector=[0.1, 0.99])
    backend = FakeBackend(fixed={"q": [1.0, 0.0]})

    results = await _ranking(store, backend, candidate_limit=1).search("q")

    assert [r.url for r in results] == ["https://a.com/new-and-weak"]


class _GatedEngine:
    """Ranking stand-in whose first search blocks until released."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.calls = 0

    async def search(self, raw_query: str, top_k: int = 20):
        self.calls += 1
        if self.calls == 1:
            await self.release.wait()
        return [raw_query]


@pytest.mark.asyncio
async def test_search_session_drops_superseded_results() -> None:
    engine = _GatedEngine()
    session = SearchSession(engine)

    slow = asyncio.ensure_future(session.search("first"))
    await asyncio.sleep(0)
    fast = await session.search("second")
    engine.release.set()

    assert fast == ["second"]
    assert await slow is None
    assert session.latest_request == 2
