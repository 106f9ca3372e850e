"""Ranking: semantic similarity fused with recency over filtered candidates."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable, Optional

import numpy as np

from recollect.core.embeddings import BackendUnavailableError, EmbeddingCoordinator
from recollect.core.query import parse_query
from recollect.database.store import DEFAULT_CANDIDATE_LIMIT, DocumentStore
from recollect.models import Candidate, ScoredDocument
from recollect.utils.urls import strip_fragment

logger = logging.getLogger(__name__)

SIMILARITY_WEIGHT = 0.85
RECENCY_WEIGHT = 0.15
RECENCY_DECAY_DAYS = 21.0
SCORING_BATCH = 2000

_DAY_MS = 24 * 3600 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def dot(a: np.ndarray, b: np.ndarray) -> float:
    """Dot product over the common prefix of two vectors."""
    n = min(a.shape[0], b.shape[0])
    if n == 0:
        return 0.0
    return float(np.dot(a[:n], b[:n]))


def recency_boost(ts: int, now_ms: Optional[int] = None) -> float:
    """exp(-age_days / 21): 1.0 when just captured, towards 0 with age."""
    now = now_ms if now_ms is not None else _now_ms()
    days = max(0.0, (now - ts) / _DAY_MS)
    return math.exp(-days / RECENCY_DECAY_DAYS)


def fused_score(cosine: float, recency: float) -> float:
    # negative similarity counts as irrelevant, not as a penalty
    return SIMILARITY_WEIGHT * max(0.0, cosine) + RECENCY_WEIGHT * recency


class RankingEngine:
    """Read-only search over the store. Never persists anything."""

    def __init__(
        self,
        store: DocumentStore,
        coordinator: EmbeddingCoordinator,
        *,
        candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
        batch_size: int = SCORING_BATCH,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._candidate_limit = candidate_limit
        self._batch_size = max(1, batch_size)
        self._clock = clock

    async def _query_vector(self, text: str) -> Optional[np.ndarray]:
        try:
            return await self._coordinator.embed(text)
        except BackendUnavailableError as e:
            logger.warning("Searching without embeddings: %s", e)
            return None

    async def search(self, raw_query: str, top_k: int = 20) -> list[ScoredDocument]:
        """Rank documents for a raw query.

        Falls back to recency order with score 0 when there is no query
        vector or no candidate carries a vector.

        Args:
            raw_query: Free text, optionally with site:/before:/after: tokens.
            top_k: Maximum number of results.

        Returns:
            At most top_k results, best first, one per URL (fragment ignored).
        """
        query_filter = parse_query(raw_query)
        qvec = await self._query_vector(query_filter.text or raw_query)

        loop = asyncio.get_running_loop()
        candidates: list[Candidate] = await loop.run_in_executor(
            None, self._store.scan_candidates, query_filter, self._candidate_limit
        )

        if qvec is None or not any(c.vector is not None for c in candidates):
            return [ScoredDocument.from_document(c.document) for c in candidates[:top_k]]

        now = self._clock()
        scored: list[tuple[float, Candidate]] = []
        for start in range(0, len(candidates), self._batch_size):
            for cand in candidates[start : start + self._batch_size]:
                if cand.vector is None:
                    continue
                score = fused_score(
                    dot(qvec, cand.vector), recency_boost(cand.document.timestamp, now)
                )
                scored.append((score, cand))
            # let other tasks run between batches
            await asyncio.sleep(0)

        best_by_url: dict[str, tuple[float, Candidate]] = {}
        for score, cand in scored:
            key = strip_fragment(cand.document.url)
            prev = best_by_url.get(key)
            if prev is None or score > prev[0]:
                best_by_url[key] = (score, cand)

        ranked = sorted(best_by_url.values(), key=lambda sc: sc[0], reverse=True)
        return [
            ScoredDocument.from_document(cand.document, score)
            for score, cand in ranked[:top_k]
        ]


class SearchSession:
    """Latest request wins: results of superseded searches are discarded."""

    def __init__(self, engine: RankingEngine) -> None:
        self._engine = engine
        self._latest = 0

    @property
    def latest_request(self) -> int:
        return self._latest

    async def search(
        self, raw_query: str, top_k: int = 20
    ) -> Optional[list[ScoredDocument]]:
        """Run a search; return None if a newer one was issued meanwhile."""
        self._latest += 1
        request_id = self._latest
        results = await self._engine.search(raw_query, top_k)
        if request_id != self._latest:
            logger.debug("Dropping stale search #%d", request_id)
            return None
        return results
