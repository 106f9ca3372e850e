"""Main workflow: Capture -> Embed -> Search, plus backfill and maintenance."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from pydantic import ValidationError

from recollect.config import get_settings
from recollect.core.embeddings import (
    BackendUnavailableError,
    EmbeddingCoordinator,
    get_coordinator,
)
from recollect.core.ranking import RankingEngine
from recollect.database.store import DocumentStore, StoreError
from recollect.models import (
    BackfillReport,
    CaptureRecord,
    CaptureResult,
    Document,
    EngineStats,
    ReembedReport,
    ScoredDocument,
)
from recollect.sync.history import ChromeHistorySource, HistorySource
from recollect.sync.pages import PageFetcher
from recollect.utils.capture_config import CaptureConfig, load_capture_config
from recollect.utils.text import compile_patterns, embedding_payload, is_excluded
from recollect.utils.urls import hostname_of, is_http_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

CAPTURE_EXCERPT_CHARS = 400
BACKFILL_EXCERPT_CHARS = 500
BACKFILL_MAX_RESULTS = 5000
REEMBED_DEFAULT = 300
REEMBED_MAX = 2000

_DAY_MS = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class Engine:
    """Orchestrates capture, search, backfill and re-embedding.

    Depends on Config + Store + Embedding coordinator. Storage errors from
    capture are reported in the result; search never fails on embedding
    problems.
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        *,
        store: Optional[DocumentStore] = None,
        coordinator: Optional[EmbeddingCoordinator] = None,
        capture_config: Optional[CaptureConfig] = None,
        history_source: Optional[HistorySource] = None,
        page_fetcher: Optional[PageFetcher] = None,
    ) -> None:
        settings = get_settings()
        if store is None:
            store = DocumentStore(db_path or settings.db_path)
            store.init_db()
        self._store = store
        self._coordinator = coordinator or get_coordinator()
        self._capture_config = capture_config or load_capture_config(settings.config_path)
        self._history_source = history_source
        self._history_path = settings.history_path
        self._page_fetcher = page_fetcher
        self._fetch_timeout = settings.fetch_timeout
        self._recent_limit = settings.recent_limit
        self._ranking = RankingEngine(
            self._store, self._coordinator, candidate_limit=settings.candidate_limit
        )
        self._pending: set[asyncio.Task] = set()
        self._capture_failures = 0
        self._embed_failures = 0

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def ranking(self) -> RankingEngine:
        return self._ranking

    @property
    def capture_config(self) -> CaptureConfig:
        return self._capture_config

    async def _run_sync(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    def _excluded(self, url: str, host: str) -> bool:
        return is_excluded(url, host, compile_patterns(self._capture_config.excluded))

    # ---- Capture ----

    async def capture(self, record: Union[CaptureRecord, dict]) -> CaptureResult:
        """Store one page view and schedule its embedding.

        Args:
            record: url, title, site, timestamp and visible text of the page.

        Returns:
            CaptureResult; `id` is None when the page was a recent duplicate.
        """
        if isinstance(record, dict):
            try:
                record = CaptureRecord.model_validate(record)
            except ValidationError as e:
                logger.debug("Invalid capture record: %s", e)
                return CaptureResult(ok=False, error="invalid_record")

        if not record.url or not record.title:
            return CaptureResult(ok=False, error="missing_url_or_title")
        if not is_http_url(record.url):
            return CaptureResult(ok=False, skipped=True)

        site = record.site or hostname_of(record.url)
        if self._excluded(record.url, site):
            return CaptureResult(ok=False, skipped=True)

        text = record.text or ""
        doc = Document(
            url=record.url,
            title=record.title,
            site=site,
            timestamp=record.timestamp if record.timestamp is not None else _now_ms(),
            excerpt=text[:CAPTURE_EXCERPT_CHARS],
        )
        try:
            doc_id = await self._run_sync(self._store.insert, doc)
        except StoreError as e:
            self._capture_failures += 1
            logger.error("Failed to store capture of %s: %s", record.url, e)
            return CaptureResult(ok=False, error=str(e))

        if doc_id is not None and text:
            payload = embedding_payload(doc.title, site, text)
            self._schedule(self._embed_document(doc_id, payload))

        return CaptureResult(ok=True, id=doc_id)

    def _schedule(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _embed_document(self, doc_id: int, payload: str) -> None:
        try:
            vec = await self._coordinator.embed(payload)
            if vec is None:
                self._embed_failures += 1
                logger.warning("No embedding produced for document %s", doc_id)
                return
            await self._run_sync(self._store.put_vector, doc_id, vec)
        except (BackendUnavailableError, StoreError) as e:
            self._embed_failures += 1
            logger.warning("Embedding for document %s failed: %s", doc_id, e)

    async def drain(self) -> None:
        """Wait for background embeddings scheduled by capture()."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ---- Search ----

    async def search(self, query: str, top_k: int = 20) -> list[ScoredDocument]:
        """Ranked results; a blank query lists the most recent pages."""
        q = (query or "").strip()
        if not q:
            return await self.recent(self._recent_limit)
        return await self._ranking.search(q, top_k)

    async def recent(self, limit: int) -> list[ScoredDocument]:
        """Most recent pages with score 0, newest first."""
        docs = await self._run_sync(self._store.recent_documents, limit)
        return [ScoredDocument.from_document(d) for d in docs]

    # ---- Backfill ----

    def _get_history_source(self) -> HistorySource:
        if self._history_source is None:
            self._history_source = ChromeHistorySource(self._history_path)
        return self._history_source

    def _get_page_fetcher(self) -> PageFetcher:
        if self._page_fetcher is None:
            self._page_fetcher = PageFetcher(timeout=self._fetch_timeout)
        return self._page_fetcher

    async def backfill(self, days: Optional[int] = None, embed: bool = True) -> BackfillReport:
        """Index recent browsing history through the capture pipeline.

        Per-item embedding failures are counted and the batch continues.
        Storage failures propagate.

        Args:
            days: Window length; defaults to the configured backfill_days.
            embed: Fetch page text and embed each inserted page.

        Returns:
            BackfillReport with inserted / embedded / skipped / errors counts.
        """
        days = days if days and days > 0 else self._capture_config.backfill_days
        patterns = compile_patterns(self._capture_config.excluded)
        end = _now_ms()
        start = end - days * _DAY_MS

        entries = await self._run_sync(
            self._get_history_source().entries, start, end, BACKFILL_MAX_RESULTS
        )
        report = BackfillReport(days=days)

        for entry in entries:
            url = entry.url
            if not url or not is_http_url(url):
                report.skipped += 1
                continue
            host = hostname_of(url)
            if is_excluded(url, host, patterns):
                report.skipped += 1
                continue

            title = entry.title or url
            ts = entry.last_visit_ms or _now_ms()
            page_text = await self._get_page_fetcher().fetch_text(url) if embed else ""
            excerpt = page_text[:BACKFILL_EXCERPT_CHARS]

            doc_id = await self._run_sync(
                self._store.insert,
                Document(url=url, title=title, site=host, timestamp=ts, excerpt=excerpt),
            )
            if doc_id is None:
                report.skipped += 1
                continue
            report.inserted += 1

            if embed:
                try:
                    vec = await self._coordinator.embed(
                        embedding_payload(title, host, page_text or excerpt or title)
                    )
                    if vec is not None:
                        await self._run_sync(self._store.put_vector, doc_id, vec)
                        report.embedded += 1
                except (BackendUnavailableError, StoreError) as e:
                    report.errors += 1
                    logger.warning("Backfill embedding for %s failed: %s", doc_id, e)
                await asyncio.sleep(0)

        logger.info(
            "Backfill done: %d inserted, %d embedded, %d skipped, %d errors",
            report.inserted,
            report.embedded,
            report.skipped,
            report.errors,
        )
        return report

    # ---- Maintenance ----

    async def reembed_recent(self, n: int = REEMBED_DEFAULT) -> ReembedReport:
        """Recompute vectors for the n most recent documents (1..2000)."""
        n = max(1, min(int(n), REEMBED_MAX))
        docs = await self._run_sync(self._store.recent_documents, n)
        report = ReembedReport()

        for doc in docs:
            try:
                text = embedding_payload(doc.title, doc.site, doc.excerpt)
                vec = await self._coordinator.embed(text)
                if vec is not None:
                    await self._run_sync(self._store.put_vector, doc.id, vec)
                    report.saved += 1
                else:
                    report.empty += 1
            except (BackendUnavailableError, StoreError) as e:
                report.errors += 1
                logger.debug("Re-embed of %s failed: %s", doc.id, e)
            await asyncio.sleep(0)

        stats = await self._run_sync(self._store.stats)
        report.vectors = stats.vector_count
        logger.info(
            "Re-embed done: %d saved, %d empty, %d errors, %d vectors total",
            report.saved,
            report.empty,
            report.errors,
            report.vectors,
        )
        return report

    async def stats(self) -> EngineStats:
        store_stats = await self._run_sync(self._store.stats)
        return EngineStats(
            **store_stats.model_dump(),
            capture_failures=self._capture_failures,
            embed_failures=self._embed_failures,
        )

    async def clear(self) -> None:
        await self._run_sync(self._store.clear)

    async def warmup(self) -> None:
        await self._coordinator.warmup()

    async def close(self) -> None:
        """Finish background work and release the HTTP client."""
        await self.drain()
        if self._page_fetcher is not None:
            await self._page_fetcher.close()
