"""Document and vector storage (SQLite).

Two logical stores live in one database file:

- ``documents``: primary key ``id``, secondary indexes on ``ts`` and
  ``canonical_url``.
- ``vectors``: one float32 blob per document id, overwritten wholesale.

Candidate retrieval is a backward scan over the timestamp index bounded by
``limit``; there is no vector index. Browsing-history corpora (tens of
thousands of pages) stay well inside what a linear scan handles, and that
is the scalability ceiling of this store.

Writes run inside ``BEGIN IMMEDIATE`` transactions so a dedup check and the
insert that follows it are atomic against other writers, including other
processes. The database runs in WAL mode, so readers only ever see
committed transactions.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

import numpy as np

from recollect.models import Candidate, Document, QueryFilter, StoreStats
from recollect.utils.urls import canonical_url

logger = logging.getLogger(__name__)

# Repeat captures of the same canonical URL closer than this are dropped.
DEDUP_WINDOW_MS = 3 * 24 * 3600 * 1000

DEFAULT_CANDIDATE_LIMIT = 5000

VectorLike = Union[np.ndarray, list, tuple, bytes, bytearray, memoryview]

_DOC_COLUMNS = "id, url, title, site, canonical_url, ts, excerpt"


class StoreError(RuntimeError):
    """Storage-layer failure. Callers must report it, not drop the write."""


def to_vector(value: VectorLike) -> np.ndarray:
    """Return a 1-D float32 array that owns its memory.

    Raw buffers are read as packed float32; everything else is converted
    element by element. The result never aliases the input.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return np.frombuffer(value, dtype=np.float32).copy()
    return np.array(value, dtype=np.float32).reshape(-1)


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        url=row["url"],
        title=row["title"],
        site=row["site"],
        canonical_url=row["canonical_url"],
        timestamp=row["ts"],
        excerpt=row["excerpt"],
    )


def _decode_vector(blob: Optional[bytes]) -> Optional[np.ndarray]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32).copy()


class DocumentStore:
    """SQLite wrapper for captured documents and their vectors.

    All persistence of documents and vectors goes through this class.
    """

    def __init__(self, db_path: Path) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open an autocommit connection; sqlite errors surface as StoreError."""
        try:
            conn = sqlite3.connect(self._path, timeout=30.0, isolation_level=None)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open store {self._path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, mode: str = "IMMEDIATE") -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            conn.execute(f"BEGIN {mode}")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def init_db(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT NOT NULL,
                    title TEXT NOT NULL,
                    site TEXT NOT NULL DEFAULT '',
                    canonical_url TEXT NOT NULL,
                    ts INTEGER NOT NULL,
                    excerpt TEXT NOT NULL DEFAULT ''
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_ts ON documents(ts DESC, id DESC)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_canonical "
                "ON documents(canonical_url)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS vectors (
                    doc_id INTEGER PRIMARY KEY,
                    dim INTEGER NOT NULL,
                    data BLOB NOT NULL
                )
                """
            )

    # ---- Writes ----

    def insert(self, doc: Document) -> Optional[int]:
        """Insert a document unless it duplicates a recent capture.

        A capture is a duplicate when a stored document has the same
        canonical URL and a timestamp less than DEDUP_WINDOW_MS away.

        Args:
            doc: Document to store; its id and canonical_url are ignored.

        Returns:
            The new document id, or None when the insert was rejected.
        """
        canon = canonical_url(doc.url)
        with self._transaction() as conn:
            clash = conn.execute(
                "SELECT 1 FROM documents WHERE canonical_url = ? "
                "AND ts > ? AND ts < ? LIMIT 1",
                (canon, doc.timestamp - DEDUP_WINDOW_MS, doc.timestamp + DEDUP_WINDOW_MS),
            ).fetchone()
            if clash is not None:
                logger.debug("Duplicate capture of %s skipped", canon)
                return None
            cursor = conn.execute(
                """
                INSERT INTO documents (url, title, site, canonical_url, ts, excerpt)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (doc.url, doc.title, doc.site or "", canon, doc.timestamp, doc.excerpt or ""),
            )
            return int(cursor.lastrowid)

    def put_vector(self, doc_id: int, vector: VectorLike) -> bool:
        """Store a private copy of a vector, replacing any previous one.

        Returns:
            False when the document no longer exists (e.g. cleared while
            its embedding was computed); nothing is written then.
        """
        copy = to_vector(vector)
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR REPLACE INTO vectors (doc_id, dim, data)
                SELECT ?, ?, ? WHERE EXISTS (SELECT 1 FROM documents WHERE id = ?)
                """,
                (doc_id, int(copy.size), copy.tobytes(), doc_id),
            )
            stored = cursor.rowcount > 0
        if not stored:
            logger.debug("Vector for missing document %s dropped", doc_id)
        return stored

    def clear(self) -> None:
        """Remove every document and vector in one transaction."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM vectors")
            conn.execute("DELETE FROM documents")
        logger.info("Store cleared: %s", self._path)

    # ---- Reads ----

    def get_document(self, doc_id: int) -> Optional[Document]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_DOC_COLUMNS} FROM documents WHERE id = ?", (doc_id,)
            ).fetchone()
        return _row_to_document(row) if row else None

    def get_vector(self, doc_id: int) -> Optional[np.ndarray]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM vectors WHERE doc_id = ?", (doc_id,)
            ).fetchone()
        return _decode_vector(row["data"]) if row else None

    def scan_candidates(
        self,
        query_filter: Optional[QueryFilter] = None,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> list[Candidate]:
        """Newest-first documents matching the filter, each with its vector.

        Walks the timestamp order backwards and stops after ``limit``
        matches. Site is a case-insensitive substring match; both
        timestamp bounds are inclusive.

        Args:
            query_filter: Optional site / after_ts / before_ts constraints.
            limit: Maximum number of candidates to return.

        Returns:
            Candidates in strictly descending timestamp order.
        """
        f = query_filter or QueryFilter()
        site = f.site.lower() if f.site else None
        out: list[Candidate] = []
        if limit <= 0:
            return out
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT d.id, d.url, d.title, d.site, d.canonical_url, d.ts,
                       d.excerpt, v.data
                FROM documents d LEFT JOIN vectors v ON v.doc_id = d.id
                ORDER BY d.ts DESC, d.id DESC
                """
            )
            for row in cursor:
                if site and site not in (row["site"] or "").lower():
                    continue
                if f.after_ts is not None and row["ts"] < f.after_ts:
                    continue
                if f.before_ts is not None and row["ts"] > f.before_ts:
                    continue
                out.append(Candidate(_row_to_document(row), _decode_vector(row["data"])))
                if len(out) >= limit:
                    break
        return out

    def recent_documents(self, limit: int = 50) -> list[Document]:
        """Most recent documents, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_DOC_COLUMNS} FROM documents ORDER BY ts DESC, id DESC LIMIT ?",
                (max(0, limit),),
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def stats(self) -> StoreStats:
        """Document and vector counts from one consistent snapshot."""
        with self._transaction("DEFERRED") as conn:
            docs = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            vecs = conn.execute("SELECT COUNT(*) FROM vectors").fetchone()[0]
        return StoreStats(document_count=docs, vector_count=vecs)
