"""Captured pages, query filters and pipeline results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from pydantic import BaseModel, Field


class Document(BaseModel):
    """A captured page.

    `canonical_url` is only used for duplicate detection and is never shown.
    """

    id: Optional[int] = Field(None, description="Store-assigned key")
    url: str
    title: str
    site: str = ""
    timestamp: int = Field(description="Capture time in ms since epoch")
    excerpt: str = ""
    canonical_url: Optional[str] = None


class CaptureRecord(BaseModel):
    """One page view as delivered by the capture collaborator."""

    url: Optional[str] = None
    title: Optional[str] = None
    site: Optional[str] = None
    timestamp: Optional[int] = None
    text: Optional[str] = None


class QueryFilter(BaseModel):
    """Structured form of a raw search query."""

    site: Optional[str] = None
    after_ts: Optional[int] = None
    before_ts: Optional[int] = None
    text: str = ""


class ScoredDocument(BaseModel):
    """Search result row."""

    id: Optional[int] = None
    url: str
    title: str
    site: str = ""
    timestamp: int
    excerpt: str = ""
    score: float = 0.0

    @classmethod
    def from_document(cls, doc: Document, score: float = 0.0) -> "ScoredDocument":
        return cls(
            id=doc.id,
            url=doc.url,
            title=doc.title,
            site=doc.site,
            timestamp=doc.timestamp,
            excerpt=doc.excerpt,
            score=score,
        )


@dataclass
class Candidate:
    """A document that passed the structural filters, with its vector if any."""

    document: Document
    vector: Optional[np.ndarray] = None


class StoreStats(BaseModel):
    document_count: int = 0
    vector_count: int = 0


class EngineStats(StoreStats):
    capture_failures: int = 0
    embed_failures: int = 0


class CaptureResult(BaseModel):
    """Outcome of a single capture; validation problems are values, not errors."""

    ok: bool
    id: Optional[int] = None
    skipped: bool = False
    error: Optional[str] = None


class BackfillReport(BaseModel):
    days: int
    inserted: int = 0
    embedded: int = 0
    skipped: int = 0
    errors: int = 0


class ReembedReport(BaseModel):
    saved: int = 0
    empty: int = 0
    errors: int = 0
    vectors: int = 0
