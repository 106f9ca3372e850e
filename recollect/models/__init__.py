"""Domain models."""

from .document import (
    BackfillReport,
    Candidate,
    CaptureRecord,
    CaptureResult,
    Document,
    EngineStats,
    QueryFilter,
    ReembedReport,
    ScoredDocument,
    StoreStats,
)

__all__ = [
    "BackfillReport",
    "Candidate",
    "CaptureRecord",
    "CaptureResult",
    "Document",
    "EngineStats",
    "QueryFilter",
    "ReembedReport",
    "ScoredDocument",
    "StoreStats",
]
