"""Application logic layer."""

from .embeddings import (
    BackendExistsError,
    BackendUnavailableError,
    EmbeddingBackend,
    EmbeddingCoordinator,
    SentenceTransformerBackend,
    get_coordinator,
)
from .engine import Engine
from .query import parse_query
from .ranking import RankingEngine, SearchSession

__all__ = [
    "BackendExistsError",
    "BackendUnavailableError",
    "EmbeddingBackend",
    "EmbeddingCoordinator",
    "Engine",
    "RankingEngine",
    "SearchSession",
    "SentenceTransformerBackend",
    "get_coordinator",
    "parse_query",
]
