"""Global fixtures: temp DB, fake embedding backend, engine wiring."""

import hashlib
import tempfile
import threading
import time
from pathlib import Path
from typing import Optional

import numpy as np
import pytest

from recollect.core.embeddings import (
    BackendExistsError,
    EmbeddingBackend,
    EmbeddingCoordinator,
)
from recollect.core.engine import Engine
from recollect.database.store import DocumentStore
from recollect.utils.capture_config import CaptureConfig


def hash_vector(text: str, dim: int = 16) -> np.ndarray:
    """Deterministic unit vector from token hashes (bag of words)."""
    vec = np.zeros(dim, dtype=np.float32)
    for token in text.lower().split():
        h = int(hashlib.sha256(token.encode("utf-8")).hexdigest(), 16)
        vec[h % dim] += 1.0 if (h >> 8) % 2 == 0 else -1.0
    norm = float(np.linalg.norm(vec))
    return vec / norm if norm else vec


class FakeBackend(EmbeddingBackend):
    """Deterministic stand-in for the sentence-transformers model.

    Records how often it was initialized and which texts it embedded.
    """

    def __init__(
        self,
        *,
        init_delay: float = 0.0,
        init_error: Optional[Exception] = None,
        fixed: Optional[dict[str, list[float]]] = None,
        fail_on: Optional[set[str]] = None,
        dim: int = 16,
    ) -> None:
        self.init_delay = init_delay
        self.init_error = init_error
        self.fixed = fixed or {}
        self.fail_on = fail_on or set()
        self.dim = dim
        self.init_calls = 0
        self.embedded: list[str] = []
        self.last_output: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    def initialize(self) -> None:
        with self._lock:
            self.init_calls += 1
        if self.init_delay:
            time.sleep(self.init_delay)
        if self.init_error is not None:
            raise self.init_error

    def embed(self, text: str) -> np.ndarray:
        self.embedded.append(text)
        if text in self.fail_on:
            raise RuntimeError(f"cannot embed {text!r}")
        if text in self.fixed:
            out = np.array(self.fixed[text], dtype=np.float32)
        else:
            out = hash_vector(text, self.dim)
        self.last_output = out
        return out


class ExistingBackend(FakeBackend):
    """Backend whose model was already loaded by a peer."""

    def initialize(self) -> None:
        super().initialize()
        raise BackendExistsError("already loaded")


@pytest.fixture
def temp_db_path() -> Path:
    """Temporary SQLite path (cleaned up after test)."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp) / "recollect.db"


@pytest.fixture
def store(temp_db_path: Path) -> DocumentStore:
    """Initialized DocumentStore with temp path."""
    s = DocumentStore(temp_db_path)
    s.init_db()
    return s


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def coordinator(backend: FakeBackend) -> EmbeddingCoordinator:
    return EmbeddingCoordinator(backend)


@pytest.fixture
def engine(store: DocumentStore, coordinator: EmbeddingCoordinator) -> Engine:
    """Engine over the temp store with the fake backend and default capture policy."""
    return Engine(
        store=store,
        coordinator=coordinator,
        capture_config=CaptureConfig(),
    )
