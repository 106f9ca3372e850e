"""Embedding coordination: one lazily-initialized backend shared by all callers.

The backend (a local sentence-transformers model) is slow to load and holds
process-wide state. `EmbeddingCoordinator` guarantees that:

- at most one initialization is in flight; concurrent callers await the
  same one,
- a backend reporting that a peer already initialized it counts as ready,
- any other initialization failure reaches every waiter and leaves the
  coordinator uninitialized, so the next call retries,
- embed calls reach the backend one at a time,
- returned vectors are fresh float32 arrays, never the backend's buffers.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Literal, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

MAX_EMBED_CHARS = 1000
WARMUP_TEXT = "warmup"

CoordinatorState = Literal["uninitialized", "initializing", "ready"]


class BackendUnavailableError(RuntimeError):
    """The embedding backend could not be initialized."""


class BackendExistsError(RuntimeError):
    """A peer already initialized the shared backend; it is usable."""


class EmbeddingBackend(ABC):
    """Interface for a stateful text -> vector function."""

    @abstractmethod
    def initialize(self) -> None:
        """Load the model. May block for a long time.

        Raises:
            BackendExistsError: A usable instance was already created by a peer.
        """
        ...

    @abstractmethod
    def embed(self, text: str) -> Sequence[float]:
        """Embed one already-normalized text."""
        ...


# Loaded models keyed by model name; shared by every backend in the process.
_MODELS: dict[str, Any] = {}
_MODELS_LOCK = threading.Lock()


class SentenceTransformerBackend(EmbeddingBackend):
    """Local sentence-transformers model producing normalized embeddings."""

    def __init__(
        self,
        model_name: str = "BAAI/bge-small-en-v1.5",
        cache_dir: Optional[Path] = None,
        offline: bool = False,
    ) -> None:
        """
        Args:
            model_name: Hugging Face model id or local path.
            cache_dir: Optional model cache directory.
            offline: Only load from the local cache, never download.
        """
        self._model_name = model_name
        self._cache_dir = cache_dir
        self._offline = offline

    @property
    def model_name(self) -> str:
        return self._model_name

    def initialize(self) -> None:
        with _MODELS_LOCK:
            if self._model_name in _MODELS:
                raise BackendExistsError(self._model_name)
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model %s", self._model_name)
            _MODELS[self._model_name] = SentenceTransformer(
                self._model_name,
                cache_folder=str(self._cache_dir) if self._cache_dir else None,
                local_files_only=self._offline,
            )

    def embed(self, text: str) -> Sequence[float]:
        model = _MODELS.get(self._model_name)
        if model is None:
            raise RuntimeError(f"Model {self._model_name} is not loaded")
        return model.encode(text, normalize_embeddings=True, convert_to_numpy=True)


def normalize_text(text: Optional[str]) -> str:
    """Trim and cap input at MAX_EMBED_CHARS."""
    return (text or "").strip()[:MAX_EMBED_CHARS]


class EmbeddingCoordinator:
    """Owns the shared backend and serializes access to it."""

    def __init__(self, backend: EmbeddingBackend) -> None:
        self._backend = backend
        self._ready = False
        self._init_future: Optional[asyncio.Future] = None
        self._call_lock: Optional[asyncio.Lock] = None

    @property
    def state(self) -> CoordinatorState:
        if self._ready:
            return "ready"
        if self._init_future is not None and not self._init_future.done():
            return "initializing"
        return "uninitialized"

    async def _initialize(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._backend.initialize)
        except BackendExistsError:
            logger.debug("Embedding backend already initialized by a peer")
        except Exception as e:
            raise BackendUnavailableError(f"Embedding backend failed to start: {e}") from e
        self._ready = True

    async def _ensure_ready(self) -> None:
        """Start initialization once and wait for it with every other caller."""
        if self._ready:
            return
        if self._init_future is None:
            self._init_future = asyncio.ensure_future(self._initialize())
        future = self._init_future
        try:
            # shield: a cancelled waiter must not cancel the shared init
            await asyncio.shield(future)
        except BackendUnavailableError:
            if self._init_future is future:
                self._init_future = None
            raise

    def _lock(self) -> asyncio.Lock:
        if self._call_lock is None:
            self._call_lock = asyncio.Lock()
        return self._call_lock

    async def embed(self, text: Optional[str]) -> Optional[np.ndarray]:
        """Embed text, or return None when there is nothing usable.

        Empty input never touches the backend. A failing call only affects
        its caller; the backend stays ready for the next one.

        Raises:
            BackendUnavailableError: Initialization failed.
        """
        payload = normalize_text(text)
        if not payload:
            return None

        await self._ensure_ready()

        loop = asyncio.get_running_loop()
        async with self._lock():
            try:
                raw = await loop.run_in_executor(None, self._backend.embed, payload)
            except Exception as e:
                logger.warning("Embedding failed: %s: %s", type(e).__name__, e)
                return None

        if raw is None:
            return None
        vec = np.array(raw, dtype=np.float32).reshape(-1)
        if vec.size == 0:
            return None
        return vec

    async def warmup(self) -> None:
        """Force initialization ahead of the first user-visible embed."""
        try:
            await self.embed(WARMUP_TEXT)
        except Exception as e:
            logger.warning("Embedding warmup failed: %s", e)


# Global coordinator instance (lazy initialization with thread safety)
_coordinator: Optional[EmbeddingCoordinator] = None
_coordinator_lock = threading.Lock()


def get_coordinator() -> EmbeddingCoordinator:
    """Return the process-wide coordinator, creating it from settings once."""
    global _coordinator
    if _coordinator is None:
        with _coordinator_lock:
            if _coordinator is None:
                from recollect.config import get_settings

                settings = get_settings()
                _coordinator = EmbeddingCoordinator(
                    SentenceTransformerBackend(
                        model_name=settings.model_name,
                        cache_dir=settings.model_cache_dir,
                        offline=settings.offline,
                    )
                )
    return _coordinator


def reset_coordinator() -> None:
    """Drop the global coordinator (tests, config reload)."""
    global _coordinator
    with _coordinator_lock:
        _coordinator = None
