from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "BAAI/bge-small-en-v1.5"
DEFAULT_EMBEDDING_DIMENSIONS = 384
MAX_EMBED_CHARS = 2000


class _FastEmbedClient:
    def __init__(self, model: str) -> None:
        try:
            from fastembed import TextEmbedding
        except Exception as exc:  # pragma: no cover
            raise RuntimeError("fastembed is required for semantic search") from exc
        self.model = model
        self._embedder = TextEmbedding(model_name=model)

    def embed(self, texts: Iterable[str]) -> list[list[float]]:
        embeddings = self._embedder.embed(list(texts))
        return [[float(value) for value in vec] for vec in embeddings]


class EmbeddingProvider:
    """Text to vector capability backed by fastembed.

    The model is loaded on first use. Concurrent first callers block on the
    same lock and share the one load attempt; a failed load is remembered
    and the provider then reports itself unavailable.
    """

    name = "fastembed"

    def __init__(
        self,
        model: str = DEFAULT_EMBEDDING_MODEL,
        *,
        dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
        disabled: bool = False,
    ) -> None:
        self.model = model
        self._dimensions = dimensions
        self._disabled = disabled
        self._client: _FastEmbedClient | None = None
        self._initialized = False
        self._lock = threading.Lock()

    def initialize(self) -> bool:
        if self._initialized:
            return self._client is not None
        with self._lock:
            if not self._initialized:
                self._client = self._load_client()
                self._initialized = True
        return self._client is not None

    def _load_client(self) -> _FastEmbedClient | None:
        if self._disabled:
            return None
        try:
            client = _FastEmbedClient(model=self.model)
        except Exception as exc:
            logger.warning("embedding provider unavailable: %s", self.model, exc_info=exc)
            return None
        logger.info("embedding provider ready: %s", self.model)
        return client

    def is_available(self) -> bool:
        return self.initialize()

    def provider_name(self) -> str | None:
        return self.name if self.initialize() else None

    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> list[float] | None:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float] | None]:
        results: list[list[float] | None] = [None] * len(texts)
        if not texts or not self.initialize() or self._client is None:
            return results
        indexed = [(index, text[:MAX_EMBED_CHARS]) for index, text in enumerate(texts)]
        indexed = [(index, text) for index, text in indexed if text.strip()]
        if not indexed:
            return results
        try:
            vectors = self._client.embed(text for _, text in indexed)
        except Exception as exc:
            logger.warning("embedding batch failed (%d texts)", len(indexed), exc_info=exc)
            return results
        for (index, _), vector in zip(indexed, vectors, strict=False):
            results[index] = vector or None
        return results


class EmbeddingQueue:
    """Single worker that runs embedding jobs off the caller's thread.

    Jobs are keyed by observation id and must be idempotent; failures are
    logged and dropped.
    """

    def __init__(self, job: Callable[[int], None]) -> None:
        self._job = job
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recallmem-embed")
        self._pending: set[Future[None]] = set()
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, observation_id: int) -> None:
        with self._lock:
            if self._closed:
                return
            future = self._executor.submit(self._run, observation_id)
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run(self, observation_id: int) -> None:
        try:
            self._job(observation_id)
        except Exception as exc:
            logger.warning(
                "background embedding failed for observation %s", observation_id, exc_info=exc
            )

    def drain(self, timeout: float | None = None) -> None:
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
