"""
Two-tier TTL cache for semantic search.

Holds per-concept embeddings and per-(customer, concept set, flags) result
lists. Shared across requests: every read, write and sweep goes through the
same lock, and the lock is held only for dict operations.
"""

import hashlib
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

from clinical_insights.core.resolution_config import (
    CACHE_SWEEP_INTERVAL_SECONDS,
    EMBEDDING_TTL_SECONDS,
    RESULTS_TTL_SECONDS,
)
from clinical_insights.core.resolution_models import SemanticSearchResult

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class _Entry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """Thread-safe key/value map whose entries expire after a fixed TTL."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry[T]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + self.ttl_seconds)

    def evict_expired(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def results_cache_key(
    customer_id: str,
    concepts: Sequence[str],
    include_form_fields: bool,
    include_non_form: bool,
) -> str:
    """sha256 of customer:sorted concepts:flags (concept order does not matter)."""
    raw = f"{customer_id}:{','.join(sorted(concepts))}:{include_form_fields}:{include_non_form}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class SemanticSearchCache:
    """
    Embedding + result caches with an optional background sweep.

    Owned by one SemanticSearcher. Call start_sweeper() once per process and
    stop_sweeper() on shutdown; invalidate()/reset() exist for tests and for
    forced reloads.
    """

    def __init__(
        self,
        embedding_ttl_seconds: float = EMBEDDING_TTL_SECONDS,
        results_ttl_seconds: float = RESULTS_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.embeddings: TTLCache[list[float]] = TTLCache(embedding_ttl_seconds, clock)
        self.results: TTLCache[list[SemanticSearchResult]] = TTLCache(results_ttl_seconds, clock)
        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None

    def get_embedding(self, concept: str) -> list[float] | None:
        return self.embeddings.get(f"emb:{concept}")

    def set_embedding(self, concept: str, embedding: list[float]) -> None:
        self.embeddings.set(f"emb:{concept}", embedding)

    def get_results(
        self,
        customer_id: str,
        concepts: Sequence[str],
        include_form_fields: bool,
        include_non_form: bool,
    ) -> list[SemanticSearchResult] | None:
        return self.results.get(results_cache_key(customer_id, concepts, include_form_fields, include_non_form))

    def set_results(
        self,
        customer_id: str,
        concepts: Sequence[str],
        include_form_fields: bool,
        include_non_form: bool,
        results: list[SemanticSearchResult],
    ) -> None:
        key = results_cache_key(customer_id, concepts, include_form_fields, include_non_form)
        self.results.set(key, list(results))

    def sweep(self) -> int:
        """Evict expired entries from both tiers."""
        removed = self.embeddings.evict_expired() + self.results.evict_expired()
        if removed:
            logger.debug("semantic_cache_swept", removed=removed)
        return removed

    def invalidate(self) -> None:
        """Drop every cached embedding and result."""
        self.embeddings.clear()
        self.results.clear()

    def reset(self) -> None:
        """Stop the sweeper and drop all entries."""
        self.stop_sweeper()
        self.invalidate()

    def start_sweeper(self, interval_seconds: float = CACHE_SWEEP_INTERVAL_SECONDS) -> None:
        """Start the periodic sweep on a daemon thread (no-op if running)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return

        self._stop_event.clear()

        def _run() -> None:
            while not self._stop_event.wait(interval_seconds):
                self.sweep()

        self._sweeper = threading.Thread(target=_run, name="semantic-cache-sweeper", daemon=True)
        self._sweeper.start()
        logger.info("semantic_cache_sweeper_started", interval_seconds=interval_seconds)

    def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._stop_event.set()
        self._sweeper.join(timeout=1.0)
        self._sweeper = None
