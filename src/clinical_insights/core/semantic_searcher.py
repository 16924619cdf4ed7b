"""
Semantic Searcher - maps concepts to schema elements.

Finds form fields and non-form columns for a set of concepts, ranked by
confidence. Results and per-concept embeddings are cached; ontology
resolution and embedding failures degrade instead of failing the search.
"""

from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import TypeVar

import structlog

from clinical_insights.core.collaborators import Embedder, SemanticIndexStore
from clinical_insights.core.measurement_concepts import to_measurement_concept_key
from clinical_insights.core.resolution_config import (
    EMBEDDING_DIMENSIONS,
    SEARCH_DEFAULT_LIMIT,
    SEARCH_MAX_LIMIT,
    SEARCH_MIN_CONFIDENCE,
    SEARCH_TIMEOUT_SECONDS,
)
from clinical_insights.core.resolution_models import ResolutionInputError, SemanticSearchResult
from clinical_insights.core.search_cache import SemanticSearchCache

logger = structlog.get_logger()

T = TypeVar("T")


def expand_concept_phrases(concepts: Sequence[str]) -> list[str]:
    """Trimmed, de-duplicated concepts, each followed by its canonical measurement key."""
    ordered: list[str] = []
    seen: set[str] = set()

    def _add(value: str | None) -> None:
        if not value or not isinstance(value, str):
            return
        trimmed = value.strip()
        if trimmed and trimmed not in seen:
            seen.add(trimmed)
            ordered.append(trimmed)

    for concept in concepts:
        _add(concept)
        if isinstance(concept, str):
            _add(to_measurement_concept_key(concept))

    return ordered


class SemanticSearcher:
    """
    Customer-scoped semantic search with a shared two-tier cache.

    Construct once per process. Independent reads (per-concept embeddings,
    form vs non-form search) run on a private thread pool and are awaited
    jointly with a bounded timeout.
    """

    def __init__(
        self,
        index_store: SemanticIndexStore,
        embedder: Embedder | None = None,
        cache: SemanticSearchCache | None = None,
        min_confidence: float = SEARCH_MIN_CONFIDENCE,
        default_limit: int = SEARCH_DEFAULT_LIMIT,
        timeout_seconds: float = SEARCH_TIMEOUT_SECONDS,
        embedding_dimensions: int = EMBEDDING_DIMENSIONS,
        max_workers: int = 8,
    ):
        self.index_store = index_store
        self.embedder = embedder
        self.cache = cache or SemanticSearchCache()
        self.min_confidence = min_confidence
        self.default_limit = default_limit
        self.timeout_seconds = timeout_seconds
        self.embedding_dimensions = embedding_dimensions
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="semantic-search")

    def search(
        self,
        customer_id: str,
        concepts: Sequence[str],
        min_confidence: float | None = None,
        include_non_form: bool = False,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> list[SemanticSearchResult]:
        """
        Search form fields (and optionally non-form columns) for concepts.

        Args:
            customer_id: Customer scope
            concepts: Concept phrases (from the concept expander)
            min_confidence: Minimum confidence for a hit (default 0.7)
            include_non_form: Also search non-form columns, concurrently
            limit: Max results, capped at 50 (default 20)
            timeout: Seconds to wait for the index store (default from config)

        Returns:
            Results sorted by confidence descending

        Raises:
            ResolutionInputError: customer_id or concepts empty
            TimeoutError: index store did not answer within timeout
        """
        self._validate_inputs(customer_id, concepts)
        min_confidence = self.min_confidence if min_confidence is None else min_confidence
        limit = min(limit or self.default_limit, SEARCH_MAX_LIMIT)
        timeout = self.timeout_seconds if timeout is None else timeout

        cached = self.cache.get_results(customer_id, concepts, True, include_non_form)
        if cached is not None:
            logger.debug("semantic_search_cache_hit", customer_id=customer_id, concepts=len(concepts))
            return cached[:limit]

        search_terms, concept_ids = self._resolve_search_inputs(concepts)
        embeddings = self._embed_concepts(concepts, timeout)

        branches: dict[str, Callable[[], list[SemanticSearchResult]]] = {
            "form": lambda: self.index_store.search_form_fields(
                customer_id, search_terms, concept_ids, embeddings, min_confidence
            ),
        }
        if include_non_form:
            branches["non_form"] = lambda: self.index_store.search_non_form_columns(
                customer_id, search_terms, concept_ids, embeddings, min_confidence
            )

        branch_results = self._run_jointly(branches, timeout)
        merged = [result for name in branches for result in branch_results[name]]
        merged.sort(key=lambda r: r.confidence, reverse=True)

        self.cache.set_results(customer_id, concepts, True, include_non_form, merged)

        logger.info(
            "semantic_search_complete",
            customer_id=customer_id,
            concepts=len(concepts),
            concept_ids=len(concept_ids),
            include_non_form=include_non_form,
            results=len(merged),
        )
        return merged[:limit]

    def search_non_form_columns(
        self,
        customer_id: str,
        concepts: Sequence[str],
        min_confidence: float | None = None,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> list[SemanticSearchResult]:
        """Search only non-form columns (not cached)."""
        self._validate_inputs(customer_id, concepts)
        min_confidence = self.min_confidence if min_confidence is None else min_confidence
        limit = min(limit or self.default_limit, SEARCH_MAX_LIMIT)
        timeout = self.timeout_seconds if timeout is None else timeout

        search_terms, concept_ids = self._resolve_search_inputs(concepts)
        embeddings = self._embed_concepts(concepts, timeout)
        results = self._run_jointly(
            {
                "non_form": lambda: self.index_store.search_non_form_columns(
                    customer_id, search_terms, concept_ids, embeddings, min_confidence
                )
            },
            timeout,
        )["non_form"]
        return sorted(results, key=lambda r: r.confidence, reverse=True)[:limit]

    def invalidate(self) -> None:
        """Drop cached embeddings and results."""
        self.cache.invalidate()

    def reset(self) -> None:
        """Stop the cache sweeper and drop cached state."""
        self.cache.reset()

    def close(self) -> None:
        self.cache.stop_sweeper()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _validate_inputs(self, customer_id: str, concepts: Sequence[str]) -> None:
        if not customer_id or not customer_id.strip():
            raise ResolutionInputError("customer_id is required for semantic search")
        if not concepts:
            raise ResolutionInputError("at least one concept is required for semantic search")
        if not any(isinstance(c, str) and c.strip() for c in concepts):
            raise ResolutionInputError("at least one non-blank concept is required for semantic search")

    def _resolve_search_inputs(self, concepts: Sequence[str]) -> tuple[list[str], list[str]]:
        """
        Expand concepts and map them to controlled-vocabulary ids.

        Ontology failures degrade to literal matching (no ids).
        """
        search_terms = expand_concept_phrases(concepts)
        normalized = [term.lower().strip() for term in search_terms if term.strip()]

        try:
            concept_ids = list(dict.fromkeys(self.index_store.resolve_concept_ids(normalized)))
        except Exception as e:
            logger.warning("ontology_resolution_failed", error=str(e), terms=len(normalized))
            concept_ids = []

        return search_terms, concept_ids

    def _embed_concepts(self, concepts: Sequence[str], timeout: float) -> list[list[float]]:
        """Embeddings for every concept, concurrently; failures become zero vectors."""
        vectors: list[list[float] | None] = [self.cache.get_embedding(c) for c in concepts]
        if self.embedder is None:
            return [v or self._zero_vector() for v in vectors]

        pending: dict[int, Future] = {
            index: self._executor.submit(self.embedder.embed, concept)
            for index, (concept, vector) in enumerate(zip(concepts, vectors))
            if vector is None
        }
        if pending:
            wait(pending.values(), timeout=timeout)

        for index, future in pending.items():
            concept = concepts[index]
            vector = None
            if not future.done():
                future.cancel()
                logger.warning("concept_embedding_timeout", concept=concept, timeout_seconds=timeout)
            elif future.exception() is not None:
                logger.warning("concept_embedding_failed", concept=concept, error=str(future.exception()))
            else:
                vector = future.result()
                if not vector:
                    logger.warning("concept_embedding_failed", concept=concept, error="empty embedding")

            if vector:
                self.cache.set_embedding(concept, vector)
                vectors[index] = vector
            else:
                vectors[index] = self._zero_vector()

        return [v or self._zero_vector() for v in vectors]

    def _run_jointly(self, branches: dict[str, Callable[[], T]], timeout: float) -> dict[str, T]:
        """
        Run independent branches concurrently and wait for all of them.

        A failing branch does not cancel its siblings; its exception is
        raised once every branch has settled. Branches still running after
        timeout are cancelled and TimeoutError is raised.
        """
        futures = {name: self._executor.submit(fn) for name, fn in branches.items()}
        wait(futures.values(), timeout=timeout)

        results: dict[str, T] = {}
        for name, future in futures.items():
            if not future.done():
                future.cancel()
                logger.warning("semantic_search_branch_timeout", branch=name, timeout_seconds=timeout)
                raise TimeoutError(f"semantic search branch {name} did not complete within {timeout}s")
            error = future.exception()
            if error is not None:
                logger.error("semantic_search_branch_failed", branch=name, error=str(error))
                raise error
            results[name] = future.result()
        return results

    def _zero_vector(self) -> list[float]:
        return [0.0] * self.embedding_dimensions
