"""
Concept Expander - builds bounded semantic search concepts from an intent.

Combines intent metrics, filter phrases and intent-type keywords into a
ranked, deduplicated concept list. Pure function of its inputs: no network or
storage access, same inputs always give the same ordered output.
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import structlog
from rapidfuzz.distance import Levenshtein

from clinical_insights.core.measurement_concepts import to_measurement_concept_key
from clinical_insights.core.resolution_config import (
    CONCEPT_SIMILARITY_THRESHOLD,
    MAX_FILTER_CONCEPTS,
    MAX_INTENT_KEYWORDS,
    MAX_METRIC_CONCEPTS,
    MAX_PHRASE_FREQUENCY,
    MAX_TOTAL_CONCEPTS,
)
from clinical_insights.core.resolution_models import Concept, ConceptSource, ExpandedConcepts, IntentFilter

logger = structlog.get_logger()

INTENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "outcome_analysis": ("outcome", "result", "healing", "closure", "improvement"),
    "trend_analysis": ("trend", "change over time", "trajectory", "increase", "decrease"),
    "cohort_comparison": ("compare", "versus", "cohort difference", "group comparison", "vs"),
    "risk_assessment": ("risk", "likelihood", "probability", "complication", "risk factor"),
    "quality_metrics": ("quality", "compliance", "protocol", "performance", "benchmark"),
    "operational_metrics": ("operations", "throughput", "volume", "efficiency", "workflow"),
    "temporal_proximity_query": (
        "temporal",
        "time",
        "baseline",
        "measurement",
        "weeks",
        "days",
        "at",
        "around",
        "near",
        "close to",
    ),
    "assessment_correlation_check": (
        "assessment",
        "missing",
        "correlation",
        "relationship",
        "match",
        "compare",
        "reconciliation",
        "discrepancy",
        "mismatch",
    ),
    "workflow_status_monitoring": (
        "workflow",
        "status",
        "state",
        "progress",
        "stage",
        "pending",
        "complete",
        "in progress",
        "approved",
        "rejected",
    ),
}

_CONCEPT_NOISE = re.compile(r"[^a-z0-9_\s-]+")
_SEPARATORS = re.compile(r"[_-]+")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class _RankedPhrase:
    concept: str
    source: ConceptSource
    count: int
    first_index: int
    raw: str


def normalize_concept(value: str) -> str:
    return _WHITESPACE.sub(" ", _CONCEPT_NOISE.sub(" ", value.lower())).strip()


def _dedup_key(value: str) -> str:
    return _WHITESPACE.sub(" ", _SEPARATORS.sub(" ", value)).strip()


def concept_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity: (longer - distance) / longer."""
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def rank_by_frequency(
    phrases: Iterable[str],
    limit: int,
    max_phrase_freq: int,
    source: ConceptSource,
) -> list[_RankedPhrase]:
    """
    Rank phrases by capped frequency, ties broken by first occurrence.

    Phrases are canonicalized through the measurement vocabulary first, so
    synonyms count toward the same concept.
    """
    counts: dict[str, _RankedPhrase] = {}

    for index, phrase in enumerate(phrases):
        normalized = normalize_concept(phrase or "")
        if not normalized:
            continue

        key = to_measurement_concept_key(phrase) or normalized
        existing = counts.get(key)
        if existing:
            existing.count = min(existing.count + 1, max_phrase_freq)
        else:
            counts[key] = _RankedPhrase(concept=key, source=source, count=1, first_index=index, raw=phrase)

    ranked = sorted(counts.values(), key=lambda r: (-r.count, r.first_index))
    return ranked[:limit]


class ConceptExpander:
    """
    Builds the concept list for one question.

    Merge priority is metrics, then filter phrases, then intent keywords.
    A candidate is dropped when its dedup key equals, or is at least 90%
    similar to, one already accepted.
    """

    def __init__(
        self,
        max_concepts: int = MAX_TOTAL_CONCEPTS,
        max_phrase_freq: int = MAX_PHRASE_FREQUENCY,
        similarity_threshold: float = CONCEPT_SIMILARITY_THRESHOLD,
    ):
        self.default_max_concepts = min(max_concepts, MAX_TOTAL_CONCEPTS)
        self.max_phrase_freq = max_phrase_freq
        self.similarity_threshold = similarity_threshold

    def expand(
        self,
        intent_type: str | None,
        metrics: Sequence[str] = (),
        filters: Sequence[IntentFilter] = (),
        max_concepts: int | None = None,
        max_phrase_freq: int | None = None,
    ) -> ExpandedConcepts:
        """
        Build a bounded, deduplicated concept list.

        Args:
            intent_type: Intent classification (selects intent keywords)
            metrics: Metric phrases from intent parsing
            filters: Filter terms; their user phrases become concepts
            max_concepts: Optional override, clamped to the default ceiling
            max_phrase_freq: Optional frequency cap override

        Returns:
            ExpandedConcepts with per-concept source and provenance
        """
        limit = self.default_max_concepts
        if max_concepts is not None and max_concepts > 0:
            limit = min(max_concepts, MAX_TOTAL_CONCEPTS)
        freq_cap = max_phrase_freq if max_phrase_freq is not None else self.max_phrase_freq

        candidates = [
            *rank_by_frequency(metrics, MAX_METRIC_CONCEPTS, freq_cap, "metric"),
            *rank_by_frequency(
                (f.user_phrase for f in filters if f.user_phrase),
                MAX_FILTER_CONCEPTS,
                freq_cap,
                "filter",
            ),
            *rank_by_frequency(INTENT_KEYWORDS.get(intent_type or "", ()), MAX_INTENT_KEYWORDS, 1, "intent_type"),
        ]

        accepted: list[Concept] = []
        accepted_keys: list[str] = []
        for candidate in candidates:
            if len(accepted) >= limit:
                break

            key = _dedup_key(candidate.concept)
            if self._is_duplicate(key, accepted_keys):
                continue

            accepted.append(
                Concept(
                    text=candidate.concept,
                    source=candidate.source,
                    score=candidate.count,
                    explanation=f"{candidate.source}:{candidate.raw} (freq={candidate.count})",
                )
            )
            accepted_keys.append(key)

        logger.debug(
            "concepts_expanded",
            intent_type=intent_type,
            candidates=len(candidates),
            concepts=len(accepted),
            limit=limit,
        )
        return ExpandedConcepts(concepts=accepted)

    def _is_duplicate(self, key: str, existing: list[str]) -> bool:
        for other in existing:
            if not other:
                continue
            if other == key or concept_similarity(key, other) >= self.similarity_threshold:
                return True
        return False
