"""
Question complexity detection.

Scores a question 0-10 from surface indicators and maps the score to an
execution strategy: auto (run directly), preview (show steps, then run) or
inspect (require review before running).
"""

import re
from dataclasses import dataclass, field
from typing import Literal

from clinical_insights.core.resolution_config import COMPLEXITY_MEDIUM_MAX, COMPLEXITY_SIMPLE_MAX

QueryComplexity = Literal["simple", "medium", "complex"]
ExecutionStrategy = Literal["auto", "preview", "inspect"]

MULTI_STEP_PATTERNS = [
    re.compile(p)
    for p in (
        r"\bthen\b",
        r"\bafter that\b",
        r"\bfollowed by\b",
        r"\bfirst\b.*\bthen\b",
        r"\balso\b",
        r"\badditionally\b",
    )
]
AGGREGATION_PATTERNS = [
    re.compile(rf"\b{word}\b")
    for word in ("average", "mean", "sum", "total", "count", "max", "min", "percentage", "rate")
]
COMPARISON_PATTERNS = [
    re.compile(p)
    for p in (
        r"\bcompare",
        r"\bversus\b",
        r"\bvs\b",
        r"\bdifference between\b",
        r"\bbetter than\b",
        r"\bworse than\b",
        r"\bhigher than\b",
        r"\blower than\b",
    )
]
TIME_SERIES_PATTERNS = [
    re.compile(p)
    for p in (
        r"\bover time\b",
        r"\btrend",
        r"\btimeline\b",
        r"\bhistory\b",
        r"\bweekly\b",
        r"\bmonthly\b",
        r"\bquarterly\b",
        r"\byearly\b",
        r"\bper (?:day|week|month)\b",
    )
]
JOIN_PATTERNS = [
    re.compile(p) for p in (r"\bfor each\b", r"\bby patient\b.*\bby wound\b", r"\bgrouped by\b", r"\bper\b.*\bper\b")
]
ENTITY_KEYWORDS = (
    "patient",
    "wound",
    "assessment",
    "clinic",
    "clinician",
    "measurement",
    "visit",
    "treatment",
    "medication",
    "diagnosis",
)


@dataclass
class ComplexityAnalysis:
    complexity: QueryComplexity
    score: int  # 0-10
    strategy: ExecutionStrategy
    confidence: float
    reasons: list[str] = field(default_factory=list)
    multi_step: bool = False
    aggregations: int = 0
    comparisons: int = 0
    time_series: bool = False
    entities: int = 0

    @property
    def requires_preview(self) -> bool:
        return self.strategy != "auto"


def execution_strategy(
    score: int,
    simple_max: int = COMPLEXITY_SIMPLE_MAX,
    medium_max: int = COMPLEXITY_MEDIUM_MAX,
) -> ExecutionStrategy:
    if score <= simple_max:
        return "auto"
    if score <= medium_max:
        return "preview"
    return "inspect"


def analyze_complexity(
    question: str,
    simple_max: int = COMPLEXITY_SIMPLE_MAX,
    medium_max: int = COMPLEXITY_MEDIUM_MAX,
) -> ComplexityAnalysis:
    """
    Score a question's complexity.

    Weights: multi-step +3, two or more aggregations +2, comparison +2,
    time series +2, three or more entities +2, join phrasing +2; capped at 10.
    """
    text = (question or "").lower().strip()
    reasons: list[str] = []
    score = 0

    multi_step = any(p.search(text) for p in MULTI_STEP_PATTERNS)
    if multi_step:
        score += 3
        reasons.append("Multi-step question detected")

    aggregations = sum(1 for p in AGGREGATION_PATTERNS if p.search(text))
    if aggregations >= 2:
        score += 2
        reasons.append(f"Multiple aggregations ({aggregations})")

    comparisons = sum(1 for p in COMPARISON_PATTERNS if p.search(text))
    if comparisons:
        score += 2
        reasons.append("Comparison detected")

    time_series = any(p.search(text) for p in TIME_SERIES_PATTERNS)
    if time_series:
        score += 2
        reasons.append("Time series analysis detected")

    entities = sum(1 for keyword in ENTITY_KEYWORDS if keyword in text)
    if entities >= 3:
        score += 2
        reasons.append(f"Multiple entities detected ({entities})")

    if any(p.search(text) for p in JOIN_PATTERNS):
        score += 2
        reasons.append("Complex joins detected")

    score = min(score, 10)
    if score <= simple_max:
        complexity: QueryComplexity = "simple"
    elif score <= medium_max:
        complexity = "medium"
    else:
        complexity = "complex"

    return ComplexityAnalysis(
        complexity=complexity,
        score=score,
        strategy=execution_strategy(score, simple_max, medium_max),
        confidence=min(score / 10, 0.95),
        reasons=reasons or ["Simple single-entity query"],
        multi_step=multi_step,
        aggregations=aggregations,
        comparisons=comparisons,
        time_series=time_series,
        entities=entities,
    )
