"""
Template Matcher - scores catalog templates against a question.

score = keyword_hits * 3 + name/description token overlap * 1 + best example
Jaccard similarity * 4, multiplied by (1 + success_rate) when the template has
usage history. Ranking is a stable sort, so ties keep catalog order.
"""

import re
from collections.abc import Sequence

import structlog

from clinical_insights.core.resolution_config import (
    TEMPLATE_APPROVED_STATUS,
    TEMPLATE_MATCH_THRESHOLD,
    TEMPLATE_SCORE_SATURATION,
)
from clinical_insights.core.resolution_models import QueryTemplate, TemplateMatch, TemplateMatchResult
from clinical_insights.core.template_catalog import TemplateCatalog, TemplateSource

logger = structlog.get_logger()

_TOKEN_SPLIT = re.compile(r"[^a-z0-9_]+")

KEYWORD_WEIGHT = 3.0
NAME_DESC_WEIGHT = 1.0
EXAMPLE_WEIGHT = 4.0


def tokenize(text: str | None) -> set[str]:
    return {token for token in _TOKEN_SPLIT.split((text or "").lower()) if token}


def jaccard_similarity(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    intersection = len(a & b)
    return intersection / (len(a) + len(b) - intersection)


def score_template(question_tokens: set[str], template: QueryTemplate) -> TemplateMatch:
    """Score one template against pre-tokenized question text."""
    keyword_matches = [kw for kw in template.keywords if kw.lower() in question_tokens]
    name_desc_matches = tokenize(f"{template.name} {template.description or ''}") & question_tokens

    best_example_score = 0.0
    best_example: str | None = None
    for example in template.question_examples:
        similarity = jaccard_similarity(question_tokens, tokenize(example))
        if similarity > best_example_score:
            best_example_score = similarity
            best_example = example

    base_score = (
        len(keyword_matches) * KEYWORD_WEIGHT
        + len(name_desc_matches) * NAME_DESC_WEIGHT
        + best_example_score * EXAMPLE_WEIGHT
    )
    success_rate = template.success_rate
    weighted_score = base_score * (1 + success_rate) if success_rate is not None else base_score

    return TemplateMatch(
        template=template,
        score=weighted_score,
        base_score=base_score,
        matched_keywords=keyword_matches,
        matched_example=best_example,
        success_rate=success_rate,
    )


def match_templates(question: str, templates: Sequence[QueryTemplate], k: int = 2) -> list[TemplateMatch]:
    """
    Top-k templates for a question.

    Args:
        question: User question (or sub-question)
        templates: Catalog templates, in catalog order
        k: Number of matches to return

    Returns:
        Matches sorted by weighted score descending (ties keep catalog order)
    """
    if not question or not templates or k <= 0:
        return []

    question_tokens = tokenize(question)
    scored = [score_template(question_tokens, template) for template in templates]
    scored.sort(key=lambda match: match.score, reverse=True)
    return scored[:k]


def score_to_confidence(score: float) -> float:
    """Map a weighted score onto 0-1."""
    return min(max(score / TEMPLATE_SCORE_SATURATION, 0.0), 1.0)


class TemplateMatcher:
    """Best-template decision over the current catalog."""

    def __init__(
        self,
        catalog: TemplateCatalog,
        threshold: float = TEMPLATE_MATCH_THRESHOLD,
        source: TemplateSource | None = None,
    ):
        self.catalog = catalog
        self.threshold = threshold
        self.source = source  # None resolves the toggle on every load

    def match_templates(self, question: str, k: int = 2, source: TemplateSource | None = None) -> list[TemplateMatch]:
        return match_templates(question, self.catalog.get_templates(source or self.source), k)

    def match_template(self, question: str, source: TemplateSource | None = None) -> TemplateMatchResult:
        """
        Best approved template for a question, if it clears the threshold.

        Returns:
            TemplateMatchResult; matched=False carries the best confidence seen
        """
        templates = self.catalog.get_templates(source or self.source)
        approved = [t for t in templates if t.status == TEMPLATE_APPROVED_STATUS]
        if not approved:
            return TemplateMatchResult(matched=False, confidence=0.0)

        ranked = [m for m in match_templates(question, approved, k=len(approved)) if m.score > 0]
        if not ranked:
            return TemplateMatchResult(matched=False, confidence=0.0)

        best = ranked[0]
        confidence = score_to_confidence(best.score)
        logger.debug(
            "template_match_scored",
            template=best.template.name,
            score=best.score,
            confidence=confidence,
            matched_keywords=best.matched_keywords,
        )

        if confidence < self.threshold:
            return TemplateMatchResult(matched=False, confidence=confidence)

        return TemplateMatchResult(
            matched=True,
            confidence=confidence,
            template=best.template,
            matched_keywords=best.matched_keywords,
            matched_example=best.matched_example,
        )
