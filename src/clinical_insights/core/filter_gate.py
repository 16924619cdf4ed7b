"""
Unresolved-filter gate for direct generation.

A filter from intent parsing that has no schema field, no value or a mapping
error blocks direct generation until the user removes it or supplies a
constraint for it. Each such filter is surfaced as a clarification whose id is
derived from the filter's phrase and position, so answers can be matched on
the follow-up call.
"""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from clinical_insights.core.resolution_config import FREEFORM_MAX_CHARS, FREEFORM_MIN_CHARS
from clinical_insights.core.resolution_models import (
    REMOVE_FILTER_OVERRIDE,
    ClarificationOption,
    ClarificationRequest,
    FilterMetrics,
    FreeformSpec,
    IntentFilter,
)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

REMOVE_FILTER_LABEL = "Remove this filter"


@dataclass
class UnresolvedFilter:
    filter: IntentFilter
    index: int  # Position in the intent's filter list
    reason: str  # mapping error, field_not_assigned or value_missing

    @property
    def clarification_id(self) -> str:
        return build_unresolved_filter_clarification_id(self.filter, self.index)


@dataclass
class FilterDisposition:
    """Filters after applying the caller's answers."""

    active_filters: list[IntentFilter]  # Everything not removed
    pending: list[UnresolvedFilter]  # Unresolved and unanswered
    forwarded_answers: dict[str, str]  # Answers to pass on to generation
    removed: int


def _filter_slug(item: IntentFilter) -> str:
    base = (item.user_phrase or "").strip().lower() or (item.field or "").strip().lower() or "filter"
    return _NON_ALNUM.sub("_", base).strip("_") or "filter"


def build_unresolved_filter_clarification_id(item: IntentFilter, index: int) -> str:
    """unresolved_filter_<slug>_<index>, e.g. unresolved_filter_simple_bandages_0."""
    return f"unresolved_filter_{_filter_slug(item)}_{index}"


def collect_unresolved_filters(filters: Sequence[IntentFilter] | None) -> list[UnresolvedFilter]:
    """
    Filters that still need a decision, in intent order.

    Marks each one with a "Needs clarification" validation warning if it has none.
    """
    unresolved: list[UnresolvedFilter] = []
    for index, item in enumerate(filters or []):
        if item.field and item.value is not None and not item.mapping_error:
            continue

        if item.mapping_error:
            reason = item.mapping_error
        elif not item.field:
            reason = "field_not_assigned"
        else:
            reason = "value_missing"

        if not item.validation_warning:
            item.validation_warning = "Needs clarification"
        unresolved.append(UnresolvedFilter(filter=item, index=index, reason=reason))
    return unresolved


def is_remove_filter_answer(answer: str | None) -> bool:
    if answer is None:
        return False
    text = str(answer).strip()
    return text == REMOVE_FILTER_OVERRIDE or text.lower() == REMOVE_FILTER_LABEL.lower()


def apply_filter_answers(
    filters: Sequence[IntentFilter] | None,
    answers: Mapping[str, str] | None,
) -> FilterDisposition:
    """
    Apply clarification answers to the intent's filters.

    An answer equal to REMOVE_FILTER_OVERRIDE, or the flat option label
    REMOVE_FILTER_LABEL (any case), drops the filter and is not
    forwarded; any other answer to an unresolved filter is forwarded as a
    custom constraint. Answers to other clarifications pass through unchanged.
    """
    answers = dict(answers or {})
    filters = list(filters or [])
    unresolved = {u.index: u for u in collect_unresolved_filters(filters)}

    removed_ids: set[str] = set()
    active: list[IntentFilter] = []
    pending: list[UnresolvedFilter] = []

    for index, item in enumerate(filters):
        entry = unresolved.get(index)
        if entry is None:
            active.append(item)
            continue

        answer = answers.get(entry.clarification_id)
        if is_remove_filter_answer(answer):
            removed_ids.add(entry.clarification_id)
            continue

        active.append(item)
        if answer is None or not str(answer).strip():
            pending.append(entry)

    forwarded = {
        key: value
        for key, value in answers.items()
        if value != REMOVE_FILTER_OVERRIDE and key not in removed_ids
    }
    return FilterDisposition(
        active_filters=active,
        pending=pending,
        forwarded_answers=forwarded,
        removed=len(removed_ids),
    )


def build_filter_metrics(
    filters: Sequence[IntentFilter],
    unresolved_warnings: int | None = None,
    validation_errors: int = 0,
) -> FilterMetrics:
    """
    Summarize filter mapping quality.

    Args:
        filters: Filters still in play (removed filters excluded)
        unresolved_warnings: Filters still blocking; defaults to those missing a field or value
        validation_errors: Error-severity validation findings
    """
    confidences = [f.mapping_confidence for f in filters if isinstance(f.mapping_confidence, (int, float))]
    if unresolved_warnings is None:
        unresolved_warnings = sum(1 for f in filters if not f.field or f.value is None)

    return FilterMetrics(
        total_filters=len(filters),
        overrides=sum(1 for f in filters if f.overridden),
        auto_corrections=sum(1 for f in filters if f.auto_corrected),
        validation_errors=validation_errors,
        unresolved_warnings=unresolved_warnings,
        avg_mapping_confidence=sum(confidences) / len(confidences) if confidences else None,
    )


def build_unresolved_filter_clarification(entry: UnresolvedFilter) -> ClarificationRequest:
    phrase = entry.filter.user_phrase or entry.filter.field or "this filter"
    rich_options = [
        ClarificationOption(
            label=REMOVE_FILTER_LABEL,
            value=REMOVE_FILTER_OVERRIDE,
            description="Run the question without this condition",
        )
    ]
    return ClarificationRequest(
        id=entry.clarification_id,
        placeholder=entry.clarification_id,
        prompt=f'We could not match "{phrase}" to a field value. How should it be applied?',
        ambiguous_term=phrase,
        reason=entry.reason,
        data_type="text",
        field=entry.filter.field,
        rich_options=rich_options,
        options=[option.label for option in rich_options],
        freeform_allowed=FreeformSpec(
            allowed=True,
            placeholder="Describe the condition, e.g. a field and value",
            hint="Or remove the filter to continue without it",
            min_chars=FREEFORM_MIN_CHARS,
            max_chars=FREEFORM_MAX_CHARS,
        ),
    )
