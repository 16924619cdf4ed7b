"""
Placeholder Resolution Cascade.

Each template slot is resolved by trying strategies in a fixed order and
stopping at the first value that passes the slot's validators:

1. caller overrides
2. specialized parsers (time window, percentage)
3. assessment type lookup (customer-scoped)
4. field variable lookup (customer-scoped)
5. generic extraction (slot patterns, name heuristics, example questions)
6. slot default
7. clarification (required slots) or skip (optional slots)

A value that fails validation is never used; its failure reason is carried
into the clarification and the cascade moves on to the next strategy.
"""

import re
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from clinical_insights.core.clarification_builder import ClarificationBuilder, minimal_clarification
from clinical_insights.core.collaborators import SemanticIndexStore
from clinical_insights.core.logging_config import question_hash
from clinical_insights.core.resolution_config import (
    CONFIRMATION_THRESHOLD,
    ENABLE_RESOLUTION_CONFIRMATIONS,
    SEARCH_TIMEOUT_SECONDS,
)
from clinical_insights.core.resolution_models import (
    ClarificationOption,
    ClarificationRequest,
    ConfirmationPrompt,
    ContextBundle,
    FieldMatch,
    PlaceholderResolution,
    PlaceholderSlot,
    QueryTemplate,
    ResolvedAssessmentType,
    ResolvedFieldVariable,
    SlotState,
)
from clinical_insights.core.slot_parsing import (
    ParsedValue,
    is_percentage_slot,
    is_time_slot,
    is_tolerance_slot,
    parse_percentage,
    parse_time_window,
    validate_slot_value,
)
from clinical_insights.core.template_validator import PLACEHOLDER_PATTERN, normalize_placeholder_name

logger = structlog.get_logger()

T = TypeVar("T")

ASSESSMENT_KEYWORDS = (
    "wound",
    "visit",
    "billing",
    "clinical",
    "intake",
    "admission",
    "discharge",
    "treatment",
    "nursing",
    "therapy",
    "medication",
    "skin",
    "pain",
    "nutrition",
)
_ASSESSMENT_NOUNS = r"(?:assessments?|forms?|documentation|documents?|notes?|visits?|evaluations?|records?)"
ASSESSMENT_PATTERNS = [
    re.compile(rf"\b({'|'.join(ASSESSMENT_KEYWORDS)})\s+(?:\w+\s+)?{_ASSESSMENT_NOUNS}\b", re.I),
    re.compile(rf"\b({'|'.join(ASSESSMENT_KEYWORDS)})\b", re.I),
]

_FIELD_STOP_WORDS = {"by", "the", "a", "an", "of", "me", "show", "and", "with", "their", "its", "all"}
FIELD_FRAGMENT_PATTERNS = [
    re.compile(r"\b(\w+)\s+(status|state|type|category)\b", re.I),
    re.compile(r"\bby\s+(\w+(?:\s+\w+)?)", re.I),
    re.compile(r"\bwhere\s+(\w+)\s*(?:=|is\b|equals\b)", re.I),
]

_CAPITALIZED = r"([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+)?)"
STATUS_WORDS = ("active", "inactive", "pending", "discharged", "closed")
TYPE_WORDS = ("diabetic", "pressure", "venous", "arterial", "surgical")


@dataclass
class Candidate:
    """Value proposed by one strategy, before validation."""

    value: Any
    strategy: str
    original_text: str | None = None
    confidence: float = 1.0
    needs_confirmation: bool = False
    display_label: str | None = None
    error: str | None = None  # Cue found but rejected (e.g. "150%")
    assessment: ResolvedAssessmentType | None = None
    field_variable: ResolvedFieldVariable | None = None


@dataclass
class SlotRequest:
    """Everything a strategy may look at for one slot."""

    question: str
    template: QueryTemplate
    customer_id: str | None = None
    overrides: dict[str, Any] = field(default_factory=dict)
    require_confirmation: bool = False
    confirmation_threshold: float = CONFIRMATION_THRESHOLD
    index_store: SemanticIndexStore | None = None
    lookup: Callable[..., Any] | None = None  # lookup(fn, *args) -> result or None on timeout/error


Strategy = Callable[[SlotRequest, PlaceholderSlot], Candidate | None]


# ============================================================================
# Strategies
# ============================================================================


def resolve_from_override(request: SlotRequest, slot: PlaceholderSlot) -> Candidate | None:
    if slot.name in request.overrides:
        value = request.overrides[slot.name]
        return Candidate(value=value, strategy="override", original_text=str(value))
    return None


def resolve_specialized(request: SlotRequest, slot: PlaceholderSlot) -> Candidate | None:
    """Time-window and percentage parsers; high-confidence hits may need confirmation."""
    parsed: ParsedValue | None = None
    if is_time_slot(slot) or is_tolerance_slot(slot):
        parsed = parse_time_window(request.question, tolerance=is_tolerance_slot(slot))
    elif is_percentage_slot(slot):
        parsed = parse_percentage(request.question)
    if parsed is None:
        return None

    return Candidate(
        value=parsed.value,
        strategy="specialized",
        original_text=parsed.original_text,
        confidence=parsed.confidence,
        display_label=parsed.display_label,
        error=parsed.error,
        needs_confirmation=request.require_confirmation and parsed.confidence >= request.confirmation_threshold,
    )


def is_assessment_type_slot(slot: PlaceholderSlot) -> bool:
    if (slot.semantic or "").lower() == "assessment_type":
        return True
    name = slot.name.lower()
    return any(token in name for token in ("assessment", "form", "type"))


def extract_assessment_keywords(question: str) -> list[tuple[str, str]]:
    """(keyword, matched text) pairs in question order, most specific pattern first."""
    found: list[tuple[str, str]] = []
    seen: set[str] = set()
    for pattern in ASSESSMENT_PATTERNS:
        for match in pattern.finditer(question or ""):
            keyword = match.group(1).lower()
            if keyword not in seen:
                seen.add(keyword)
                found.append((keyword, match.group(0)))
    return found


def resolve_assessment_type(request: SlotRequest, slot: PlaceholderSlot) -> Candidate | None:
    if not is_assessment_type_slot(slot) or not request.customer_id or request.index_store is None:
        return None

    best: tuple[Any, str] | None = None
    for keyword, original_text in extract_assessment_keywords(request.question):
        matches = _lookup(request, request.index_store.search_assessment_types, request.customer_id, keyword) or []
        for match in matches:
            # Strictly greater: ties keep the first match
            if best is None or match.confidence > best[0].confidence:
                best = (match, original_text)

    if best is None:
        return None

    match, original_text = best
    audit = ResolvedAssessmentType(
        placeholder=slot.name,
        original_text=original_text,
        assessment_type_id=match.assessment_type_id,
        assessment_name=match.assessment_name,
        semantic_concept=match.semantic_concept,
        confidence=match.confidence,
    )
    return Candidate(
        value=match.assessment_type_id,
        strategy="assessment_type",
        original_text=original_text,
        confidence=match.confidence,
        assessment=audit,
    )


def is_field_variable_slot(slot: PlaceholderSlot) -> bool:
    if (slot.semantic or "").lower() == "field_name":
        return True
    name = slot.name.lower()
    return any(token in name for token in ("field", "column", "state"))


def extract_field_fragment(question: str) -> str | None:
    """Candidate field-name phrase: "coding status", "by treatment plan", "where stage = 3"."""
    for pattern in FIELD_FRAGMENT_PATTERNS:
        for match in pattern.finditer(question or ""):
            words = [w for w in " ".join(g for g in match.groups() if g).lower().split() if w not in _FIELD_STOP_WORDS]
            if words:
                return " ".join(words)
    return None


def find_field(request: SlotRequest, fragment: str) -> FieldMatch | None:
    """Form fields first, then non-form columns."""
    store = request.index_store
    if store is None or not request.customer_id:
        return None
    match = _lookup(request, store.find_form_field, request.customer_id, fragment)
    if match is None:
        match = _lookup(request, store.find_non_form_column, request.customer_id, fragment)
    return match


def resolve_field_variable(request: SlotRequest, slot: PlaceholderSlot) -> Candidate | None:
    if not is_field_variable_slot(slot) or not request.customer_id or request.index_store is None:
        return None

    fragment = extract_field_fragment(request.question)
    if not fragment:
        return None

    match = find_field(request, fragment)
    if match is None:
        return None

    audit = ResolvedFieldVariable(
        placeholder=slot.name,
        original_text=fragment,
        field_name=match.field_name,
        source=match.source,
        table_or_form_name=match.table_or_form_name,
        semantic_concept=match.semantic_concept,
        enum_values=list(match.enum_values),
        confidence=match.confidence,
    )
    return Candidate(
        value=match.field_name,
        strategy="field_variable",
        original_text=fragment,
        confidence=match.confidence,
        field_variable=audit,
    )


def name_heuristic_patterns(placeholder: str) -> list[re.Pattern]:
    """Extraction regexes keyed by substrings of the placeholder name."""
    name = placeholder.lower()
    patterns: list[re.Pattern] = []

    if "city" in name or "location" in name:
        patterns += [re.compile(rf"\b{prep}\s+{_CAPITALIZED}") for prep in ("in", "from", "at")]
    if "status" in name:
        patterns += [
            re.compile(rf"\b({'|'.join(STATUS_WORDS)})\b", re.I),
            re.compile(r"with\s+(?:a\s+)?status\s+(?:of\s+)?[\"']?(\w+)[\"']?", re.I),
        ]
    if "type" in name:
        patterns += [
            re.compile(rf"\b({'|'.join(TYPE_WORDS)})\b", re.I),
            re.compile(r"of\s+type\s+[\"']?(\w+)[\"']?", re.I),
        ]
    if "age" in name:
        patterns.append(re.compile(r"\b(\d{1,3})\s*(?:years?|y\.o\.|yo)\b", re.I))
    if "age" in name or "count" in name or "number" in name:
        patterns.append(re.compile(r"\b(\d+)\b"))
    if "date" in name or "time" in name or "period" in name:
        patterns += [
            re.compile(r"(?:last|past)\s+(\d+\s+\w+)", re.I),
            re.compile(r"(?:since|from)\s+([\d-]+)"),
        ]
    return patterns


def infer_from_examples(question: str, examples: tuple[str, ...]) -> str | None:
    """A capitalized question word (not the first) that also appears in an example question."""
    words = question.split()
    for example in examples:
        example_words = set(example.lower().split())
        for word in words[1:]:
            bare = word.strip(".,;:!?\"'()")
            if len(bare) > 3 and bare.lower() in example_words and bare[0].isupper():
                return bare
    return None


def resolve_generic(request: SlotRequest, slot: PlaceholderSlot) -> Candidate | None:
    question = request.question or ""

    for pattern in slot.patterns:
        match = re.search(pattern, question, re.IGNORECASE)
        if match and match.groups() and match.group(1):
            return Candidate(value=match.group(1).strip(), strategy="slot_pattern", original_text=match.group(0))

    for pattern in name_heuristic_patterns(slot.name):
        match = pattern.search(question)
        if match and match.group(1):
            value = match.group(1).strip()
            if value.lower() in STATUS_WORDS or value.lower() in TYPE_WORDS:
                value = value.capitalize()
            return Candidate(value=value, strategy="name_heuristic", original_text=match.group(0), confidence=0.7)

    inferred = infer_from_examples(question, request.template.question_examples)
    if inferred:
        return Candidate(value=inferred, strategy="examples", original_text=inferred, confidence=0.5)
    return None


def resolve_default(request: SlotRequest, slot: PlaceholderSlot) -> Candidate | None:
    if slot.default is not None:
        return Candidate(value=slot.default, strategy="default", original_text=str(slot.default))
    return None


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    resolve_from_override,
    resolve_specialized,
    resolve_assessment_type,
    resolve_field_variable,
    resolve_generic,
    resolve_default,
)


def _lookup(request: SlotRequest, fn: Callable[..., T], *args: Any) -> T | None:
    if request.lookup is None:
        return fn(*args)
    return request.lookup(fn, *args)


# ============================================================================
# SQL fill
# ============================================================================


def format_sql_value(value: Any) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value)
    if text in ("true", "false"):
        return text.upper()
    return "'" + text.replace("'", "''") + "'"


def fill_template_sql(sql_pattern: str, values: dict[str, Any]) -> str:
    """
    Substitute {placeholder} tokens.

    Numbers are inlined, booleans become TRUE/FALSE, strings are quoted.
    Placeholders without a value become NULL.
    """
    unfilled: list[str] = []

    def _replace(match: re.Match) -> str:
        name = normalize_placeholder_name(match.group(1))
        if name in values and values[name] is not None:
            return format_sql_value(values[name])
        unfilled.append(name)
        return "NULL"

    filled = PLACEHOLDER_PATTERN.sub(_replace, sql_pattern)
    if unfilled:
        logger.warning("unfilled_placeholders", placeholders=sorted(set(unfilled)))
    return filled


def template_slots(template: QueryTemplate) -> list[tuple[PlaceholderSlot, bool]]:
    """(slot, declared) per placeholder; undeclared placeholders get a bare required slot."""
    names = list(template.placeholders) or [s.name for s in template.slots]
    if not names:
        found = PLACEHOLDER_PATTERN.findall(template.sql_pattern)
        names = list(dict.fromkeys(normalize_placeholder_name(p) for p in found))

    slots: list[tuple[PlaceholderSlot, bool]] = []
    for name in names:
        declared = template.slot_for(name)
        slots.append((declared, True) if declared else (PlaceholderSlot(name=name), False))
    return slots


# ============================================================================
# Resolver
# ============================================================================


class PlaceholderResolver:
    """
    Resolves every slot of a template for one question.

    Args:
        index_store: Semantic index for assessment type / field / enum lookups
        clarification_builder: Builder for unresolved slots
        require_confirmation: Pause high-confidence specialized hits for approval
        confirmation_threshold: Confidence at or above which a hit is paused
        lookup_timeout: Seconds allowed per index store call
        strategies: Cascade order (defaults to DEFAULT_STRATEGIES)
    """

    def __init__(
        self,
        index_store: SemanticIndexStore | None = None,
        clarification_builder: ClarificationBuilder | None = None,
        require_confirmation: bool = ENABLE_RESOLUTION_CONFIRMATIONS,
        confirmation_threshold: float = CONFIRMATION_THRESHOLD,
        lookup_timeout: float = SEARCH_TIMEOUT_SECONDS,
        strategies: tuple[Strategy, ...] = DEFAULT_STRATEGIES,
        max_workers: int = 4,
    ):
        self.index_store = index_store
        self.clarification_builder = clarification_builder or ClarificationBuilder(index_store)
        self.require_confirmation = require_confirmation
        self.confirmation_threshold = confirmation_threshold
        self.lookup_timeout = lookup_timeout
        self.strategies = strategies
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="placeholder-lookup")

    def resolve(
        self,
        question: str,
        template: QueryTemplate,
        customer_id: str | None = None,
        context: ContextBundle | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> PlaceholderResolution:
        """
        Resolve a template's placeholders from a question.

        Args:
            question: User question
            template: Matched template
            customer_id: Customer scope for index lookups (None skips them)
            context: Semantic context used to ground clarifications
            overrides: Caller-supplied slot values (e.g. confirmed or clarified values)

        Returns:
            PlaceholderResolution with one SlotState per slot
        """
        request = SlotRequest(
            question=question or "",
            template=template,
            customer_id=customer_id,
            overrides=dict(overrides or {}),
            require_confirmation=self.require_confirmation,
            confirmation_threshold=self.confirmation_threshold,
            index_store=self.index_store,
            lookup=self._bounded_lookup,
        )

        values: dict[str, Any] = {}
        states: dict[str, SlotState] = {}
        clarifications: list[ClarificationRequest] = []
        confirmations: list[ConfirmationPrompt] = []
        assessment_audit: list[ResolvedAssessmentType] = []
        field_audit: list[ResolvedFieldVariable] = []

        slots = template_slots(template)
        for slot, declared in slots:
            failures: list[str] = []
            for strategy in self.strategies:
                candidate = strategy(request, slot)
                if candidate is None:
                    continue
                # A rejected explicit value is never replaced by the declared default
                if failures and candidate.strategy == "default":
                    continue
                if candidate.error:
                    failures.append(f"{candidate.original_text} rejected: {candidate.error}")
                    continue

                value, error = validate_slot_value(slot, candidate.value)
                if error:
                    failures.append(f"{candidate.original_text or candidate.value} rejected: {error}")
                    logger.debug(
                        "placeholder_value_rejected", placeholder=slot.name, strategy=candidate.strategy, error=error
                    )
                    continue

                if candidate.needs_confirmation:
                    confirmations.append(
                        ConfirmationPrompt(
                            placeholder=slot.name,
                            detected_value=value,
                            display_label=candidate.display_label or str(value),
                            original_input=candidate.original_text or str(value),
                            confidence=candidate.confidence,
                            semantic=slot.semantic,
                        )
                    )
                    states[slot.name] = SlotState.PENDING_CONFIRMATION
                    break

                values[slot.name] = value
                states[slot.name] = SlotState.FILLED
                if candidate.assessment:
                    assessment_audit.append(candidate.assessment)
                if candidate.field_variable:
                    field_audit.append(candidate.field_variable)
                break
            else:
                if slot.required or failures:
                    clarifications.append(self._clarify(request, slot, declared, context, failures))
                    states[slot.name] = SlotState.PENDING_CLARIFICATION
                else:
                    states[slot.name] = SlotState.SKIPPED

        total = len(slots)
        filled = sum(1 for state in states.values() if state is SlotState.FILLED)
        confidence = filled / total if total else 1.0
        missing = [
            name
            for name, state in states.items()
            if state in (SlotState.PENDING_CLARIFICATION, SlotState.PENDING_CONFIRMATION)
        ]

        logger.info(
            "placeholders_resolved",
            template=template.name,
            question_hash=question_hash(question),
            slots=total,
            filled=filled,
            clarifications=len(clarifications),
            confirmations=len(confirmations),
        )

        return PlaceholderResolution(
            values=values,
            confidence=confidence,
            filled_sql=fill_template_sql(template.sql_pattern, values),
            slot_states=states,
            missing_placeholders=missing,
            clarifications=clarifications,
            confirmations=confirmations,
            resolved_assessment_types=assessment_audit or None,
            resolved_field_variables=field_audit or None,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _bounded_lookup(self, fn: Callable[..., T], *args: Any) -> T | None:
        """Run an index store call with a timeout; timeouts and errors degrade to None."""
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.lookup_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "placeholder_lookup_timeout",
                lookup=getattr(fn, "__name__", str(fn)),
                timeout_seconds=self.lookup_timeout,
            )
        except Exception as e:
            logger.warning("placeholder_lookup_failed", lookup=getattr(fn, "__name__", str(fn)), error=str(e))
        return None

    def _clarify(
        self,
        request: SlotRequest,
        slot: PlaceholderSlot,
        declared: bool,
        context: ContextBundle | None,
        failures: list[str],
    ) -> ClarificationRequest:
        template_name = request.template.name
        try:
            if is_field_variable_slot(slot) and declared:
                clarification = self._field_variable_clarification(request, slot)
                clarification.template_name = template_name
            elif declared:
                clarification = self.clarification_builder.build(
                    slot.name, slot, context=context, customer_id=request.customer_id, template_name=template_name
                )
            else:
                clarification = minimal_clarification(slot.name, template_name)
        except Exception as e:
            logger.warning("clarification_build_failed", placeholder=slot.name, template=template_name, error=str(e))
            clarification = minimal_clarification(slot.name, template_name)

        if failures:
            clarification.reason = "; ".join(failures)
            clarification.prompt = f"{clarification.prompt} ({failures[-1]})"
        return clarification

    def _field_variable_clarification(self, request: SlotRequest, slot: PlaceholderSlot) -> ClarificationRequest:
        """Offer the enum values of the field the slot name points at, when one exists."""
        fragment = re.sub(r"(field|column|name)$", "", slot.name, flags=re.I).strip("_ ") or slot.name
        match = find_field(request, fragment)

        if match is None:
            return ClarificationRequest(
                placeholder=slot.name,
                prompt=f"Which field should be used for {slot.name}?",
                field=slot.name,
                data_type="text",
                semantic=slot.semantic,
                examples=list(slot.examples) or None,
            )

        rich_options = [ClarificationOption(label=value, value=value) for value in match.enum_values]
        return ClarificationRequest(
            placeholder=slot.name,
            prompt=f"Which {match.field_name} value(s) did you mean?",
            field=match.field_name,
            data_type="enum",
            semantic=slot.semantic,
            options=list(match.enum_values) or None,
            rich_options=rich_options or None,
            multiple=True,
            available_fields=[match.field_name],
        )
