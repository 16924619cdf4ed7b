"""
Resolution Contract

Shared records passed between the resolution stages: concept expansion,
semantic search, template catalog/matching, placeholder resolution,
clarification building and orchestration.

Every stage produces and consumes these types instead of ad-hoc dicts.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

ConceptSource = Literal["metric", "filter", "intent_type"]
SearchSource = Literal["form", "non_form"]
OrchestrationMode = Literal["template", "direct", "clarification", "error"]
StepStatus = Literal["pending", "running", "complete", "error"]

REMOVE_FILTER_OVERRIDE = "__REMOVE_FILTER__"


# ============================================================================
# Errors
# ============================================================================


class ResolutionError(Exception):
    """Base class for resolution pipeline errors."""


class ResolutionInputError(ResolutionError, ValueError):
    """Caller supplied invalid input (missing customer id, empty concept list)."""


class CatalogSourceError(ResolutionError):
    """Live template store is unreachable or returned unusable data."""


class CatalogValidationError(ResolutionError):
    """Template catalog failed validation and was rejected."""

    def __init__(self, errors: list[str], warnings: list[str] | None = None):
        self.errors = errors
        self.warnings = warnings or []
        super().__init__("Template catalog validation failed: " + "; ".join(errors))


class GenerationError(ResolutionError):
    """Generative step was unavailable or produced unusable output."""


# ============================================================================
# Concepts and semantic search
# ============================================================================


@dataclass(frozen=True)
class Concept:
    """Normalized semantic search term."""

    text: str
    source: ConceptSource
    score: int  # Capped phrase frequency
    explanation: str  # e.g. "metric:Rate of Healing (freq=2)"


@dataclass
class ExpandedConcepts:
    """Ordered, deduplicated output of the concept expander."""

    concepts: list[Concept] = field(default_factory=list)

    @property
    def texts(self) -> list[str]:
        return [c.text for c in self.concepts]

    @property
    def sources(self) -> list[ConceptSource]:
        return [c.source for c in self.concepts]

    @property
    def explanations(self) -> list[str]:
        return [c.explanation for c in self.concepts]


@dataclass(frozen=True)
class SemanticSearchResult:
    """Schema element (form field or non-form column) matching a concept."""

    id: str
    source: SearchSource
    field_name: str
    table_or_form_name: str | None
    concept_id: str | None
    semantic_concept: str
    data_type: str
    confidence: float  # 0.0-1.0


@dataclass(frozen=True)
class FieldMatch:
    """Field-name lookup hit from the semantic index (used for field variables)."""

    field_name: str
    source: SearchSource
    table_or_form_name: str | None = None
    field_id: str | None = None
    data_type: str | None = None
    semantic_concept: str | None = None
    enum_values: tuple[str, ...] = ()
    confidence: float = 1.0


@dataclass(frozen=True)
class AssessmentTypeMatch:
    """Assessment-type catalog hit for a keyword search."""

    assessment_type_id: str
    assessment_name: str
    semantic_concept: str
    semantic_category: str | None = None
    confidence: float = 0.0


@dataclass(frozen=True)
class EnumOption:
    """Declared enumerated value for a field."""

    value: str
    label: str | None = None


# ============================================================================
# Templates
# ============================================================================


@dataclass(frozen=True)
class PlaceholderSlot:
    """One parameter slot of a template and how to resolve/check it."""

    name: str
    type: str = "string"  # string | number | int | float | date | boolean
    semantic: str | None = None  # e.g. time_window, percentage, assessment_type, field_name
    required: bool = True
    default: Any = None
    validators: tuple[str, ...] = ()  # "non-empty", "min:7", "max:730"
    examples: tuple[str, ...] = ()
    description: str | None = None
    patterns: tuple[str, ...] = ()  # Regexes with one capture group


@dataclass(frozen=True)
class QueryTemplate:
    """Parameterized, pre-approved query pattern. Immutable once loaded."""

    name: str
    sql_pattern: str
    version: int
    id: str | None = None
    description: str | None = None
    placeholders: tuple[str, ...] = ()
    slots: tuple[PlaceholderSlot, ...] = ()
    keywords: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    question_examples: tuple[str, ...] = ()
    intent: str | None = None
    status: str = "Approved"
    success_count: int = 0
    usage_count: int = 0
    success_rate: float | None = None  # success_count / usage_count when usage_count > 0

    def slot_for(self, placeholder: str) -> PlaceholderSlot | None:
        for slot in self.slots:
            if slot.name == placeholder:
                return slot
        return None


@dataclass
class TemplateMatch:
    """Scored template candidate."""

    template: QueryTemplate
    score: float  # Weighted score (base * (1 + success_rate))
    base_score: float
    matched_keywords: list[str] = field(default_factory=list)
    matched_example: str | None = None
    success_rate: float | None = None


@dataclass
class TemplateMatchResult:
    """Best-match decision for a question."""

    matched: bool
    confidence: float
    template: QueryTemplate | None = None
    matched_keywords: list[str] = field(default_factory=list)
    matched_example: str | None = None


# ============================================================================
# Clarifications and confirmations
# ============================================================================


@dataclass(frozen=True)
class ClarificationOption:
    """Preset answer offered in a clarification."""

    label: str
    value: Any = None
    unit: str | None = None
    description: str | None = None
    sql_constraint: str | None = None


@dataclass(frozen=True)
class FreeformSpec:
    """Free-text answer descriptor."""

    allowed: bool = True
    placeholder: str = "Enter your value here..."
    hint: str | None = None
    min_chars: int = 1
    max_chars: int = 500


@dataclass
class ClarificationRequest:
    """Question posed to the user when a value could not be resolved."""

    placeholder: str
    prompt: str
    options: list[str] | None = None
    examples: list[str] | None = None
    freeform_allowed: FreeformSpec | None = None
    reason: str | None = None
    semantic: str | None = None
    data_type: str | None = None  # numeric | percentage | time_window | enum | date | text
    rich_options: list[ClarificationOption] | None = None
    value_range: tuple[float, float] | None = None
    unit: str | None = None
    multiple: bool = False
    available_fields: list[str] | None = None
    field: str | None = None
    template_name: str | None = None
    id: str | None = None  # Stable id for answer round-trips (unresolved filters, generator asks)
    ambiguous_term: str | None = None


@dataclass
class ConfirmationPrompt:
    """High-confidence auto-detected value awaiting user approval."""

    placeholder: str
    detected_value: Any
    display_label: str
    original_input: str
    confidence: float
    semantic: str | None = None


@dataclass
class ResolvedAssessmentType:
    """Audit record: placeholder bound to an assessment type."""

    placeholder: str
    original_text: str
    assessment_type_id: str
    assessment_name: str
    semantic_concept: str
    confidence: float


@dataclass
class ResolvedFieldVariable:
    """Audit record: placeholder bound to a schema field."""

    placeholder: str
    original_text: str
    field_name: str
    source: SearchSource
    table_or_form_name: str | None
    semantic_concept: str | None
    enum_values: list[str]
    confidence: float


class SlotState(str, Enum):
    """Terminal state of a placeholder after resolution. Exactly one per slot."""

    FILLED = "filled"
    PENDING_CONFIRMATION = "pending_confirmation"
    PENDING_CLARIFICATION = "pending_clarification"
    SKIPPED = "skipped"


@dataclass
class PlaceholderResolution:
    """Outcome of resolving every slot of one template."""

    values: dict[str, Any]
    confidence: float  # filled / total
    filled_sql: str
    slot_states: dict[str, SlotState] = field(default_factory=dict)
    missing_placeholders: list[str] = field(default_factory=list)
    clarifications: list[ClarificationRequest] = field(default_factory=list)
    confirmations: list[ConfirmationPrompt] = field(default_factory=list)
    # Audit trails: present and non-empty only when the matching resolver fired
    resolved_assessment_types: list[ResolvedAssessmentType] | None = None
    resolved_field_variables: list[ResolvedFieldVariable] | None = None

    @property
    def is_complete(self) -> bool:
        return not self.clarifications and not self.confirmations


# ============================================================================
# Intent and context
# ============================================================================


@dataclass
class IntentFilter:
    """Filter term produced by intent parsing and terminology mapping."""

    user_phrase: str
    operator: str = "equals"
    field: str | None = None
    value: Any = None
    mapping_error: str | None = None
    mapping_confidence: float | None = None
    overridden: bool = False
    auto_corrected: bool = False
    validation_warning: str | None = None


@dataclass
class QueryIntent:
    """Upstream intent classification for a question."""

    type: str | None = None  # e.g. outcome_analysis, trend_analysis
    scope: str = "aggregate"
    metrics: list[str] = field(default_factory=list)
    filters: list[IntentFilter] = field(default_factory=list)
    confidence: float = 0.0
    reasoning: str = ""


@dataclass
class FieldInContext:
    field_name: str
    data_type: str | None = None
    semantic_concept: str | None = None
    field_id: str | None = None
    confidence: float = 0.0


@dataclass
class FormInContext:
    form_name: str
    reason: str = ""
    fields: list[FieldInContext] = field(default_factory=list)


@dataclass
class ContextBundle:
    """Aggregate semantic findings for one question."""

    question: str
    intent: QueryIntent
    concepts: list[Concept] = field(default_factory=list)
    forms: list[FormInContext] = field(default_factory=list)
    fields: list[SemanticSearchResult] = field(default_factory=list)
    join_paths: list[Any] = field(default_factory=list)
    terminology: list[Any] = field(default_factory=list)
    overall_confidence: float = 0.0


# ============================================================================
# Orchestration
# ============================================================================


@dataclass
class ThinkingStep:
    """Telemetry marker for one orchestration stage."""

    id: str
    status: StepStatus
    message: str
    details: dict[str, Any] | None = None
    duration_ms: float | None = None


@dataclass
class FilterMetrics:
    """Summary of filter mapping quality for one pass."""

    total_filters: int
    overrides: int = 0
    auto_corrections: int = 0
    validation_errors: int = 0
    unresolved_warnings: int = 0
    avg_mapping_confidence: float | None = None


@dataclass
class QueryResults:
    rows: list[dict[str, Any]]
    columns: list[str]


@dataclass
class OrchestrationResult:
    """Terminal output of one orchestration pass."""

    mode: OrchestrationMode
    question: str
    thinking: list[ThinkingStep] = field(default_factory=list)
    sql: str | None = None
    results: QueryResults | None = None
    clarifications: list[ClarificationRequest] | None = None
    confirmations: list[ConfirmationPrompt] | None = None
    clarification_reasoning: str | None = None
    partial_context: dict[str, Any] | None = None
    filter_metrics: FilterMetrics | None = None
    template_name: str | None = None
    placeholder_resolution: PlaceholderResolution | None = None
    context: dict[str, Any] | None = None
    assumptions: list[Any] | None = None
    complexity_score: int | None = None
    execution_strategy: str | None = None
    requires_preview: bool = False
    error: str | None = None

    @property
    def requires_clarification(self) -> bool:
        return self.mode == "clarification"
