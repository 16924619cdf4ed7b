"""
Clarification Builder - context-grounded questions for unresolved slots.

Routes on the slot's semantic category:
- percentage / percent_threshold: 0-100 range with 25/50/75% presets
- time_window / time_window_days / time_point: 4/8/12 week presets plus
  date fields found in the context bundle
- enum / status / field_enum: declared enum values from the semantic index
- numeric / measurement / count: custom value with example hints
- anything else: free text with character bounds and a hint

Options come only from declared catalogs (presets, enum declarations), never
from observed data distributions.
"""

import structlog

from clinical_insights.core.collaborators import SemanticIndexStore
from clinical_insights.core.resolution_config import (
    FREEFORM_MAX_CHARS,
    FREEFORM_MIN_CHARS,
    PERCENTAGE_PRESETS,
    TIME_WINDOW_PRESET_WEEKS,
)
from clinical_insights.core.resolution_models import (
    ClarificationOption,
    ClarificationRequest,
    ContextBundle,
    FreeformSpec,
    PlaceholderSlot,
)

logger = structlog.get_logger()

PERCENTAGE_SEMANTICS = frozenset({"percentage", "percent_threshold"})
TIME_SEMANTICS = frozenset({"time_window", "time_window_days", "time_point"})
ENUM_SEMANTICS = frozenset({"enum", "status", "field_enum"})
NUMERIC_SEMANTICS = frozenset({"numeric", "measurement", "count"})

_PERCENTAGE_DESCRIPTIONS = {25: "minor improvement", 50: "moderate improvement", 75: "significant improvement"}


def options_to_labels(options: list[ClarificationOption] | None) -> list[str] | None:
    """Flat label list for callers that only render strings."""
    if not options:
        return None
    labels = [
        option.label or (str(option.value) if option.value is not None else "")
        for option in options
    ]
    labels = [label for label in labels if label.strip()]
    return labels or None


def minimal_clarification(placeholder: str, template_name: str | None = None) -> ClarificationRequest:
    """Free-text "what did you mean" request used when no slot definition exists."""
    return ClarificationRequest(
        placeholder=placeholder,
        prompt=f'Can you clarify what you mean by "{placeholder}"?',
        examples=[],
        data_type="text",
        template_name=template_name,
        freeform_allowed=FreeformSpec(
            allowed=True,
            placeholder="Please describe what you meant...",
            hint="We'll try to find the right value",
            min_chars=FREEFORM_MIN_CHARS,
            max_chars=FREEFORM_MAX_CHARS,
        ),
    )


class ClarificationBuilder:
    """
    Builds ClarificationRequests for slots the resolution cascade could not fill.

    Args:
        index_store: Semantic index used for enum lookups (optional)
    """

    def __init__(self, index_store: SemanticIndexStore | None = None):
        self.index_store = index_store

    def build(
        self,
        placeholder: str,
        slot: PlaceholderSlot | None,
        context: ContextBundle | None = None,
        customer_id: str | None = None,
        template_name: str | None = None,
    ) -> ClarificationRequest:
        if slot is None:
            return minimal_clarification(placeholder, template_name)

        semantic = (slot.semantic or "").lower()
        if semantic in PERCENTAGE_SEMANTICS:
            request = self._percentage(slot)
        elif semantic in TIME_SEMANTICS:
            request = self._time_window(slot, context)
        elif semantic in ENUM_SEMANTICS:
            request = self._enum(slot, context, customer_id)
        elif semantic in NUMERIC_SEMANTICS:
            request = self._numeric(slot)
        else:
            request = self._text(slot)

        request.semantic = slot.semantic
        request.template_name = template_name
        return request

    def _percentage(self, slot: PlaceholderSlot) -> ClarificationRequest:
        rich_options = [
            ClarificationOption(label=f"{p}% ({_PERCENTAGE_DESCRIPTIONS.get(p, 'threshold')})", value=p / 100)
            for p in PERCENTAGE_PRESETS
        ]
        rich_options.append(ClarificationOption(label="Custom value", value=None))

        return ClarificationRequest(
            placeholder=slot.name,
            prompt=f"What percentage {_describe(slot)} are you looking for?",
            field=slot.name,
            data_type="percentage",
            value_range=(0, 100),
            unit="%",
            rich_options=rich_options,
            options=options_to_labels(rich_options),
            examples=list(slot.examples) or [f"{p}%" for p in PERCENTAGE_PRESETS],
        )

    def _time_window(self, slot: PlaceholderSlot, context: ContextBundle | None) -> ClarificationRequest:
        available_fields = date_fields_in_context(context)

        rich_options = [
            ClarificationOption(label=f"{weeks} weeks ({weeks * 7} days)", value=weeks * 7, unit="days")
            for weeks in TIME_WINDOW_PRESET_WEEKS
        ]
        rich_options.append(ClarificationOption(label="Custom time point", value=None))

        prompt = "What time point would you like to analyze?"
        if available_fields:
            prompt += f" (from {', '.join(available_fields)})"

        return ClarificationRequest(
            placeholder=slot.name,
            prompt=prompt,
            field=slot.name,
            data_type="time_window",
            rich_options=rich_options,
            options=options_to_labels(rich_options),
            available_fields=available_fields or None,
            examples=list(slot.examples) or [f"{weeks} weeks" for weeks in TIME_WINDOW_PRESET_WEEKS],
        )

    def _enum(
        self,
        slot: PlaceholderSlot,
        context: ContextBundle | None,
        customer_id: str | None,
    ) -> ClarificationRequest:
        field_name = slot.name
        if context is not None:
            for form in context.forms:
                match = next((f for f in form.fields if f.field_name.lower() == slot.name.lower()), None)
                if match:
                    field_name = match.field_name
                    break

        rich_options = self.load_enum_options(customer_id, field_name)

        return ClarificationRequest(
            placeholder=slot.name,
            prompt="Which value(s) would you like to filter by?",
            field=field_name,
            data_type="enum",
            rich_options=rich_options or None,
            options=options_to_labels(rich_options),
            multiple=True,
            examples=list(slot.examples) or [option.label for option in rich_options[:3]],
        )

    def _numeric(self, slot: PlaceholderSlot) -> ClarificationRequest:
        rich_options = [ClarificationOption(label="Custom value", value=None)]
        return ClarificationRequest(
            placeholder=slot.name,
            prompt=f"What {_describe(slot)} are you looking for?",
            field=slot.name,
            data_type="numeric",
            rich_options=rich_options,
            options=options_to_labels(rich_options),
            examples=list(slot.examples) or ["0", "100", "500"],
        )

    def _text(self, slot: PlaceholderSlot) -> ClarificationRequest:
        examples = list(slot.examples) or None
        prompt = f"Please provide a value for {slot.name}"
        if slot.description:
            prompt += f" ({slot.description})"

        return ClarificationRequest(
            placeholder=slot.name,
            prompt=prompt,
            field=slot.name,
            data_type="text",
            examples=examples,
            freeform_allowed=FreeformSpec(
                allowed=True,
                placeholder="Enter your value here...",
                hint=f"e.g., {' or '.join(examples)}" if examples else None,
                min_chars=FREEFORM_MIN_CHARS,
                max_chars=FREEFORM_MAX_CHARS,
            ),
        )

    def load_enum_options(self, customer_id: str | None, field_name: str) -> list[ClarificationOption]:
        """Declared enum values for a field; lookup failure degrades to no options."""
        if self.index_store is None or not customer_id:
            return []
        try:
            values = self.index_store.get_enum_values(customer_id, field_name)
        except Exception as e:
            logger.warning("enum_lookup_failed", field=field_name, customer_id=customer_id, error=str(e))
            return []
        return [ClarificationOption(label=v.label or v.value, value=v.value) for v in values]


def date_fields_in_context(context: ContextBundle | None) -> list[str]:
    """Names of date-like form fields in the context bundle, in discovery order."""
    if context is None:
        return []
    names: list[str] = []
    for form in context.forms:
        for field in form.fields:
            concept = (field.semantic_concept or "").lower()
            if (field.data_type or "").lower() == "date" or "date" in concept or "time" in concept:
                if field.field_name not in names:
                    names.append(field.field_name)
    return names


def _describe(slot: PlaceholderSlot) -> str:
    return slot.description.lower() if slot.description else "value"
