"""
Tests for the clarification builder.

Tests cover:
- Routing on slot semantics (percentage, time window, enum, numeric, text)
- Context-grounded time fields and enum values
- Degradation when the enum lookup fails
- Minimal clarification for unknown slots
"""

from clinical_insights.core.clarification_builder import (
    ClarificationBuilder,
    date_fields_in_context,
    minimal_clarification,
    options_to_labels,
)
from clinical_insights.core.resolution_models import (
    ClarificationOption,
    ContextBundle,
    FieldInContext,
    FormInContext,
    QueryIntent,
)


def _context_with_fields(*fields: FieldInContext) -> ContextBundle:
    return ContextBundle(
        question="q",
        intent=QueryIntent(),
        forms=[FormInContext(form_name="Wound Assessment", fields=list(fields))],
    )


class TestPercentageClarification:
    def test_percentage_slot_offers_presets_and_range(self, make_slot):
        # Arrange
        builder = ClarificationBuilder()
        slot = make_slot("reductionThreshold", type="decimal", semantic="percentage", description="Area reduction")

        # Act
        request = builder.build(slot.name, slot, template_name="Area Reduction")

        # Assert
        assert request.data_type == "percentage"
        assert request.prompt == "What percentage area reduction are you looking for?"
        assert request.value_range == (0, 100)
        assert request.unit == "%"
        assert request.options == [
            "25% (minor improvement)",
            "50% (moderate improvement)",
            "75% (significant improvement)",
            "Custom value",
        ]
        assert [o.value for o in request.rich_options] == [0.25, 0.5, 0.75, None]
        assert request.semantic == "percentage"
        assert request.template_name == "Area Reduction"


class TestTimeWindowClarification:
    def test_time_slot_offers_week_presets(self, make_slot):
        # Arrange
        builder = ClarificationBuilder()
        slot = make_slot("timeWindowDays", type="int", semantic="time_window")

        # Act
        request = builder.build(slot.name, slot)

        # Assert
        assert request.data_type == "time_window"
        assert request.prompt == "What time point would you like to analyze?"
        assert request.options == [
            "4 weeks (28 days)",
            "8 weeks (56 days)",
            "12 weeks (84 days)",
            "Custom time point",
        ]
        assert [o.value for o in request.rich_options[:3]] == [28, 56, 84]
        assert request.available_fields is None

    def test_time_slot_lists_date_fields_from_context(self, make_slot):
        # Arrange
        builder = ClarificationBuilder()
        slot = make_slot("timePointDays", semantic="time_point")
        context = _context_with_fields(
            FieldInContext(field_name="assessmentDate", data_type="date"),
            FieldInContext(field_name="areaCm2", data_type="numeric"),
            FieldInContext(field_name="healedAt", data_type="text", semantic_concept="healing_time"),
        )

        # Act
        request = builder.build(slot.name, slot, context=context)

        # Assert
        assert request.available_fields == ["assessmentDate", "healedAt"]
        assert request.prompt.endswith("(from assessmentDate, healedAt)")


class TestEnumClarification:
    def test_enum_slot_lists_declared_values(self, make_slot, wound_index_store):
        # Arrange
        builder = ClarificationBuilder(wound_index_store)
        slot = make_slot("coding_status", semantic="status")

        # Act
        request = builder.build(slot.name, slot, customer_id="cust-1")

        # Assert
        assert request.data_type == "enum"
        assert request.prompt == "Which value(s) would you like to filter by?"
        assert request.multiple is True
        assert request.options == ["Coded", "Pending", "Rejected by coder"]
        assert request.rich_options[2].value == "Rejected"

    def test_enum_field_name_taken_from_context(self, make_slot, wound_index_store):
        # Arrange
        builder = ClarificationBuilder(wound_index_store)
        slot = make_slot("CODING_STATUS", semantic="enum")
        context = _context_with_fields(FieldInContext(field_name="coding_status"))

        # Act
        request = builder.build(slot.name, slot, context=context, customer_id="cust-1")

        # Assert
        assert request.field == "coding_status"
        assert len(request.options) == 3

    def test_enum_lookup_failure_degrades_to_no_options(self, make_slot, make_index_store):
        # Arrange
        store = make_index_store(fail_on=("get_enum_values",))
        builder = ClarificationBuilder(store)
        slot = make_slot("coding_status", semantic="enum")

        # Act
        request = builder.build(slot.name, slot, customer_id="cust-1")

        # Assert
        assert request.data_type == "enum"
        assert request.options is None
        assert request.rich_options is None

    def test_enum_without_customer_skips_lookup(self, make_slot, wound_index_store):
        # Arrange
        builder = ClarificationBuilder(wound_index_store)
        slot = make_slot("coding_status", semantic="enum")

        # Act
        builder.build(slot.name, slot)

        # Assert
        assert wound_index_store.calls_to("get_enum_values") == []


class TestNumericAndTextClarification:
    def test_numeric_slot_offers_custom_value(self, make_slot):
        # Arrange
        builder = ClarificationBuilder()
        slot = make_slot("minArea", type="float", semantic="measurement", description="Minimum area")

        # Act
        request = builder.build(slot.name, slot)

        # Assert
        assert request.data_type == "numeric"
        assert request.prompt == "What minimum area are you looking for?"
        assert request.options == ["Custom value"]
        assert request.examples == ["0", "100", "500"]

    def test_text_slot_includes_description_and_hint(self, make_slot):
        # Arrange
        builder = ClarificationBuilder()
        slot = make_slot("clinicName", description="clinic", examples=["Northside", "Riverside"])

        # Act
        request = builder.build(slot.name, slot)

        # Assert
        assert request.data_type == "text"
        assert request.prompt == "Please provide a value for clinicName (clinic)"
        assert request.freeform_allowed.hint == "e.g., Northside or Riverside"
        assert request.freeform_allowed.min_chars == 1
        assert request.freeform_allowed.max_chars == 500

    def test_text_slot_without_examples_has_no_hint(self, make_slot):
        # Arrange
        builder = ClarificationBuilder()

        # Act
        request = builder.build("clinicName", make_slot("clinicName"))

        # Assert
        assert request.prompt == "Please provide a value for clinicName"
        assert request.examples is None
        assert request.freeform_allowed.hint is None


class TestMinimalClarification:
    def test_unknown_slot_gets_minimal_request(self):
        # Arrange
        builder = ClarificationBuilder()

        # Act
        request = builder.build("mystery", None, template_name="T")

        # Assert
        assert request.prompt == 'Can you clarify what you mean by "mystery"?'
        assert request.data_type == "text"
        assert request.examples == []
        assert request.template_name == "T"

    def test_minimal_clarification_allows_freeform(self):
        assert minimal_clarification("x").freeform_allowed.allowed is True


class TestHelpers:
    def test_options_to_labels_falls_back_to_value(self):
        # Arrange
        options = [ClarificationOption(label="", value=5), ClarificationOption(label="Other")]

        # Act & Assert
        assert options_to_labels(options) == ["5", "Other"]
        assert options_to_labels([]) is None

    def test_date_fields_without_context(self):
        assert date_fields_in_context(None) == []
