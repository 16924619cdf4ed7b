"""
Tests for the placeholder resolution cascade.

Tests cover:
- Strategy order (override, specialized, assessment type, field variable,
  generic extraction, default, clarification/skip)
- Validation failures fall through and are carried into clarifications
- Confirmation gate for high-confidence specialized hits
- Customer-scoped lookups degrade on timeout or failure
- SQL fill (quoting, booleans, NULL for unfilled)
- Confidence and missing placeholder accounting
"""

from unittest.mock import MagicMock

import pytest

from clinical_insights.core.placeholder_resolver import (
    PlaceholderResolver,
    extract_assessment_keywords,
    extract_field_fragment,
    fill_template_sql,
    format_sql_value,
    infer_from_examples,
    is_assessment_type_slot,
    is_field_variable_slot,
    template_slots,
)
from clinical_insights.core.resolution_models import SlotState
from clinical_insights.core.template_catalog import TemplateSource


@pytest.fixture
def make_resolver():
    """Factory fixture for PlaceholderResolver; shuts every instance down after the test."""
    created: list[PlaceholderResolver] = []

    def _make(**kwargs) -> PlaceholderResolver:
        kwargs.setdefault("require_confirmation", False)
        resolver = PlaceholderResolver(**kwargs)
        created.append(resolver)
        return resolver

    yield _make

    for resolver in created:
        resolver.close()


@pytest.fixture
def assessment_status_template(make_template, make_slot):
    """Four-slot template: assessment type, field variable, free value, time window."""
    return make_template(
        name="Assessments By Field Value",
        sql_pattern=(
            "SELECT a.id FROM rpt.Assessment AS a "
            "JOIN rpt.NoteAttribute AS na ON na.assessmentFk = a.id "
            "WHERE a.assessmentTypeId = {assessmentTypeId} "
            "AND na.name = {statusField} AND na.value = {statusValue} "
            "AND DATEDIFF(day, a.baselineDate, a.assessmentDate) <= {timeWindowDays}"
        ),
        slots=[
            make_slot("assessmentTypeId", type="guid", semantic="assessment_type"),
            make_slot("statusField", type="string", semantic="field_name"),
            make_slot("statusValue", type="string", description="status value"),
            make_slot("timeWindowDays", type="int", semantic="time_window", validators=["min:1", "max:730"]),
        ],
    )


class TestTimeWindowResolution:
    """Single time-window slot (static healing template)."""

    def test_healing_question_fills_window(self, make_resolver, healing_template):
        # Arrange
        resolver = make_resolver()

        # Act
        resolution = resolver.resolve("Show me healing data within 4 weeks", healing_template)

        # Assert
        assert resolution.values == {"timeWindowDays": 28}
        assert resolution.confidence == 1.0
        assert resolution.slot_states == {"timeWindowDays": SlotState.FILLED}
        assert resolution.missing_placeholders == []
        assert resolution.is_complete is True
        assert "BETWEEN 0 AND 28" in resolution.filled_sql

    def test_question_without_window_asks_with_presets(self, make_resolver, healing_template):
        # Arrange
        resolver = make_resolver()

        # Act
        resolution = resolver.resolve("Show me data", healing_template)

        # Assert
        assert resolution.confidence == 0.0
        assert resolution.missing_placeholders == ["timeWindowDays"]
        assert resolution.slot_states["timeWindowDays"] is SlotState.PENDING_CLARIFICATION
        clarification = resolution.clarifications[0]
        assert clarification.data_type == "time_window"
        assert clarification.options[:3] == ["4 weeks (28 days)", "8 weeks (56 days)", "12 weeks (84 days)"]
        assert clarification.template_name == healing_template.name
        assert "BETWEEN 0 AND NULL" in resolution.filled_sql

    def test_override_wins_over_question(self, make_resolver, healing_template):
        # Arrange
        resolver = make_resolver()

        # Act
        resolution = resolver.resolve(
            "Show me healing data within 4 weeks", healing_template, overrides={"timeWindowDays": "56"}
        )

        # Assert
        assert resolution.values == {"timeWindowDays": 56}

    def test_invalid_override_falls_through_to_parser(self, make_resolver, healing_template):
        # Arrange
        resolver = make_resolver()

        # Act
        resolution = resolver.resolve(
            "Show me healing data within 4 weeks", healing_template, overrides={"timeWindowDays": 800}
        )

        # Assert
        assert resolution.values == {"timeWindowDays": 28}

    def test_out_of_range_window_is_never_used(self, make_resolver, healing_template):
        # Arrange
        resolver = make_resolver()

        # Act
        resolution = resolver.resolve("Show me healing data within 3 years", healing_template)

        # Assert
        assert resolution.values == {}
        clarification = resolution.clarifications[0]
        assert clarification.reason == "within 3 years rejected: must be at most 730"
        assert clarification.prompt.endswith("(within 3 years rejected: must be at most 730)")


class TestPercentageResolution:
    """Time point, tolerance and percentage slots (static area reduction template)."""

    def test_all_slots_fill_with_default_tolerance(self, make_resolver, area_reduction_template):
        # Arrange
        resolver = make_resolver()

        # Act
        resolution = resolver.resolve("How many wounds had 50% area reduction at 12 weeks?", area_reduction_template)

        # Assert
        assert resolution.values == {"timePointDays": 84, "toleranceDays": 7, "reductionThreshold": 0.5}
        assert resolution.confidence == 1.0
        assert "- 84) <= 7" in resolution.filled_sql
        assert ">= 0.5" in resolution.filled_sql

    def test_explicit_tolerance_is_parsed_separately(self, make_resolver, area_reduction_template):
        # Arrange
        resolver = make_resolver()

        # Act
        resolution = resolver.resolve("50% area reduction at 12 weeks +/- 3 days", area_reduction_template)

        # Assert
        assert resolution.values["timePointDays"] == 84
        assert resolution.values["toleranceDays"] == 3

    def test_out_of_range_percentage_is_rejected_not_clamped(self, make_resolver, area_reduction_template):
        # Arrange
        resolver = make_resolver()

        # Act
        resolution = resolver.resolve("How many wounds had 150% area reduction at 12 weeks?", area_reduction_template)

        # Assert
        assert "reductionThreshold" not in resolution.values
        assert resolution.missing_placeholders == ["reductionThreshold"]
        assert resolution.confidence == pytest.approx(2 / 3)
        clarification = resolution.clarifications[0]
        assert clarification.data_type == "percentage"
        assert clarification.reason == "150% rejected: 150% is outside 0-100%"

    def test_out_of_range_tolerance_is_not_replaced_by_default(self, make_resolver, area_reduction_template):
        # Arrange: toleranceDays is optional, defaults to 7 and allows at most 30
        resolver = make_resolver()

        # Act
        resolution = resolver.resolve(
            "How many wounds had 50% area reduction at 12 weeks +/- 60 days?", area_reduction_template
        )

        # Assert
        assert resolution.values == {"timePointDays": 84, "reductionThreshold": 0.5}
        assert resolution.slot_states["toleranceDays"] is SlotState.PENDING_CLARIFICATION
        assert resolution.missing_placeholders == ["toleranceDays"]
        assert resolution.confidence == pytest.approx(2 / 3)
        clarification = resolution.clarifications[0]
        assert clarification.placeholder == "toleranceDays"
        assert "must be at most 30" in clarification.reason
        assert "must be at most 30" in clarification.prompt


class TestConfirmationGate:
    """High-confidence specialized hits pause for confirmation when enabled."""

    def test_confirmation_required_pauses_slot(self, make_resolver, healing_template):
        # Arrange
        resolver = make_resolver(require_confirmation=True)

        # Act
        resolution = resolver.resolve("Show me healing data within 4 weeks", healing_template)

        # Assert
        assert resolution.values == {}
        assert resolution.confidence == 0.0
        assert resolution.missing_placeholders == ["timeWindowDays"]
        assert resolution.slot_states["timeWindowDays"] is SlotState.PENDING_CONFIRMATION
        confirmation = resolution.confirmations[0]
        assert confirmation.detected_value == 28
        assert confirmation.display_label == "4 weeks (28 days)"
        assert confirmation.original_input == "within 4 weeks"
        assert confirmation.confidence == 0.95
        assert resolution.is_complete is False

    def test_below_threshold_hit_fills_without_confirmation(self, make_resolver, healing_template):
        # Arrange
        resolver = make_resolver(require_confirmation=True, confirmation_threshold=0.99)

        # Act
        resolution = resolver.resolve("Show me healing data within 4 weeks", healing_template)

        # Assert
        assert resolution.values == {"timeWindowDays": 28}
        assert resolution.confirmations == []

    def test_confirmed_value_supplied_as_override_fills(self, make_resolver, healing_template):
        # Arrange
        resolver = make_resolver(require_confirmation=True)

        # Act
        resolution = resolver.resolve(
            "Show me healing data within 4 weeks", healing_template, overrides={"timeWindowDays": 28}
        )

        # Assert
        assert resolution.values == {"timeWindowDays": 28}
        assert resolution.is_complete is True


class TestCustomerScopedLookups:
    """Assessment type and field variable resolution."""

    def test_multi_slot_question_resolves_three_of_four(
        self, make_resolver, wound_index_store, assessment_status_template
    ):
        # Arrange
        resolver = make_resolver(index_store=wound_index_store)

        # Act
        resolution = resolver.resolve(
            "Show me wound assessments by coding status within 4 weeks",
            assessment_status_template,
            customer_id="cust-1",
        )

        # Assert
        assert resolution.values == {
            "assessmentTypeId": "at-wound-001",
            "statusField": "coding_status",
            "timeWindowDays": 28,
        }
        assert resolution.confidence == 0.75
        assert resolution.missing_placeholders == ["statusValue"]
        assert resolution.clarifications[0].prompt == "Please provide a value for statusValue (status value)"

        assessment = resolution.resolved_assessment_types[0]
        assert assessment.assessment_name == "Wound Assessment"
        assert assessment.original_text == "wound assessments"
        field = resolution.resolved_field_variables[0]
        assert field.field_name == "coding_status"
        assert field.original_text == "coding status"
        assert field.enum_values == ["Coded", "Pending", "Rejected"]

    def test_without_customer_id_lookups_are_skipped(self, make_resolver, wound_index_store, make_template, make_slot):
        # Arrange
        resolver = make_resolver(index_store=wound_index_store)
        template = make_template(slots=[make_slot("assessmentTypeId", semantic="assessment_type")])

        # Act
        resolution = resolver.resolve("Count wound assessments", template)

        # Assert
        assert resolution.missing_placeholders == ["assessmentTypeId"]
        assert resolution.resolved_assessment_types is None
        assert wound_index_store.calls_to("search_assessment_types") == []

    def test_highest_confidence_assessment_wins_across_keywords(
        self, make_resolver, wound_index_store, make_template, make_slot
    ):
        # Arrange
        resolver = make_resolver(index_store=wound_index_store)
        template = make_template(slots=[make_slot("formType", semantic="assessment_type")])

        # Act
        resolution = resolver.resolve("visit notes and wound forms", template, customer_id="cust-1")

        # Assert
        assert resolution.values == {"formType": "at-wound-001"}
        assert [args[1] for args in wound_index_store.calls_to("search_assessment_types")] == ["visit", "wound"]

    def test_field_variable_falls_back_to_non_form_columns(
        self, make_resolver, wound_index_store, make_template, make_slot
    ):
        # Arrange
        resolver = make_resolver(index_store=wound_index_store)
        template = make_template(slots=[make_slot("groupField", semantic="field_name")])

        # Act
        resolution = resolver.resolve("Show wounds by treatment plan", template, customer_id="cust-1")

        # Assert
        assert resolution.values == {"groupField": "treatment_plan"}
        assert resolution.resolved_field_variables[0].source == "non_form"

    def test_unresolved_field_variable_offers_enum_values(
        self, make_resolver, wound_index_store, make_template, make_slot
    ):
        # Arrange
        resolver = make_resolver(index_store=wound_index_store)
        template = make_template(slots=[make_slot("statusField", semantic="field_name")])

        # Act
        resolution = resolver.resolve("Show me wounds", template, customer_id="cust-1")

        # Assert
        clarification = resolution.clarifications[0]
        assert clarification.data_type == "enum"
        assert clarification.prompt == "Which coding_status value(s) did you mean?"
        assert clarification.options == ["Coded", "Pending", "Rejected"]
        assert clarification.template_name == "Test Template"

    @pytest.mark.slow
    def test_slow_lookup_degrades_to_clarification(self, make_resolver, make_index_store, make_template, make_slot):
        # Arrange
        store = make_index_store(delay_on={"search_assessment_types": 0.5})
        resolver = make_resolver(index_store=store, lookup_timeout=0.05)
        template = make_template(slots=[make_slot("assessmentTypeId", semantic="assessment_type")])

        # Act
        resolution = resolver.resolve("Count wound assessments", template, customer_id="cust-1")

        # Assert
        assert resolution.missing_placeholders == ["assessmentTypeId"]
        assert resolution.resolved_assessment_types is None

    def test_failing_lookup_degrades_to_clarification(self, make_resolver, make_index_store, make_template, make_slot):
        # Arrange
        store = make_index_store(fail_on=("search_assessment_types",))
        resolver = make_resolver(index_store=store)
        template = make_template(slots=[make_slot("assessmentTypeId", semantic="assessment_type")])

        # Act
        resolution = resolver.resolve("Count wound assessments", template, customer_id="cust-1")

        # Assert
        assert resolution.slot_states["assessmentTypeId"] is SlotState.PENDING_CLARIFICATION


class TestGenericExtraction:
    """Slot patterns, name heuristics, examples and defaults."""

    def test_slot_pattern_and_boolean_default(self, make_resolver, static_catalog):
        # Arrange
        resolver = make_resolver()
        template = static_catalog.get_template("static-wounds-by-etiology", TemplateSource.STATIC)

        # Act
        resolution = resolver.resolve("List open diabetic ulcers", template)

        # Assert
        assert resolution.values == {"etiology": "diabetic", "isOpen": True}
        assert "w.etiology = 'diabetic'" in resolution.filled_sql
        assert "w.isOpen = TRUE" in resolution.filled_sql

    def test_status_name_heuristic_capitalizes_known_words(self, make_resolver, make_template, make_slot):
        # Arrange
        resolver = make_resolver()
        template = make_template(slots=[make_slot("patientStatus")])

        # Act
        resolution = resolver.resolve("List pending patients", template)

        # Assert
        assert resolution.values == {"patientStatus": "Pending"}

    def test_city_heuristic_reads_capitalized_place(self, make_resolver, make_template, make_slot):
        # Arrange
        resolver = make_resolver()
        template = make_template(slots=[make_slot("clinicLocation")])

        # Act
        resolution = resolver.resolve("Show wounds treated in Salt Lake", template)

        # Assert
        assert resolution.values == {"clinicLocation": "Salt Lake"}

    def test_example_inference_finds_shared_capitalized_word(self, make_resolver, make_template, make_slot):
        # Arrange
        resolver = make_resolver()
        template = make_template(slots=[make_slot("clinic")], question_examples=["visits at northside last week"])

        # Act
        resolution = resolver.resolve("Show visits at Northside", template)

        # Assert
        assert resolution.values == {"clinic": "Northside"}

    def test_optional_slot_without_value_is_skipped(self, make_resolver, make_template, make_slot):
        # Arrange
        resolver = make_resolver()
        template = make_template(
            sql_pattern="SELECT * FROM rpt.Wound WHERE id = {value} OR note = {note}",
            slots=[make_slot("value", default="w-1"), make_slot("note", required=False)],
        )

        # Act
        resolution = resolver.resolve("anything", template)

        # Assert
        assert resolution.slot_states == {"value": SlotState.FILLED, "note": SlotState.SKIPPED}
        assert resolution.missing_placeholders == []
        assert resolution.is_complete is True
        assert resolution.confidence == 0.5
        assert "note = NULL" in resolution.filled_sql

    def test_undeclared_placeholder_gets_minimal_clarification(self, make_resolver, make_template):
        # Arrange
        resolver = make_resolver()
        template = make_template(sql_pattern="SELECT * FROM rpt.Wound WHERE x = {mystery}", slots=[])

        # Act
        resolution = resolver.resolve("anything", template)

        # Assert
        assert resolution.clarifications[0].prompt == 'Can you clarify what you mean by "mystery"?'

    def test_failing_clarification_builder_degrades_to_minimal(self, make_resolver, healing_template):
        # Arrange
        builder = MagicMock()
        builder.build.side_effect = RuntimeError("boom")
        resolver = make_resolver(clarification_builder=builder)

        # Act
        resolution = resolver.resolve("Show me data", healing_template)

        # Assert
        assert resolution.clarifications[0].prompt == 'Can you clarify what you mean by "timeWindowDays"?'
        assert resolution.clarifications[0].template_name == healing_template.name

    def test_no_slots_means_full_confidence(self, make_resolver, make_template):
        # Arrange
        resolver = make_resolver()
        template = make_template(sql_pattern="SELECT COUNT(*) FROM rpt.Wound", slots=[])

        # Act
        resolution = resolver.resolve("How many wounds?", template)

        # Assert
        assert resolution.confidence == 1.0
        assert resolution.filled_sql == "SELECT COUNT(*) FROM rpt.Wound"


class TestSlotHelpers:
    """Test slot predicates and extraction helpers."""

    def test_assessment_slot_by_name_or_semantic(self, make_slot):
        assert is_assessment_type_slot(make_slot("formId")) is True
        assert is_assessment_type_slot(make_slot("x", semantic="assessment_type")) is True
        assert is_assessment_type_slot(make_slot("woundId")) is False

    def test_field_slot_by_name_or_semantic(self, make_slot):
        assert is_field_variable_slot(make_slot("groupColumn")) is True
        assert is_field_variable_slot(make_slot("x", semantic="field_name")) is True
        assert is_field_variable_slot(make_slot("statusValue")) is False

    def test_extract_assessment_keywords_prefers_specific_match(self):
        assert extract_assessment_keywords("wound assessments and billing") == [
            ("wound", "wound assessments"),
            ("billing", "billing"),
        ]

    @pytest.mark.parametrize(
        ("question", "fragment"),
        [
            ("patients by coding status", "coding status"),
            ("group wounds by treatment plan", "treatment plan"),
            ("visits where stage = 3", "stage"),
            ("show me everything", None),
        ],
    )
    def test_extract_field_fragment(self, question, fragment):
        assert extract_field_fragment(question) == fragment

    def test_infer_from_examples_skips_first_word(self):
        assert infer_from_examples("Northside visits", ("northside visits",)) is None

    def test_template_slots_marks_undeclared(self, make_template, make_slot):
        # Arrange
        template = make_template(slots=[make_slot("a")], placeholders=["a", "b"])

        # Act
        slots = template_slots(template)

        # Assert
        assert [(slot.name, declared) for slot, declared in slots] == [("a", True), ("b", False)]


class TestSqlFill:
    """Test value formatting and substitution."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (True, "TRUE"),
            (False, "FALSE"),
            (28, "28"),
            (0.5, "0.5"),
            ("Coded", "'Coded'"),
            ("O'Brien", "'O''Brien'"),
            ("true", "TRUE"),
        ],
    )
    def test_format_sql_value(self, value, expected):
        assert format_sql_value(value) == expected

    def test_fill_replaces_optional_markers_and_unfilled(self):
        # Act
        filled = fill_template_sql("SELECT {a}, {b?}, {c}", {"a": 1, "b": "x"})

        # Assert
        assert filled == "SELECT 1, 'x', NULL"
