"""
Pytest configuration and fixtures for clinical insights tests.
"""

import re
import sys
import time
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from clinical_insights.core.resolution_models import (  # noqa: E402
    AssessmentTypeMatch,
    EnumOption,
    FieldMatch,
    PlaceholderSlot,
    QueryTemplate,
    SemanticSearchResult,
)


def _compact(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


class FakeIndexStore:
    """
    In-memory SemanticIndexStore.

    Records every call in `calls` as (method, args). Methods named in `fail_on`
    raise RuntimeError; methods named in `delay_on` sleep first.
    """

    def __init__(
        self,
        form_fields: list[SemanticSearchResult] | None = None,
        non_form_columns: list[SemanticSearchResult] | None = None,
        assessment_types: list[AssessmentTypeMatch] | None = None,
        field_matches: list[FieldMatch] | None = None,
        enum_values: dict[str, list[EnumOption]] | None = None,
        concept_ids: dict[str, str] | None = None,
        fail_on: tuple[str, ...] = (),
        delay_on: dict[str, float] | None = None,
    ):
        self.form_fields = form_fields or []
        self.non_form_columns = non_form_columns or []
        self.assessment_types = assessment_types or []
        self.field_matches = field_matches or []
        self.enum_values = enum_values or {}
        self.concept_ids = concept_ids or {}
        self.fail_on = fail_on
        self.delay_on = delay_on or {}
        self.calls: list[tuple[str, tuple]] = []

    def _enter(self, method: str, *args) -> None:
        self.calls.append((method, args))
        if method in self.delay_on:
            time.sleep(self.delay_on[method])
        if method in self.fail_on:
            raise RuntimeError(f"{method} unavailable")

    def calls_to(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    def resolve_concept_ids(self, terms):
        self._enter("resolve_concept_ids", list(terms))
        return [self.concept_ids[t] for t in terms if t in self.concept_ids]

    def search_form_fields(self, customer_id, concepts, concept_ids, embeddings, min_confidence):
        self._enter("search_form_fields", customer_id, list(concepts), list(concept_ids), embeddings, min_confidence)
        return [r for r in self.form_fields if r.confidence >= min_confidence]

    def search_non_form_columns(self, customer_id, concepts, concept_ids, embeddings, min_confidence):
        self._enter(
            "search_non_form_columns", customer_id, list(concepts), list(concept_ids), embeddings, min_confidence
        )
        return [r for r in self.non_form_columns if r.confidence >= min_confidence]

    def search_assessment_types(self, customer_id, keyword):
        self._enter("search_assessment_types", customer_id, keyword)
        keyword = keyword.lower()
        hits = [
            m
            for m in self.assessment_types
            if keyword in m.assessment_name.lower() or keyword in m.semantic_concept.lower()
        ]
        return sorted(hits, key=lambda m: m.confidence, reverse=True)

    def _find(self, source, fragment):
        tokens = [_compact(t) for t in fragment.replace("_", " ").split()]
        for match in self.field_matches:
            if match.source == source and all(t in _compact(match.field_name) for t in tokens):
                return match
        return None

    def find_form_field(self, customer_id, fragment):
        self._enter("find_form_field", customer_id, fragment)
        return self._find("form", fragment)

    def find_non_form_column(self, customer_id, fragment):
        self._enter("find_non_form_column", customer_id, fragment)
        return self._find("non_form", fragment)

    def get_enum_values(self, customer_id, field_name):
        self._enter("get_enum_values", customer_id, field_name)
        return list(self.enum_values.get(field_name, []))


@pytest.fixture(scope="session")
def project_root():
    """Return project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def make_index_store():
    """
    Factory fixture for FakeIndexStore instances.

    Usage:
        def test_example(make_index_store):
            store = make_index_store(fail_on=("search_assessment_types",))
    """

    def _make(**kwargs) -> FakeIndexStore:
        return FakeIndexStore(**kwargs)

    return _make


@pytest.fixture
def wound_index_store():
    """Index store seeded with a wound assessment type and a coding status field."""
    return FakeIndexStore(
        assessment_types=[
            AssessmentTypeMatch(
                assessment_type_id="at-wound-001",
                assessment_name="Wound Assessment",
                semantic_concept="clinical_wound_assessment",
                semantic_category="clinical",
                confidence=0.92,
            ),
            AssessmentTypeMatch(
                assessment_type_id="at-visit-001",
                assessment_name="Visit Note",
                semantic_concept="clinical_visit_documentation",
                semantic_category="clinical",
                confidence=0.88,
            ),
        ],
        field_matches=[
            FieldMatch(
                field_name="coding_status",
                source="form",
                table_or_form_name="Wound Assessment",
                field_id="f-coding-status",
                data_type="enum",
                semantic_concept="workflow_status",
                enum_values=("Coded", "Pending", "Rejected"),
                confidence=0.9,
            ),
            FieldMatch(
                field_name="treatment_plan",
                source="non_form",
                table_or_form_name="rpt.Wound",
                data_type="text",
                confidence=0.8,
            ),
        ],
        enum_values={
            "coding_status": [
                EnumOption(value="Coded"),
                EnumOption(value="Pending"),
                EnumOption(value="Rejected", label="Rejected by coder"),
            ]
        },
    )


@pytest.fixture
def make_slot():
    """
    Factory fixture for PlaceholderSlot instances.

    Usage:
        def test_example(make_slot):
            slot = make_slot("timeWindowDays", type="int", semantic="time_window")
    """

    def _make(name: str = "value", **kwargs) -> PlaceholderSlot:
        for key in ("validators", "examples", "patterns"):
            if key in kwargs:
                kwargs[key] = tuple(kwargs[key])
        return PlaceholderSlot(name=name, **kwargs)

    return _make


@pytest.fixture
def make_template():
    """
    Factory fixture for QueryTemplate instances.

    Placeholders default to the slot names.

    Usage:
        def test_example(make_template, make_slot):
            template = make_template(slots=[make_slot("woundId")], sql_pattern="SELECT {woundId}")
    """

    def _make(
        name: str = "Test Template",
        sql_pattern: str = "SELECT * FROM rpt.Wound WHERE id = {value}",
        slots: list[PlaceholderSlot] | None = None,
        **kwargs,
    ) -> QueryTemplate:
        slots = tuple(slots or ())
        placeholders = tuple(kwargs.pop("placeholders", [s.name for s in slots]))
        for key in ("keywords", "tags", "question_examples"):
            if key in kwargs:
                kwargs[key] = tuple(kwargs[key])
        return QueryTemplate(
            name=name,
            sql_pattern=sql_pattern,
            version=kwargs.pop("version", 1),
            placeholders=placeholders,
            slots=slots,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_search_result():
    """Factory fixture for SemanticSearchResult instances."""

    def _make(
        field_name: str = "area_cm2",
        confidence: float = 0.9,
        source: str = "form",
        table_or_form_name: str | None = "Wound Assessment",
        semantic_concept: str = "wound_area",
        data_type: str = "numeric",
        concept_id: str | None = None,
        id: str | None = None,
    ) -> SemanticSearchResult:
        return SemanticSearchResult(
            id=id or f"{source}-{field_name}",
            source=source,
            field_name=field_name,
            table_or_form_name=table_or_form_name,
            concept_id=concept_id,
            semantic_concept=semantic_concept,
            data_type=data_type,
            confidence=confidence,
        )

    return _make


@pytest.fixture
def static_catalog():
    """Template catalog over the bundled static templates."""
    from clinical_insights.core.template_catalog import TemplateCatalog

    return TemplateCatalog()


@pytest.fixture
def healing_template(static_catalog):
    """Static 'Wound Healing Within Time Window' template (single timeWindowDays slot)."""
    from clinical_insights.core.template_catalog import TemplateSource

    return static_catalog.get_template("static-healing-time-window", TemplateSource.STATIC)


@pytest.fixture
def area_reduction_template(static_catalog):
    """Static area reduction template (time point, tolerance, percentage slots)."""
    from clinical_insights.core.template_catalog import TemplateSource

    return static_catalog.get_template("static-area-reduction-threshold", TemplateSource.STATIC)
