"""
Tests for context discovery (intent -> concepts -> search -> bundle).
"""

from unittest.mock import MagicMock

import pytest

from clinical_insights.core.context_discovery import ContextDiscovery, group_form_results, overall_confidence
from clinical_insights.core.resolution_models import IntentFilter, QueryIntent


@pytest.fixture
def search_hits(make_search_result):
    return [
        make_search_result("area_cm2", 0.8, semantic_concept="wound_area"),
        make_search_result("visit_reason", 0.9, table_or_form_name="Visit Note", semantic_concept="visit"),
        make_search_result("healing_date", 0.95, semantic_concept="healing_date", data_type="date"),
        make_search_result("etiology", 0.7, source="non_form", table_or_form_name="rpt.Wound", semantic_concept=""),
    ]


@pytest.fixture
def make_discovery(search_hits):
    """Factory: ContextDiscovery over a mock classifier and searcher."""

    def _make(intent: QueryIntent, hits=None, **kwargs):
        classifier = MagicMock()
        classifier.classify.return_value = intent
        searcher = MagicMock()
        searcher.search.return_value = list(search_hits if hits is None else hits)
        return ContextDiscovery(classifier, searcher, **kwargs), classifier, searcher

    return _make


class TestGroupFormResults:
    def test_forms_grouped_and_ordered_by_best_hit(self, search_hits):
        # Act
        forms = group_form_results(search_hits)

        # Assert
        assert [f.form_name for f in forms] == ["Wound Assessment", "Visit Note"]
        assert [f.field_name for f in forms[0].fields] == ["area_cm2", "healing_date"]
        assert forms[0].reason == "Matched concepts: healing_date, wound_area"
        assert forms[0].fields[1].field_id == "form-healing_date"

    def test_non_form_hits_are_not_forms(self, make_search_result):
        assert group_form_results([make_search_result(source="non_form", table_or_form_name="rpt.Wound")]) == []


class TestOverallConfidence:
    def test_mean_of_intent_and_search(self, make_search_result):
        # Arrange
        results = [make_search_result(confidence=0.9), make_search_result(confidence=0.7)]

        # Act & Assert
        assert overall_confidence(0.6, results) == pytest.approx(0.7)

    def test_no_results_halves_intent_confidence(self):
        assert overall_confidence(0.8, []) == 0.4


class TestContextDiscovery:
    def test_discover_builds_bundle(self, make_discovery):
        # Arrange
        intent = QueryIntent(
            type="outcome_analysis",
            metrics=["healing rate"],
            filters=[IntentFilter(user_phrase="diabetic")],
            confidence=0.8,
        )
        discovery, classifier, searcher = make_discovery(intent)

        # Act
        bundle = discovery.discover("What is the healing rate for diabetic wounds?", "cust-1", model_id="m")

        # Assert
        classifier.classify.assert_called_once_with("What is the healing rate for diabetic wounds?", "cust-1", "m")
        customer_id, texts = searcher.search.call_args[0]
        assert customer_id == "cust-1"
        assert texts[:2] == ["healing_rate", "diabetic"]
        assert searcher.search.call_args[1] == {"include_non_form": True}
        assert bundle.intent is intent
        assert [f.form_name for f in bundle.forms] == ["Wound Assessment", "Visit Note"]
        assert len(bundle.fields) == 4
        assert bundle.concepts[0].text == "healing_rate"
        assert bundle.overall_confidence == pytest.approx((0.8 + 0.8375) / 2, abs=1e-4)

    def test_form_only_search_when_configured(self, make_discovery):
        # Arrange
        discovery, _, searcher = make_discovery(QueryIntent(metrics=["wound area"]), include_non_form=False)

        # Act
        discovery.discover("wound area", "cust-1")

        # Assert
        assert searcher.search.call_args[1] == {"include_non_form": False}

    def test_no_concepts_skips_search(self, make_discovery):
        # Arrange
        discovery, _, searcher = make_discovery(QueryIntent(confidence=0.0))

        # Act
        bundle = discovery.discover("hello", "cust-1")

        # Assert
        searcher.search.assert_not_called()
        assert bundle.fields == []
        assert bundle.forms == []
        assert bundle.overall_confidence == 0.0

    def test_search_timeout_propagates(self, make_discovery):
        # Arrange
        discovery, _, searcher = make_discovery(QueryIntent(metrics=["wound area"]))
        searcher.search.side_effect = TimeoutError("semantic search did not complete within 10.0s")

        # Act & Assert
        with pytest.raises(TimeoutError):
            discovery.discover("wound area", "cust-1")
