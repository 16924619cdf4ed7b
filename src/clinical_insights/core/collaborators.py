"""
Collaborator protocols for the resolution pipeline.

The relational store, embedding model, intent classifier, generative model
and query executor live outside this package. Components depend only on
these protocols; storage/ and llm_client provide the default adapters and
tests use simple fakes.
"""

from collections.abc import Sequence
from typing import Any, Protocol

from clinical_insights.core.generation_schemas import GenerationResponse
from clinical_insights.core.resolution_models import (
    AssessmentTypeMatch,
    ContextBundle,
    EnumOption,
    FieldMatch,
    QueryIntent,
    QueryResults,
    SemanticSearchResult,
)


class CatalogSource(Protocol):
    """Live store of query templates (raw rows, normalized by the catalog)."""

    def load_approved_templates(self) -> list[dict[str, Any]]:
        """Return every approved template row. May raise CatalogSourceError."""
        ...

    def load_template_by_id(self, template_id: str) -> dict[str, Any] | None:
        ...

    def load_templates_by_intent(self, intent: str) -> list[dict[str, Any]]:
        ...


class SemanticIndexStore(Protocol):
    """Customer-scoped lookups over the semantic index."""

    def resolve_concept_ids(self, terms: Sequence[str]) -> list[str]:
        """Map terms to controlled-vocabulary ids (exact or synonym match)."""
        ...

    def search_form_fields(
        self,
        customer_id: str,
        concepts: Sequence[str],
        concept_ids: Sequence[str],
        embeddings: Sequence[list[float]],
        min_confidence: float,
    ) -> list[SemanticSearchResult]:
        """Form fields matching the concepts. Stores without a vector index may ignore embeddings."""
        ...

    def search_non_form_columns(
        self,
        customer_id: str,
        concepts: Sequence[str],
        concept_ids: Sequence[str],
        embeddings: Sequence[list[float]],
        min_confidence: float,
    ) -> list[SemanticSearchResult]:
        ...

    def search_assessment_types(self, customer_id: str, keyword: str) -> list[AssessmentTypeMatch]:
        """Assessment types whose name/concept/category contains keyword, best first."""
        ...

    def find_form_field(self, customer_id: str, fragment: str) -> FieldMatch | None:
        ...

    def find_non_form_column(self, customer_id: str, fragment: str) -> FieldMatch | None:
        ...

    def get_enum_values(self, customer_id: str, field_name: str) -> list[EnumOption]:
        ...


class Embedder(Protocol):
    def embed(self, text: str) -> list[float] | None:
        """Embedding vector for text, None (or an exception) on failure."""
        ...


class IntentClassifier(Protocol):
    def classify(self, question: str, customer_id: str, model_id: str | None = None) -> QueryIntent:
        ...


class ContextDiscoverer(Protocol):
    def discover(self, question: str, customer_id: str, model_id: str | None = None) -> ContextBundle:
        ...


class SQLGenerator(Protocol):
    """Opaque generative step: context in, SQL or clarification out."""

    def generate(
        self,
        context: ContextBundle,
        customer_id: str,
        model_id: str | None = None,
        clarification_answers: dict[str, str] | None = None,
    ) -> GenerationResponse:
        ...


class QueryExecutor(Protocol):
    def execute(self, sql: str, context_id: str) -> QueryResults:
        ...
