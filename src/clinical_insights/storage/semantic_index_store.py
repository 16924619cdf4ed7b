"""Semantic index store over the relational database.

Implements the SemanticIndexStore collaborator with plain column matching.
No vector index is kept here, so embeddings passed to the search methods are
accepted and ignored; matches are by concept id, semantic concept name, or
field-name fragment.
"""

from collections.abc import Sequence

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from clinical_insights.core.resolution_models import (
    AssessmentTypeMatch,
    EnumOption,
    FieldMatch,
    SemanticSearchResult,
)
from clinical_insights.storage.models import (
    AssessmentType,
    FieldEnumValue,
    OntologyConcept,
    SemanticIndexField,
    SemanticIndexNonForm,
)

logger = structlog.get_logger()

# Field-name fragment hits rank below concept hits
NAME_MATCH_FACTOR = 0.9


def fragment_pattern(fragment: str) -> str:
    """LIKE pattern for a phrase: "coding status" -> "%coding%status%"."""
    tokens = [t for t in fragment.lower().replace("_", " ").split() if t]
    return "%" + "%".join(tokens) + "%"


def _lowered(values: Sequence[str]) -> list[str]:
    return [v.lower().strip() for v in values if v and v.strip()]


class SqlSemanticIndexStore:
    """Customer-scoped semantic index lookups."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def resolve_concept_ids(self, terms: Sequence[str]) -> list[str]:
        wanted = set(_lowered(terms))
        if not wanted:
            return []

        with self.session_factory() as session:
            concepts = session.scalars(select(OntologyConcept).order_by(OntologyConcept.concept_id)).all()

        ids = []
        for concept in concepts:
            names = {concept.preferred_term.lower(), *(s.lower() for s in concept.synonyms or [])}
            if names & wanted:
                ids.append(concept.concept_id)
        return ids

    def search_form_fields(
        self,
        customer_id: str,
        concepts: Sequence[str],
        concept_ids: Sequence[str],
        embeddings: Sequence[list[float]],
        min_confidence: float,
    ) -> list[SemanticSearchResult]:
        lowered = _lowered(concepts)
        conditions = [func.lower(SemanticIndexField.semantic_concept).in_(lowered)]
        if concept_ids:
            conditions.append(SemanticIndexField.concept_id.in_(list(concept_ids)))
        conditions.extend(SemanticIndexField.field_name.ilike(fragment_pattern(c)) for c in lowered)

        with self.session_factory() as session:
            rows = session.scalars(
                select(SemanticIndexField)
                .where(SemanticIndexField.customer_id == customer_id, or_(*conditions))
                .order_by(SemanticIndexField.confidence.desc(), SemanticIndexField.id)
            ).all()

        results = []
        for row in rows:
            confidence = self._confidence(row.confidence, row.concept_id, row.semantic_concept, concept_ids, lowered)
            if confidence < min_confidence:
                continue
            results.append(
                SemanticSearchResult(
                    id=row.id,
                    source="form",
                    field_name=row.field_name,
                    table_or_form_name=row.form_name,
                    concept_id=row.concept_id,
                    semantic_concept=row.semantic_concept,
                    data_type=row.data_type,
                    confidence=confidence,
                )
            )
        return results

    def search_non_form_columns(
        self,
        customer_id: str,
        concepts: Sequence[str],
        concept_ids: Sequence[str],
        embeddings: Sequence[list[float]],
        min_confidence: float,
    ) -> list[SemanticSearchResult]:
        lowered = _lowered(concepts)
        conditions = [func.lower(SemanticIndexNonForm.semantic_concept).in_(lowered)]
        if concept_ids:
            conditions.append(SemanticIndexNonForm.concept_id.in_(list(concept_ids)))
        conditions.extend(SemanticIndexNonForm.column_name.ilike(fragment_pattern(c)) for c in lowered)

        with self.session_factory() as session:
            rows = session.scalars(
                select(SemanticIndexNonForm)
                .where(SemanticIndexNonForm.customer_id == customer_id, or_(*conditions))
                .order_by(SemanticIndexNonForm.confidence.desc(), SemanticIndexNonForm.id)
            ).all()

        results = []
        for row in rows:
            confidence = self._confidence(row.confidence, row.concept_id, row.semantic_concept, concept_ids, lowered)
            if confidence < min_confidence:
                continue
            results.append(
                SemanticSearchResult(
                    id=row.id,
                    source="non_form",
                    field_name=row.column_name,
                    table_or_form_name=row.table_name,
                    concept_id=row.concept_id,
                    semantic_concept=row.semantic_concept,
                    data_type=row.data_type,
                    confidence=confidence,
                )
            )
        return results

    def search_assessment_types(self, customer_id: str, keyword: str) -> list[AssessmentTypeMatch]:
        pattern = f"%{keyword.lower().strip()}%"
        with self.session_factory() as session:
            rows = session.scalars(
                select(AssessmentType)
                .where(
                    AssessmentType.customer_id == customer_id,
                    or_(
                        AssessmentType.assessment_name.ilike(pattern),
                        AssessmentType.semantic_concept.ilike(pattern),
                        AssessmentType.semantic_category.ilike(pattern),
                    ),
                )
                .order_by(AssessmentType.confidence.desc(), AssessmentType.id)
            ).all()

        return [
            AssessmentTypeMatch(
                assessment_type_id=row.id,
                assessment_name=row.assessment_name,
                semantic_concept=row.semantic_concept,
                semantic_category=row.semantic_category,
                confidence=row.confidence,
            )
            for row in rows
        ]

    def find_form_field(self, customer_id: str, fragment: str) -> FieldMatch | None:
        with self.session_factory() as session:
            row = session.scalars(
                select(SemanticIndexField)
                .where(
                    SemanticIndexField.customer_id == customer_id,
                    SemanticIndexField.field_name.ilike(fragment_pattern(fragment)),
                )
                .order_by(SemanticIndexField.confidence.desc(), SemanticIndexField.id)
                .limit(1)
            ).first()
            if row is None:
                return None
            enum_values = self._enum_values(session, customer_id, row.field_name)

        return FieldMatch(
            field_name=row.field_name,
            source="form",
            table_or_form_name=row.form_name,
            field_id=row.id,
            data_type=row.data_type,
            semantic_concept=row.semantic_concept,
            enum_values=tuple(option.value for option in enum_values),
            confidence=row.confidence,
        )

    def find_non_form_column(self, customer_id: str, fragment: str) -> FieldMatch | None:
        with self.session_factory() as session:
            row = session.scalars(
                select(SemanticIndexNonForm)
                .where(
                    SemanticIndexNonForm.customer_id == customer_id,
                    SemanticIndexNonForm.is_filterable.is_(True),
                    SemanticIndexNonForm.column_name.ilike(fragment_pattern(fragment)),
                )
                .order_by(SemanticIndexNonForm.confidence.desc(), SemanticIndexNonForm.id)
                .limit(1)
            ).first()
            if row is None:
                return None
            enum_values = self._enum_values(session, customer_id, row.column_name)

        return FieldMatch(
            field_name=row.column_name,
            source="non_form",
            table_or_form_name=row.table_name,
            field_id=row.id,
            data_type=row.data_type,
            semantic_concept=row.semantic_concept,
            enum_values=tuple(option.value for option in enum_values),
            confidence=row.confidence,
        )

    def get_enum_values(self, customer_id: str, field_name: str) -> list[EnumOption]:
        with self.session_factory() as session:
            return self._enum_values(session, customer_id, field_name)

    @staticmethod
    def _enum_values(session: Session, customer_id: str, field_name: str) -> list[EnumOption]:
        rows = session.scalars(
            select(FieldEnumValue)
            .where(FieldEnumValue.customer_id == customer_id, FieldEnumValue.field_name == field_name)
            .order_by(FieldEnumValue.sort_order, FieldEnumValue.value)
        ).all()
        return [EnumOption(value=row.value, label=row.label) for row in rows]

    @staticmethod
    def _confidence(
        base: float,
        concept_id: str | None,
        semantic_concept: str,
        concept_ids: Sequence[str],
        concepts: list[str],
    ) -> float:
        if (concept_id and concept_id in concept_ids) or semantic_concept.lower() in concepts:
            return base
        return round(base * NAME_MATCH_FACTOR, 4)
