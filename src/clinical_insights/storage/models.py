"""SQLAlchemy ORM models for the template catalog and semantic index.

Every index table is scoped by customer_id; templates are shared across
customers. Uses SQLAlchemy 2.0 declarative mapping with type annotations.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class QueryTemplateRow(Base):
    """Approved (or draft) query template.

    List columns hold JSON arrays; placeholders_spec holds {"slots": [...]}.
    """

    __tablename__ = "query_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    sql_pattern: Mapped[str] = mapped_column(Text, nullable=False)
    placeholders: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    placeholders_spec: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    keywords: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    question_examples: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    intent: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Approved")  # Draft, Approved, Deprecated
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<QueryTemplateRow(name={self.name!r}, version={self.version}, status={self.status!r})>"


class SemanticIndexField(Base):
    """Form field indexed with its semantic concept."""

    __tablename__ = "semantic_index_fields"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    form_name: Mapped[str] = mapped_column(String(200), nullable=False)
    field_name: Mapped[str] = mapped_column(String(200), nullable=False)
    data_type: Mapped[str] = mapped_column(String(50), nullable=False, default="text")
    semantic_concept: Mapped[str] = mapped_column(String(200), nullable=False)
    concept_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    def __repr__(self) -> str:
        return f"<SemanticIndexField(form={self.form_name!r}, field={self.field_name!r})>"


class SemanticIndexNonForm(Base):
    """Reporting-schema column outside any form."""

    __tablename__ = "semantic_index_non_form"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    table_name: Mapped[str] = mapped_column(String(200), nullable=False)
    column_name: Mapped[str] = mapped_column(String(200), nullable=False)
    data_type: Mapped[str] = mapped_column(String(50), nullable=False, default="text")
    semantic_concept: Mapped[str] = mapped_column(String(200), nullable=False)
    concept_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    is_filterable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<SemanticIndexNonForm(table={self.table_name!r}, column={self.column_name!r})>"


class AssessmentType(Base):
    """Indexed assessment type (wound assessment, visit note, billing form...)."""

    __tablename__ = "assessment_types"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    assessment_name: Mapped[str] = mapped_column(String(200), nullable=False)
    semantic_concept: Mapped[str] = mapped_column(String(200), nullable=False)
    semantic_category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    def __repr__(self) -> str:
        return f"<AssessmentType(name={self.assessment_name!r}, concept={self.semantic_concept!r})>"


class OntologyConcept(Base):
    """Controlled-vocabulary concept and its synonyms."""

    __tablename__ = "ontology_concepts"

    concept_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    preferred_term: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    synonyms: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<OntologyConcept(concept_id={self.concept_id!r}, term={self.preferred_term!r})>"


class FieldEnumValue(Base):
    """Declared enumerated value of a field."""

    __tablename__ = "field_enum_values"
    __table_args__ = (UniqueConstraint("customer_id", "field_name", "value"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    field_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    value: Mapped[str] = mapped_column(String(200), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<FieldEnumValue(field={self.field_name!r}, value={self.value!r})>"
