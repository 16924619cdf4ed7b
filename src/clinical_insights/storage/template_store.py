"""Template catalog source over the relational database."""

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from clinical_insights.core.resolution_config import TEMPLATE_APPROVED_STATUS
from clinical_insights.core.resolution_models import CatalogSourceError
from clinical_insights.storage.models import QueryTemplateRow

logger = structlog.get_logger()


def template_row_to_dict(row: QueryTemplateRow) -> dict[str, Any]:
    """Raw catalog row in the shape TemplateRecord parses."""
    return {
        "id": str(row.id),
        "name": row.name,
        "description": row.description,
        "version": row.version,
        "sql_pattern": row.sql_pattern,
        "placeholders": list(row.placeholders or []),
        "placeholders_spec": row.placeholders_spec,
        "keywords": list(row.keywords or []),
        "tags": list(row.tags or []),
        "question_examples": list(row.question_examples or []),
        "intent": row.intent,
        "status": row.status,
        "success_count": row.success_count,
        "usage_count": row.usage_count,
    }


class SqlTemplateSource:
    """Approved templates from the query_templates table."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def load_approved_templates(self) -> list[dict[str, Any]]:
        rows = self._query(
            select(QueryTemplateRow)
            .where(QueryTemplateRow.status == TEMPLATE_APPROVED_STATUS)
            .order_by(QueryTemplateRow.id)
        )
        logger.debug("template_store_loaded", templates=len(rows))
        return rows

    def load_template_by_id(self, template_id: str) -> dict[str, Any] | None:
        try:
            key = int(template_id)
        except (TypeError, ValueError):
            return None
        rows = self._query(select(QueryTemplateRow).where(QueryTemplateRow.id == key))
        return rows[0] if rows else None

    def load_templates_by_intent(self, intent: str) -> list[dict[str, Any]]:
        return self._query(
            select(QueryTemplateRow)
            .where(QueryTemplateRow.intent == intent, QueryTemplateRow.status == TEMPLATE_APPROVED_STATUS)
            .order_by(QueryTemplateRow.id)
        )

    def _query(self, statement) -> list[dict[str, Any]]:
        try:
            with self.session_factory() as session:
                return [template_row_to_dict(row) for row in session.scalars(statement).all()]
        except SQLAlchemyError as e:
            raise CatalogSourceError(f"Template store query failed: {e}") from e
