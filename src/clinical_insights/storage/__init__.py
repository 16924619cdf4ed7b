"""Storage module for the template catalog, semantic index and query execution."""

from clinical_insights.storage.database import create_engine_from_url, create_session_factory, create_tables
from clinical_insights.storage.query_executor import SqlQueryExecutor
from clinical_insights.storage.semantic_index_store import SqlSemanticIndexStore
from clinical_insights.storage.template_store import SqlTemplateSource

__all__ = [
    "create_engine_from_url",
    "create_session_factory",
    "create_tables",
    "SqlQueryExecutor",
    "SqlSemanticIndexStore",
    "SqlTemplateSource",
]
