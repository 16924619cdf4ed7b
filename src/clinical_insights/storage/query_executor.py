"""Read-only query execution against the customer's reporting database."""

import structlog
from sqlalchemy import Engine, text

from clinical_insights.core.resolution_models import QueryResults, ResolutionError
from clinical_insights.core.template_validator import find_dangerous_keywords

logger = structlog.get_logger()


class SqlQueryExecutor:
    """Runs SELECT/WITH statements and returns rows as dicts."""

    def __init__(self, engine: Engine, max_rows: int = 10_000):
        self.engine = engine
        self.max_rows = max_rows

    def execute(self, sql: str, context_id: str) -> QueryResults:
        """
        Execute a read-only statement.

        Raises:
            ResolutionError: statement contains a write/DDL keyword
            sqlalchemy.exc.SQLAlchemyError: database error
        """
        dangerous = find_dangerous_keywords(sql)
        if dangerous:
            raise ResolutionError(f"Refusing to execute statement containing {', '.join(dangerous)}")

        with self.engine.connect() as connection:
            result = connection.execute(text(sql))
            columns = list(result.keys())
            rows = [dict(row) for row in result.mappings().fetchmany(self.max_rows)]

        logger.info("query_executed", context_id=context_id, rows=len(rows), columns=len(columns))
        return QueryResults(rows=rows, columns=columns)
