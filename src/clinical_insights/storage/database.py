"""Engine and session factory for the template and semantic index store.

Development: SQLite (file-based, no external service)
Production: PostgreSQL
"""

import os

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from clinical_insights.core.resolution_config import DATABASE_URL
from clinical_insights.storage.models import Base


def create_engine_from_url(database_url: str = DATABASE_URL, **kwargs) -> Engine:
    """Create an engine; SQLite connections may be shared across worker threads."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(
        database_url,
        connect_args=connect_args,
        echo=os.getenv("SQL_ECHO", "false").lower() == "true",
        **kwargs,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine) -> None:
    """Create all tables. In production, schema is managed outside this package."""
    Base.metadata.create_all(bind=engine)
