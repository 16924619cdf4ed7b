"""
Shared database fixtures for storage integration tests.

Every test gets a fresh in-memory SQLite database. StaticPool keeps the
single connection alive so all sessions see the same tables.
"""

import pytest
from sqlalchemy.pool import StaticPool

from clinical_insights.storage.database import create_engine_from_url, create_session_factory, create_tables
from clinical_insights.storage.models import Base


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_engine_from_url("sqlite://", poolclass=StaticPool)
    create_tables(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def seed(session_factory):
    """Persist ORM rows: seed(row, row, ...)."""

    def _seed(*rows):
        with session_factory() as session:
            session.add_all(rows)
            session.commit()

    return _seed
