"""Shared pytest fixtures: in-memory DB, session store, event stores."""

import sys
import os

# Add server root to path so imports work
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Config, LocationEvent, Session  # noqa: F401
from event_store import InMemoryLocationEventStore, SqlLocationEventStore


@pytest.fixture
def engine():
    """Create a fresh in-memory SQLite database for each test."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db(engine):
    """Provide a DB session, closed after each test."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def sql_store(db):
    return SqlLocationEventStore(db)


@pytest.fixture
def memory_store():
    return InMemoryLocationEventStore()


@pytest.fixture(params=["sql", "memory"])
def store(request, db):
    """Run a test against both LocationEventStore implementations."""
    if request.param == "sql":
        return SqlLocationEventStore(db)
    return InMemoryLocationEventStore()


@pytest.fixture
def principal():
    return {"sub": "rider_1", "device_id": "dev1"}
