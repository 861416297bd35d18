"""
tests/conftest.py — SQLite Fixtures for the Progression Tables
===============================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import BigInteger, Engine, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from classquest.database.models import Base


# ---------------------------------------------------------------------------
# PostgreSQL-only column types rendered for SQLite
# ---------------------------------------------------------------------------
@compiles(JSONB, "sqlite")
def _jsonb_as_text(type_, compiler, **kw):
    # xp_settings, calculation and changes documents
    return "TEXT"


@compiles(BigInteger, "sqlite")
def _bigint_as_integer(type_, compiler, **kw):
    # SQLite only autoincrements INTEGER PRIMARY KEY
    return "INTEGER"


@pytest.fixture
def db_engine() -> Engine:
    """In-memory database with every progression table.

    One shared connection (StaticPool) so flows that open their own sessions,
    and ``run_db`` worker threads, see the same data.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Session whose work is rolled back when the test ends."""
    with Session(db_engine) as session:
        yield session
        session.rollback()
