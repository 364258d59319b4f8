"""Pytest configuration and shared fixtures."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from netcomply.compliance import EvaluationContext, ExemptionRegistry
from netcomply.db.base import Base
from netcomply.db import models  # noqa: F401


@pytest.fixture
def now():
    """Fixed evaluation instant."""
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def context(now):
    """Evaluation context pinned to the fixed instant."""
    return EvaluationContext(now=now)


@pytest.fixture
def exemptions():
    """Empty exemption registry."""
    return ExemptionRegistry()


@pytest.fixture
def sample_config():
    """Sample configuration dictionary."""
    return {
        "runner": {
            "max_workers": 8,
            "evaluation_timeout": 15,
        },
        "sandbox": {
            "node_executable": "/usr/local/bin/node",
            "timeout": 10,
        },
        "logging": {
            "level": "DEBUG",
        },
    }


@pytest.fixture
def db_engine():
    """In-memory database shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()
