"""Database engine and session factory."""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from netcomply.common.settings import get_settings

SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine: Optional[Engine] = None


def init_engine(database_url: Optional[str] = None) -> Engine:
    """Create the engine and bind the session factory to it."""
    global _engine
    _engine = create_engine(database_url or get_settings().database_url, pool_pre_ping=True)
    SessionLocal.configure(bind=_engine)
    return _engine


def get_session() -> Session:
    """Open a session, creating the engine on first use."""
    if _engine is None:
        init_engine()
    return SessionLocal()
