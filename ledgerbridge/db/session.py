"""SQLAlchemy engine and session management."""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from ledgerbridge.core.config import Settings, get_settings
from ledgerbridge.obs import instrument_sqlalchemy_engine


def build_engine(settings: Settings) -> Engine:
    """Create the engine for ``settings.database_url`` with tracing when enabled."""
    bound = create_engine(settings.database_url, pool_pre_ping=True)
    if settings.enable_tracing:
        instrument_sqlalchemy_engine(bound)
    return bound


engine = build_engine(get_settings())
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = ["SessionLocal", "build_engine", "engine", "session_scope"]
