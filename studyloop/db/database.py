from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from loguru import logger
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from studyloop.db.models import Base

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _engine_options(url: str, timeout_seconds: float) -> dict[str, Any]:
    """Per-dialect options that bound how long a single call may block."""
    if url.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout_seconds, "check_same_thread": False}}
    options: dict[str, Any] = {"pool_timeout": timeout_seconds}
    if url.startswith("postgresql"):
        options["connect_args"] = {
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
        }
    return options


def create_db_engine(url: str | None = None, timeout_seconds: float | None = None) -> Engine:
    """Create an engine for the configured (or given) database."""
    settings = get_settings()
    url = url or settings.database_url
    timeout = timeout_seconds if timeout_seconds is not None else settings.db_timeout_seconds
    return create_engine(
        url,
        echo=settings.log_level == "DEBUG",
        pool_pre_ping=True,
        **_engine_options(url, timeout),
    )


def get_engine() -> Engine:
    """Get the shared database engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autocommit=False, autoflush=False, expire_on_commit=False)
    return _session_factory


def init_db(engine: Engine | None = None) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Database tables initialized")


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency for database sessions."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()
