"""Engine and session helpers for the database persistence mode."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings, get_settings
from .monitoring import instrument_engine

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def _engine_kwargs(settings: Settings, database_url: str) -> dict[str, object]:
    kwargs: dict[str, object] = {
        "echo": settings.database_echo,
        "pool_pre_ping": True,
    }
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow
    return kwargs


def get_engine() -> Engine:
    """Return the process-wide engine, building and instrumenting it on first use."""
    global _engine, _session_factory
    if _engine is None:
        settings = get_settings()
        database_url = settings.database_url
        if not database_url:
            raise RuntimeError("LEARNSYNC_DATABASE_URL must be configured before using the database.")
        _engine = create_engine(database_url, **_engine_kwargs(settings, database_url))
        instrument_engine(_engine)
        _session_factory = sessionmaker(
            bind=_engine,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info("Database engine ready (dialect=%s)", _engine.dialect.name)
    return _engine


def ensure_schema() -> None:
    """Create missing tables directly. Deployments use the Alembic migrations instead."""
    from .base import Base
    from . import models  # noqa: F401

    Base.metadata.create_all(get_engine())


@contextmanager
def session_scope(*, commit: bool = True) -> Generator[Session, None, None]:
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    session = _session_factory()
    try:
        yield session
        if commit:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = [
    "dispose_engine",
    "ensure_schema",
    "get_engine",
    "session_scope",
]
