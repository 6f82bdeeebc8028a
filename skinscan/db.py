from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from skinscan.config import Settings
from skinscan.models import Base

logger = logging.getLogger(__name__)


engine: Engine | None = None
_session_factory: sessionmaker | None = None


class _SessionWrapper:
    """Callable proxy returning sessions from the current factory."""

    def __call__(self, *args: Any, **kwargs: Any) -> Session:
        if _session_factory is None:
            raise RuntimeError("Database not initialized")
        return _session_factory(*args, **kwargs)


SessionLocal = _SessionWrapper()


def _engine_options(database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        # sessions are used from worker threads via asyncio.to_thread
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_size=20, max_overflow=0, pool_recycle=1800)
    return options


def init_db(cfg: Settings) -> None:
    """Bind ``SessionLocal`` to ``cfg.database_url``.

    Calling it again replaces the engine; the previous pool is disposed.
    Records are read back after commit, so sessions keep loaded state.
    """
    global engine, _session_factory

    previous = engine
    engine = create_engine(cfg.database_url, **_engine_options(cfg.database_url))
    _session_factory = sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )
    if previous is not None:
        previous.dispose()
    logger.info("Database initialized (%s)", engine.dialect.name)

    if cfg.db_create_all:
        Base.metadata.create_all(engine)


def close_db() -> None:
    """Dispose the engine; ``SessionLocal`` raises until ``init_db`` runs again."""
    global engine, _session_factory
    if engine is not None:
        engine.dispose()
    engine = None
    _session_factory = None
