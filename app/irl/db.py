from __future__ import annotations

import logging
from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, current_app, g
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

# Postgres pool sizing; SQLite keeps the SQLAlchemy defaults.
_PG_POOL = {"pool_recycle": 1800, "pool_size": 5, "max_overflow": 10, "pool_timeout": 30}


def engine_options(db_url: str) -> dict[str, object]:
    opts: dict[str, object] = {"pool_pre_ping": True}
    if db_url.startswith("postgres"):
        opts.update(_PG_POOL)
    return opts


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **engine_options(db_url))
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )
    logger.info("Database engine ready (dialect=%s)", engine.dialect.name)


def db_session() -> Session:
    """The session bound to the current request; created on first use."""
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        s = current_app.extensions["sqlalchemy_sessionmaker"]()
        g.db_session = s
    return s


def rollback_db_session() -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is not None:
        s.rollback()


def teardown_db_session(_exc: BaseException | None) -> None:
    # Anything not committed by the handler is discarded by close().
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Session outside a request (scripts, tests, the request audit log).
    Commits on success, rolls back on error.
    """
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def lock_for_update(s: Session, model, row_id: int) -> None:
    """
    Take a row lock held until the surrounding transaction ends.
    SQLite has no FOR UPDATE; it serializes writers instead.
    """
    s.execute(select(model.id).where(model.id == row_id).with_for_update())
