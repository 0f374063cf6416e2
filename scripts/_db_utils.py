from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from app.irl.db import engine_options


def create_script_engine(db_url: str) -> Engine:
    """Same pool settings as the web app, without needing a Flask app."""
    return create_engine(db_url, **engine_options(db_url))


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    engine = create_script_engine(db_url)
    s = Session(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
