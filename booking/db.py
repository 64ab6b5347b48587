from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import DATABASE_URL, DB_ECHO

logger = logging.getLogger(__name__)


def _sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    # SQLite leaves foreign keys off unless asked, per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str = DATABASE_URL, **kwargs: Any) -> Engine:
    """
    Engine for url.
    On SQLite, connections may be shared between threads (FastAPI runs sync
    endpoints in a pool) and foreign keys are enforced.
    """
    kwargs.setdefault("echo", DB_ECHO)
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs.setdefault("connect_args", {"check_same_thread": False})

    eng = create_engine(url, **kwargs)
    if is_sqlite:
        event.listen(eng, "connect", _sqlite_foreign_keys)
    logger.debug(f"Database engine ready: {eng.url.render_as_string(hide_password=True)}")
    return eng


def make_session_factory(bind: Engine) -> sessionmaker:
    # rows stay readable after commit: the service serializes them outside the session
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = make_engine()
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass


def init_db(bind: Engine | None = None) -> None:
    """Create the missing tables."""
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def db_session(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """One unit of work: committed if the block succeeds, rolled back otherwise."""
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
