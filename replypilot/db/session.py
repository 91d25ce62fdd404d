from __future__ import annotations

import logging
from collections.abc import Callable, Generator, Iterator
from contextlib import contextmanager
from functools import lru_cache
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from replypilot.core.config import get_settings
from replypilot.core.logs import log_event

logger = logging.getLogger("replypilot.db")

_AFTER_COMMIT_KEY = "replypilot.after_commit"


def _make_engine() -> Engine:
    settings = get_settings()
    return create_engine(settings.DATABASE_URL, pool_pre_ping=True)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return _make_engine()


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker:
    engine = get_engine()
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def get_session() -> Generator[Session, None, None]:
    SessionLocal = get_sessionmaker()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def session_scope(session_factory: sessionmaker | None = None) -> Iterator[Session]:
    """Open a session that commits on success and rolls back on any error."""
    factory = session_factory or get_sessionmaker()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def call_after_commit(session: Session, callback: Callable[[], Any]) -> None:
    """Run ``callback`` once the session's outermost transaction commits.

    Callbacks are dropped when that transaction rolls back instead, so work
    handed to other processes never refers to rows they cannot see yet.
    """
    callbacks = session.info.get(_AFTER_COMMIT_KEY)
    if callbacks is None:
        callbacks = session.info[_AFTER_COMMIT_KEY] = []
        event.listen(session, "after_commit", _run_after_commit)
        event.listen(session, "after_transaction_end", _discard_after_commit)
    callbacks.append(callback)


def _run_after_commit(session: Session) -> None:
    # Releasing a SAVEPOINT also fires after_commit.
    if session.in_nested_transaction():
        return
    callbacks = session.info.get(_AFTER_COMMIT_KEY) or []
    pending = list(callbacks)
    callbacks.clear()
    for callback in pending:
        try:
            callback()
        except Exception as e:  # noqa: BLE001
            log_event(
                logger,
                "db.after_commit.failed",
                level=logging.ERROR,
                callback=getattr(callback, "__name__", repr(callback)),
                error=str(e),
            )


def _discard_after_commit(session: Session, transaction: Any) -> None:
    if transaction.parent is None:
        session.info.get(_AFTER_COMMIT_KEY, []).clear()
