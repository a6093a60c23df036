"""Session factories and write helpers.

Services receive a sessionmaker and open one short-lived session per
operation (``with session_factory() as db``). Writes go through
``transaction(db)`` so a failure never leaves a half-applied change.

Statements that must behave the same on PostgreSQL (production) and SQLite
(tests) are built here so services stay dialect-agnostic.
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, sessionmaker

from fortunia.db.engine import get_engine

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Create a session factory bound to engine (the default engine if None).

    expire_on_commit is off so rows read inside a transaction stay usable
    after the session is closed.
    """
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


_session_factory: sessionmaker[Session] | None = None


def get_session_factory() -> sessionmaker[Session]:
    """Process-wide session factory, created on first use."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory()
    return _session_factory


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Commit on success, roll back and re-raise on any exception."""
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def insert_ignoring_conflict(
    db: Session, model: Any, index_elements: list[Any], **values: Any
) -> None:
    """INSERT ... ON CONFLICT DO NOTHING for the session's dialect.

    Raises:
        ArgumentError: The bound database is neither PostgreSQL nor SQLite.
    """
    dialect = db.get_bind().dialect.name
    insert = _INSERT_BY_DIALECT.get(dialect)
    if insert is None:
        raise ArgumentError(f"Unsupported database dialect: {dialect}")
    db.execute(insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements))
