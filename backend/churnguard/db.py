"""
db.py
=====
Centralized database setup for the ChurnGuard trigger engine.

Responsibilities
---------------
- Build a SQLAlchemy Engine from the `DATABASE_URL` environment variable.
  * In Docker (compose), this is Postgres:  postgresql+psycopg://app:app@db:5432/app
  * Locally/tests, if `DATABASE_URL` is unset, we fall back to SQLite: sqlite:///./churnguard.db
- Provide a declarative `Base` for ORM models to inherit from.
- Create a `SessionLocal` factory to open/close DB sessions.
- Expose `get_db()` generator for FastAPI dependency injection (1 session per request).

The batch runner opens one session per worker through `SessionLocal`;
BATCH_MAX_WORKERS is capped at 5, well inside the default pool of 5 + 10 overflow.
"""

from __future__ import annotations

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import settings


# -----------------------------------------------------------------------------
# Create the SQLAlchemy engine
# -----------------------------------------------------------------------------
def _make_engine(url: str) -> Engine:
    """
    Build a SQLAlchemy Engine with sensible defaults for Postgres/SQLite.

    - pool_pre_ping=True to avoid stale connections (esp. with Postgres).
    - SQLite needs `check_same_thread=False` since batch workers run on threads.
    - Optional SQL echo via ECHO_SQL=true for debugging.
    """
    connect_args = {}

    if url.startswith("sqlite:"):
        connect_args["check_same_thread"] = False
        # concurrent batch workers write the execution log; wait instead of failing
        connect_args["timeout"] = 30

    return create_engine(url, echo=settings.echo_sql, pool_pre_ping=True, connect_args=connect_args)


engine: Engine = _make_engine(settings.database_url)


# -----------------------------------------------------------------------------
# Declarative Base (imported by models.py)
# -----------------------------------------------------------------------------
Base = declarative_base()


# -----------------------------------------------------------------------------
# Session factory and FastAPI dependency
# -----------------------------------------------------------------------------
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator:
    """
    FastAPI dependency that yields a DB session and ensures it's closed.

    Yields:
        sqlalchemy.orm.Session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
