"""Database connectivity and connection helpers for claimflow.

Environment Variables:
    CLAIMFLOW_DATABASE_URL: Application connection string
    CLAIMFLOW_DATABASE_ADMIN_URL: Admin connection string (migrations only);
        falls back to CLAIMFLOW_DATABASE_URL when unset

PostgreSQL is the production store. SQLite URLs are accepted for local runs
and tests; the schema and queries are written to work on both.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy import create_engine

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

CLAIMFLOW_DATABASE_URL_ENV = "CLAIMFLOW_DATABASE_URL"
CLAIMFLOW_DATABASE_ADMIN_URL_ENV = "CLAIMFLOW_DATABASE_ADMIN_URL"

_app_engine: Engine | None = None
_admin_engine: Engine | None = None


class DatabaseConfigError(Exception):
    """Raised when database configuration is missing or invalid."""

    pass


def is_database_configured() -> bool:
    """Return True if CLAIMFLOW_DATABASE_URL is set."""
    return bool(os.environ.get(CLAIMFLOW_DATABASE_URL_ENV))


def _normalize_url(url: str) -> str:
    """Rewrite the legacy ``postgres://`` scheme that SQLAlchemy rejects."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def get_database_url(admin: bool = False) -> str:
    """Get the database URL from environment.

    Args:
        admin: If True, prefer the admin URL.

    Raises:
        DatabaseConfigError: If no URL is configured.
    """
    url = None
    if admin:
        url = os.environ.get(CLAIMFLOW_DATABASE_ADMIN_URL_ENV)
    url = url or os.environ.get(CLAIMFLOW_DATABASE_URL_ENV)

    if not url:
        raise DatabaseConfigError(
            f"Database URL not configured. Set {CLAIMFLOW_DATABASE_URL_ENV} environment variable."
        )

    return _normalize_url(url)


def make_engine(url: str) -> Engine:
    """Create an engine with pool settings suited to the dialect."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)
    return create_engine(url, pool_size=5, max_overflow=10, pool_pre_ping=True, echo=False)


def get_app_engine() -> Engine:
    """Get or create the application database engine.

    Raises:
        DatabaseConfigError: If CLAIMFLOW_DATABASE_URL is not set.
    """
    global _app_engine

    if _app_engine is None:
        _app_engine = make_engine(get_database_url(admin=False))
        logger.info("Created application database engine")

    return _app_engine


def get_admin_engine() -> Engine:
    """Get or create the admin (migration) database engine."""
    global _admin_engine

    if _admin_engine is None:
        _admin_engine = make_engine(get_database_url(admin=True))
        logger.info("Created admin database engine")

    return _admin_engine


@contextmanager
def begin_app_conn() -> Generator[Connection, None, None]:
    """Yield an application connection inside a transaction.

    Commits on success, rolls back on any exception.
    """
    engine = get_app_engine()
    with engine.connect() as conn, conn.begin():
        yield conn


def reset_engines() -> None:
    """Dispose global engine instances (used by tests)."""
    global _app_engine, _admin_engine
    if _app_engine is not None:
        _app_engine.dispose()
        _app_engine = None
    if _admin_engine is not None:
        _admin_engine.dispose()
        _admin_engine = None
