"""
kudos.database.engine — Database Connection & Async Helper
===========================================================

PostgreSQL is the production backend: wallet rows are read ``FOR UPDATE``
and the single-active-loan rule relies on a partial unique index.  SQLite
is accepted for local development and the test suite; see
:func:`enable_sqlite_savepoints`.

SQLAlchemy + psycopg2 is synchronous.  FastAPI runs the sync routes on its
threadpool; the default-sweep scheduler hands its work to :func:`run_db`.

Usage::

    from kudos.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # DATABASE_URL from .env
    init_db(engine)                      # create_all + default settings/badges

    # Inside a coroutine:
    loans = await run_db(loan_service.mark_defaults, store)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session

from kudos.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Pool sizing for PostgreSQL, overridable through the environment
_POOL_DEFAULTS: dict[str, int] = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 10,
    "pool_recycle": 3600,
}


def _pool_settings() -> dict[str, int]:
    settings = {}
    for name, default in _POOL_DEFAULTS.items():
        raw = os.getenv(f"DB_{name.upper()}")
        settings[name] = int(raw) if raw else default
    return settings


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build the :class:`Engine` for *url* (default: ``DATABASE_URL``).

    PostgreSQL URLs get a pre-pinged pool sized by ``DB_POOL_SIZE``,
    ``DB_MAX_OVERFLOW``, ``DB_POOL_TIMEOUT`` and ``DB_POOL_RECYCLE``.
    SQLite URLs get a busy timeout and savepoint-safe transactions.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        enable_sqlite_savepoints(engine, begin="BEGIN IMMEDIATE")
        logger.warning(
            "Using SQLite at %s: row locks are unavailable, run a single process",
            engine.url.database,
        )
        return engine

    engine = create_engine(url, pool_pre_ping=True, **_pool_settings())
    logger.info("Database engine created → %s", engine.url.host)
    return engine


def enable_sqlite_savepoints(engine: Engine, begin: str = "BEGIN") -> None:
    """Let SQLAlchemy emit BEGIN so SAVEPOINT / RELEASE nest inside it.

    pysqlite defers BEGIN until the first DML statement.  A SAVEPOINT sent
    before that opens the outer transaction itself, and its RELEASE then
    commits everything.  Duplicate detection in the ledger runs inside
    savepoints, so SQLite engines must take over transaction control.
    ``BEGIN IMMEDIATE`` makes concurrent writers queue on the busy timeout.
    """

    @event.listens_for(engine, "connect")
    def _driver_autocommit(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql(begin)


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create missing tables, then seed default settings and badges.

    Alembic owns the production schema (``alembic upgrade head``);
    ``create_all`` only fills gaps on fresh dev/test databases.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from kudos.database.seed import seed_default_badges, seed_default_settings

    seed_default_settings(engine)
    seed_default_badges(engine)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session`; commit on success, roll back on error.

    For writes that do not touch balances (notification outbox, seeding).
    Anything that moves currency goes through ``LedgerStore.unit_of_work``.
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await a synchronous database call without blocking the event loop."""
    return await asyncio.to_thread(func, *args, **kwargs)
