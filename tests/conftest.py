"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of kudos.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, event  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from kudos.database.engine import enable_sqlite_savepoints  # noqa: E402
from kudos.database.models import Base  # noqa: E402
from kudos.database.seed import seed_default_badges, seed_default_settings  # noqa: E402
from kudos.engine.cache import ConfigCache  # noqa: E402
from kudos.engine.locks import KeyedLocks  # noqa: E402
from kudos.services.ledger_service import LedgerStore  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Kudos tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in the scheduler).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for tests that run real threads.

    Each thread gets its own connection; a generous busy timeout lets
    writers queue behind SQLite's database-level lock.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'kudos.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _set_pragmas(dbapi_conn, _record):
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    enable_sqlite_savepoints(engine, begin="BEGIN IMMEDIATE")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


def _seeded_cache(engine: Engine) -> ConfigCache:
    seed_default_settings(engine)
    seed_default_badges(engine)
    cache = ConfigCache(engine)
    cache.load_all()
    return cache


@pytest.fixture
def cache(db_engine) -> ConfigCache:
    """A real ConfigCache over the seeded default settings and badges."""
    return _seeded_cache(db_engine)


@pytest.fixture
def store(db_engine, cache) -> LedgerStore:
    """LedgerStore with a private lock registry and fast retries."""
    return LedgerStore(db_engine, cache, locks=KeyedLocks(timeout=5), backoff=0.001)


@pytest.fixture
def file_cache(file_engine) -> ConfigCache:
    return _seeded_cache(file_engine)


@pytest.fixture
def file_store(file_engine, file_cache) -> LedgerStore:
    return LedgerStore(file_engine, file_cache, locks=KeyedLocks(timeout=30), backoff=0.001)


class RecordingNotifier:
    """Collects payloads instead of delivering them."""

    def __init__(self) -> None:
        self.sent = []

    def send(self, payload) -> None:
        self.sent.append(payload)

    def types(self) -> list[str]:
        return [p.type for p in self.sent]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin", is_admin: bool = True) -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from kudos.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def client(db_engine, cache, store, notifier):
    """FastAPI TestClient wired to the in-memory database.

    Dependencies are overridden so no DATABASE_URL or config.yaml is
    needed; the lifespan (sweeper) is not started.
    """
    from fastapi.testclient import TestClient

    from kudos.api import deps
    from kudos.api.main import app

    app.dependency_overrides[deps.get_engine] = lambda: db_engine
    app.dependency_overrides[deps.get_cache] = lambda: cache
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()
