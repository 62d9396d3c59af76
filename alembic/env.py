"""Alembic environment for the Kudos ledger/credit schema.

The database URL comes from ``DATABASE_URL`` (falling back to
``sqlalchemy.url`` in alembic.ini) and the engine is built by
:func:`kudos.database.engine.create_db_engine`, so migrations see the same
pool and SQLite transaction handling as the service.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from dotenv import load_dotenv

from alembic import context

load_dotenv()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from kudos.database.engine import create_db_engine  # noqa: E402
from kudos.database.models import Base  # noqa: E402

target_metadata = Base.metadata


def _database_url() -> str | None:
    return os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting (``alembic upgrade --sql``)."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        compare_type=True,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_db_engine(_database_url())
    try:
        with engine.connect() as connection:
            # SQLite cannot ALTER constraints in place; batch mode rebuilds tables
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                compare_type=True,
                render_as_batch=connection.dialect.name == "sqlite",
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
