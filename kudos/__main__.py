"""
kudos.__main__ — Entry point for ``python -m kudos``
=====================================================

Wiring:
1. Load .env (secrets, DATABASE_URL).
2. Load config.yaml (service name, port, sweep cadence, notifier).
3. Create the SQLAlchemy engine, ensure tables exist, seed defaults.
4. Serve the FastAPI app with uvicorn (the app's lifespan warms the
   settings cache and starts the default sweeper).

Run with::

    python -m kudos
"""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv

from kudos.config import load_config
from kudos.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("kudos")


def main() -> None:
    """Bootstrap the database and serve the API."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config()
    logger.info("Config loaded — service: %s", cfg.service_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)
    engine.dispose()

    # 4. API (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Kudos API on port %d…", cfg.api_port)
    uvicorn.run("kudos.api.main:app", host="0.0.0.0", port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
