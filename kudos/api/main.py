"""
kudos.api.main — FastAPI application entry point
=================================================

Run with::

    uvicorn kudos.api.main:app --reload --port 8000

or ``python -m kudos`` (reads the port from config.yaml).
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from kudos.api.deps import (  # noqa: E402
    economy_error_handler,
    get_cache,
    get_config,
    get_engine,
    get_notifier,
    get_store,
)
from kudos.api.routes.admin import router as admin_router  # noqa: E402
from kudos.api.routes.credit import router as credit_router  # noqa: E402
from kudos.api.routes.economy import router as economy_router  # noqa: E402
from kudos.api.routes.social import router as social_router  # noqa: E402
from kudos.exceptions import EconomyError  # noqa: E402
from kudos.services.scheduler import DefaultSweeper  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from ``CORS_ALLOW_ORIGINS`` (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the engine and cache, run the sweeper."""
    cfg = get_config()
    engine = get_engine()
    cache = get_cache(engine)
    store = get_store(engine, cache)

    sweeper = DefaultSweeper(
        store,
        interval=cfg.default_sweep_interval,
        notifier=get_notifier(engine, cfg),
    )
    sweeper.start()
    app.state.sweeper = sweeper
    logger.info("%s API started — engine ready (%s)", cfg.service_name, engine.url.database)
    yield
    sweeper.stop()
    logger.info("%s API shutting down", cfg.service_name)


app = FastAPI(
    title="Kudos Economy API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(EconomyError, economy_error_handler)

# Mount routers
app.include_router(economy_router, prefix="/api")
app.include_router(credit_router, prefix="/api")
app.include_router(social_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health(request: Request):
    """Liveness plus the default sweeper state once the lifespan has run."""
    body: dict = {"status": "ok"}
    sweeper: DefaultSweeper | None = getattr(request.app.state, "sweeper", None)
    if sweeper is not None:
        body["default_sweep"] = {
            "running": sweeper.running,
            "interval_seconds": sweeper.interval,
            "runs": sweeper.runs,
        }
    return body
