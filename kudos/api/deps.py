"""
kudos.api.deps — FastAPI dependency injection
==============================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from kudos.config import KudosConfig, load_config
from kudos.database.engine import create_db_engine, init_db
from kudos.engine.cache import ConfigCache
from kudos.exceptions import (
    CommentNotFound,
    ConcurrentModification,
    CreditLimitExceeded,
    EconomyError,
    InsufficientFunds,
    InvalidRequest,
    LoanAlreadyActive,
    LoanNotActive,
    LoanNotFound,
    ReferralAlreadyRegistered,
    ReferralCodeNotFound,
    UnknownEventType,
    WalletArchived,
)
from kudos.services.ledger_service import LedgerStore
from kudos.services.notification_service import Notifier, build_notifier

_WEAK_SECRETS = frozenset({
    "kudos-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


# ---------------------------------------------------------------------------
# Shared singletons
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_engine() -> Engine:
    engine = create_db_engine()
    init_db(engine)
    return engine


@lru_cache(maxsize=1)
def get_config() -> KudosConfig:
    return load_config()


def get_cache(engine: Annotated[Engine, Depends(get_engine)]) -> ConfigCache:
    return _cache_for(engine)


@lru_cache(maxsize=4)
def _cache_for(engine: Engine) -> ConfigCache:
    cache = ConfigCache(engine)
    cache.load_all()
    return cache


def get_store(
    engine: Annotated[Engine, Depends(get_engine)],
    cache: Annotated[ConfigCache, Depends(get_cache)],
) -> LedgerStore:
    return LedgerStore(engine, cache)


def get_notifier(
    engine: Annotated[Engine, Depends(get_engine)],
    cfg: Annotated[KudosConfig, Depends(get_config)],
) -> Notifier:
    return build_notifier(cfg, engine)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
ERROR_STATUS: dict[type[EconomyError], int] = {
    InvalidRequest: status.HTTP_400_BAD_REQUEST,
    UnknownEventType: status.HTTP_400_BAD_REQUEST,
    InsufficientFunds: status.HTTP_402_PAYMENT_REQUIRED,
    LoanNotFound: status.HTTP_404_NOT_FOUND,
    CommentNotFound: status.HTTP_404_NOT_FOUND,
    ReferralCodeNotFound: status.HTTP_404_NOT_FOUND,
    LoanAlreadyActive: status.HTTP_409_CONFLICT,
    LoanNotActive: status.HTTP_409_CONFLICT,
    CreditLimitExceeded: status.HTTP_409_CONFLICT,
    WalletArchived: status.HTTP_409_CONFLICT,
    ReferralAlreadyRegistered: status.HTTP_409_CONFLICT,
    ConcurrentModification: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: EconomyError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


async def economy_error_handler(request: Request, exc: EconomyError) -> JSONResponse:
    """Render any :class:`EconomyError` as ``{"detail": {"error", "message"}}``."""
    return JSONResponse(
        status_code=status_for(exc),
        content={"detail": {"error": exc.code, "message": str(exc)}},
    )
