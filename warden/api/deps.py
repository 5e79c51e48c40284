"""
warden.api.deps — FastAPI dependency injection
================================================
"""

from __future__ import annotations

import os
from datetime import datetime
from functools import lru_cache
from typing import Annotated
from zoneinfo import ZoneInfo

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from warden.config import GameTables, WardenConfig, load_config
from warden.database.engine import create_db_engine
from warden.engine.events import LedgerEventHub
from warden.errors import (
    AlreadyClaimed,
    ConcurrencyConflict,
    GuardianLocked,
    InsufficientEnergy,
    ModifyLimitExceeded,
    NotCompleted,
    NotFoundError,
    StoreTimeout,
    ValidationError,
    WardenError,
)

_WEAK_SECRETS = frozenset({
    "warden-dev-secret-change-me",
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


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> WardenConfig:
    return load_config(os.getenv("WARDEN_CONFIG", "config.yaml"))


def get_tables(cfg: Annotated[WardenConfig, Depends(get_config)]) -> GameTables:
    return cfg.game


@lru_cache(maxsize=1)
def get_hub() -> LedgerEventHub:
    """Process-wide hub; notifiers subscribe to it at startup."""
    return LedgerEventHub()


def local_now(cfg: WardenConfig) -> datetime:
    """Current time in the deployment's zone; "today" is derived from it."""
    return datetime.now(ZoneInfo(cfg.timezone))


def _decode(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not payload.get("sub"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return payload


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return the member payload. Raises 401 if invalid."""
    return _decode(authorization)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin user payload. Raises 401/403."""
    payload = _decode(authorization)
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


# ---------------------------------------------------------------------------
# Domain error → HTTP
# ---------------------------------------------------------------------------
_STATUS_BY_ERROR: tuple[tuple[type[WardenError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (GuardianLocked, status.HTTP_403_FORBIDDEN),
    (ModifyLimitExceeded, status.HTTP_409_CONFLICT),
    (InsufficientEnergy, status.HTTP_409_CONFLICT),
    (AlreadyClaimed, status.HTTP_409_CONFLICT),
    (NotCompleted, status.HTTP_409_CONFLICT),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT),
    (StoreTimeout, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: WardenError) -> HTTPException:
    """Translate a domain error; the message reaches the client verbatim."""
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for cls, mapped in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            code = mapped
            break
    detail: dict = {"code": exc.code, "message": exc.message}
    if isinstance(exc, ValidationError):
        detail["reason"] = exc.reason
    if isinstance(exc, StoreTimeout):
        detail["message"] = "The store did not respond in time, try again"
    return HTTPException(code, detail)
