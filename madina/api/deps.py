"""
madina.api.deps — FastAPI dependency injection
==============================================
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from madina.config import MadinaConfig, load_config
from madina.database.engine import create_db_engine
from madina.database.models import User
from madina.engine import rbac
from madina.services.settings_service import load_system_settings
from madina.services.wallet_service import WalletSuspendedError

_WEAK_SECRETS = frozenset({
    "madina-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"

_MUTATION_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


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
def get_config() -> MadinaConfig:
    return load_config()


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
def create_access_token(user: User, *, hours: int) -> str:
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "exp": datetime.now(UTC) + timedelta(hours=hours),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def _decode_bearer(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


def _load_user(engine: Engine, payload: dict) -> dict:
    """Re-read the token's user so role changes and deletions apply at once."""
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status.HTTP_401_UNAUTHORIZED, "User no longer exists")
        return {"sub": str(user.id), "id": user.id, "email": user.email, "role": user.role}


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------
def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    engine: Engine = Depends(get_engine),
) -> dict:
    """Validate the bearer JWT and return ``{"id", "email", "role", "sub"}``."""
    return _load_user(engine, _decode_bearer(authorization))


def get_optional_user(
    authorization: Annotated[str | None, Header()] = None,
    engine: Engine = Depends(get_engine),
) -> dict | None:
    if not authorization:
        return None
    return _load_user(engine, _decode_bearer(authorization))


def require(check: Callable[[str | None], bool], detail: str = "Forbidden"):
    """Dependency factory: the current user's role must pass *check*."""

    def dependency(user: dict = Depends(get_current_user)) -> dict:
        if not check(user["role"]):
            raise HTTPException(status.HTTP_403_FORBIDDEN, detail)
        return user

    return dependency


get_current_admin = require(rbac.is_admin, "Not admin")
get_kyc_reviewer = require(rbac.can_review_kyc, "Not allowed to review KYC")
get_finance_user = require(rbac.can_handle_finance, "Not allowed to handle payouts")
get_news_author = require(rbac.can_create_posts, "Not allowed to create posts")


# ---------------------------------------------------------------------------
# Maintenance mode
# ---------------------------------------------------------------------------
def maintenance_guard(
    request: Request,
    user: dict | None = Depends(get_optional_user),
    engine: Engine = Depends(get_engine),
) -> None:
    """Reject non-admin mutations with 503 while maintenance mode is on."""
    if request.method not in _MUTATION_METHODS:
        return
    if user is not None and rbac.is_admin(user["role"]):
        return
    with Session(engine) as session:
        settings = load_system_settings(session)
    if settings.maintenance_mode:
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "maintenance", "message": settings.maintenance_message},
        )


# ---------------------------------------------------------------------------
# Service error translation
# ---------------------------------------------------------------------------
@contextmanager
def service_errors() -> Iterator[None]:
    """Map service exceptions to HTTP errors.

    ``WalletSuspendedError`` → 403 with code ``suspended``,
    ``PermissionError`` → 403, ``ValueError`` → 400.
    """
    try:
        yield
    except WalletSuspendedError as exc:
        raise HTTPException(
            status.HTTP_403_FORBIDDEN, detail={"code": exc.code, "message": str(exc)},
        ) from exc
    except PermissionError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc)) from exc
