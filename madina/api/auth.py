"""
madina.api.auth — Email/password sign up, sign in, JWT issuance
===============================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from madina.api.deps import (
    create_access_token,
    get_config,
    get_current_user,
    get_engine,
    service_errors,
)
from madina.config import MadinaConfig
from madina.database.models import Role
from madina.services import account_service
from madina.services.account_service import normalize_email, user_to_dict

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class Credentials(BaseModel):
    email: str
    password: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str


def _token_response(user, cfg: MadinaConfig) -> dict:
    return {
        "access_token": create_access_token(user, hours=cfg.session_hours),
        "token_type": "bearer",
        "user": user_to_dict(user),
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/signup", status_code=201)
def signup(
    body: Credentials,
    cfg: MadinaConfig = Depends(get_config),
    engine=Depends(get_engine),
):
    """Create an account and sign it in.

    The configured bootstrap email is given the admin role.
    """
    role = Role.USER
    if cfg.bootstrap_admin_email and normalize_email(body.email) == cfg.bootstrap_admin_email:
        role = Role.ADMIN
    with service_errors():
        user = account_service.sign_up_with_role(engine, body.email, body.password, role)
    if role == Role.ADMIN:
        logger.warning("Bootstrap admin account created: %s", user.email)
    return _token_response(user, cfg)


@router.post("/login")
def login(
    body: Credentials,
    cfg: MadinaConfig = Depends(get_config),
    engine=Depends(get_engine),
):
    try:
        user = account_service.sign_in(engine, body.email, body.password)
    except ValueError as exc:
        raise HTTPException(401, str(exc))
    return _token_response(user, cfg)


@router.get("/me")
def me(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    """Return the signed-in user as stored now."""
    found = account_service.get_user_by_id(engine, user["id"])
    if found is None:
        raise HTTPException(404, "User not found")
    return user_to_dict(found)


@router.post("/change-password")
def change_password(
    body: PasswordChange,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    with service_errors():
        account_service.change_password(
            engine, user["id"], current=body.current_password, new=body.new_password,
        )
    return {"status": "ok"}
