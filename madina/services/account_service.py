"""
madina.services.account_service — Sign up, sign in, passwords
==============================================================

Passwords are stored as ``<salt-hex>$<pbkdf2-sha256-hex>`` with a random
16-byte salt per password.  Emails are stored lower-cased and compared
case-insensitively.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from madina.constants import (
    EMAIL_REGEX,
    PASSWORD_MAX_LENGTH,
    PASSWORD_MIN_LENGTH,
    iso,
)
from madina.database.models import Role, User
from madina.engine.rbac import is_valid_role

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100_000


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------
def hash_password(password: str) -> str:
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return f"{salt.hex()}${dk.hex()}"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Constant-time check of *plain_password* against a stored hash."""
    try:
        salt_hex, hash_hex = hashed_password.split("$", 1)
        salt = bytes.fromhex(salt_hex)
        stored = bytes.fromhex(hash_hex)
    except ValueError:
        return False
    dk = hashlib.pbkdf2_hmac(
        "sha256", plain_password.encode("utf-8"), salt, PBKDF2_ITERATIONS
    )
    return hmac.compare_digest(dk, stored)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _validate_credentials(email: str, password: str) -> None:
    if not EMAIL_REGEX.match(email):
        raise ValueError("Invalid email format")
    if not (PASSWORD_MIN_LENGTH <= len(password or "") <= PASSWORD_MAX_LENGTH):
        raise ValueError(
            f"Password must be {PASSWORD_MIN_LENGTH} to {PASSWORD_MAX_LENGTH} characters"
        )


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "created_at": iso(user.created_at),
    }


def get_user_by_email(session: Session, email: str) -> User | None:
    return session.scalar(
        select(User).where(func.lower(User.email) == normalize_email(email))
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def sign_up_with_role(engine, email: str, password: str, role: str = Role.USER) -> User:
    """Create an account with an explicit *role*.

    Raises
    ------
    ValueError
        Invalid email, bad password length, unknown role, or email taken.
    """
    email = normalize_email(email)
    _validate_credentials(email, password)
    if not is_valid_role(role):
        raise ValueError(f"Invalid role: {role}")

    with Session(engine, expire_on_commit=False) as session:
        if get_user_by_email(session, email) is not None:
            raise ValueError("User with this email already exists")
        user = User(email=email, password_hash=hash_password(password), role=role)
        session.add(user)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ValueError("User with this email already exists") from exc
        session.refresh(user)
        session.expunge(user)

    logger.info("Account created: user=%s role=%s", user.id, role)
    return user


def sign_up(engine, email: str, password: str) -> User:
    return sign_up_with_role(engine, email, password, Role.USER)


def sign_in(engine, email: str, password: str) -> User:
    """Return the user for valid credentials.

    Unknown email and wrong password produce the same message.
    """
    if not email or not password:
        raise ValueError("Email and password are required")
    with Session(engine, expire_on_commit=False) as session:
        user = get_user_by_email(session, email)
        if user is None or not verify_password(password, user.password_hash):
            raise ValueError("Invalid email or password")
        session.expunge(user)
        return user


def get_user_by_id(engine, user_id: int) -> User | None:
    with Session(engine, expire_on_commit=False) as session:
        user = session.get(User, user_id)
        if user is not None:
            session.expunge(user)
        return user


def change_password(engine, user_id: int, *, current: str, new: str) -> None:
    if not (PASSWORD_MIN_LENGTH <= len(new or "") <= PASSWORD_MAX_LENGTH):
        raise ValueError(
            f"Password must be {PASSWORD_MIN_LENGTH} to {PASSWORD_MAX_LENGTH} characters"
        )
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise ValueError("User not found")
        if not verify_password(current, user.password_hash):
            raise ValueError("Current password is incorrect")
        user.password_hash = hash_password(new)
        session.commit()
