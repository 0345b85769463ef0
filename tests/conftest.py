"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# madina.api.deps validates JWT_SECRET at import time, so it has to be set
# before anything below pulls it in.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import BigInteger, Engine, create_engine  # noqa: E402
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from madina.config import MadinaConfig  # noqa: E402
from madina.database.models import Base, Role, User, Wallet, WalletStatus  # noqa: E402
from madina.database.seed import seed_default_settings  # noqa: E402

# ---------------------------------------------------------------------------
# SQLite stand-ins: JSONB renders as TEXT, BigInteger as INTEGER so that
# autoincrement primary keys keep working.
# ---------------------------------------------------------------------------
_sqlite_compat_registered = False


def _register_sqlite_compat():
    global _sqlite_compat_registered
    if _sqlite_compat_registered:
        return

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _sqlite_compat_registered = True


_register_sqlite_compat()

TEST_CONFIG = MadinaConfig(
    site_name="Madina Test",
    site_tagline="Testing",
    api_port=8000,
    session_hours=1,
    withdrawal_hold_hours=24,
    bootstrap_admin_email="boss@example.com",
)


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite with every table and the default settings.

    StaticPool shares one connection across threads, which the rate
    limiter's ``asyncio.to_thread`` calls need.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_default_settings(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
_counter = {"n": 0}


def make_user(
    engine: Engine,
    email: str | None = None,
    *,
    role: str = Role.USER,
    password: str = "password123",
) -> User:
    from madina.services.account_service import sign_up_with_role

    if email is None:
        _counter["n"] += 1
        email = f"user{_counter['n']}@example.com"
    return sign_up_with_role(engine, email, password, role)


def make_wallet(
    engine: Engine,
    user_id: int,
    *,
    balance: int = 0,
    status: str = WalletStatus.ACTIVE,
) -> Wallet:
    """Open a wallet holding *balance* cents."""
    from madina.services.wallet_service import create_wallet

    wallet = create_wallet(engine, user_id, initial_balance=balance)
    if status != WalletStatus.ACTIVE:
        with Session(engine) as session:
            session.get(Wallet, wallet.id).status = status
            session.commit()
        wallet.status = status
    return wallet


def balance_of(engine: Engine, user_id: int) -> int:
    with Session(engine) as session:
        return session.query(Wallet.balance).filter(Wallet.user_id == user_id).scalar()


def set_setting(engine: Engine, **values) -> None:
    """Overwrite system settings by field name, bypassing the audit trail."""
    from madina.services.settings_service import FIELD_KEYS, bulk_upsert

    bulk_upsert(engine, [{"key": FIELD_KEYS[k], "value": v} for k, v in values.items()])


def make_token(user: User) -> str:
    from madina.api.deps import create_access_token

    return create_access_token(user, hours=1)


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {make_token(user)}"}


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------
@pytest.fixture
def client(db_engine: Engine):
    """TestClient bound to the in-memory database and a fixed config."""
    from fastapi.testclient import TestClient

    from madina.api.deps import get_config, get_engine
    from madina.api.main import app
    from madina.api.rate_limit import configure_rate_limiter

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: TEST_CONFIG
    configure_rate_limiter(engine=db_engine)
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
