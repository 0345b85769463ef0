"""
madina.database.engine — Engine Factory, Schema Bootstrap & Thread Bridge
==========================================================================

The portal talks to PostgreSQL through synchronous SQLAlchemy sessions.
Every service function takes the :class:`Engine` as its first argument and
opens its own short-lived session, so this module only has to build the
engine once and hand it out.

Async route handlers (file uploads) must not block the loop on a query;
they go through :func:`run_db`.  Plain ``def`` handlers already run on
FastAPI's worker threads.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine

from madina.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Pool sizing, overridable per deployment through the environment.
_POOL_DEFAULTS = {
    "DB_POOL_SIZE": 5,
    "DB_MAX_OVERFLOW": 10,
    "DB_POOL_TIMEOUT": 10,
    "DB_POOL_RECYCLE": 1800,
}


def _pool_options() -> dict[str, Any]:
    opts = {}
    for env_key, default in _POOL_DEFAULTS.items():
        raw = os.getenv(env_key)
        try:
            opts[env_key] = int(raw) if raw else default
        except ValueError:
            logger.warning("Ignoring non-integer %s=%r, using %d", env_key, raw, default)
            opts[env_key] = default
    return {
        "pool_size": opts["DB_POOL_SIZE"],
        "max_overflow": opts["DB_MAX_OVERFLOW"],
        "pool_timeout": opts["DB_POOL_TIMEOUT"],
        "pool_recycle": opts["DB_POOL_RECYCLE"],
    }


def create_db_engine(url: str | None = None) -> Engine:
    """Build the portal's engine.

    Parameters
    ----------
    url:
        Database URL.  Falls back to ``$DATABASE_URL``.

    Raises
    ------
    RuntimeError
        When no URL is available.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set. Add a PostgreSQL URL to .env "
            "(see .env.example)."
        )

    if url.startswith("sqlite"):
        # Local experiments only; SQLite has no server-side pool.
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(url, pool_pre_ping=True, **_pool_options())

    logger.info("Database engine ready (%s on %s)", engine.dialect.name, engine.url.host or "local")
    return engine


def init_db(engine: Engine) -> None:
    """Create missing tables and insert default settings.

    Alembic owns the schema in production; this keeps a fresh dev database
    usable without running migrations first.
    """
    Base.metadata.create_all(engine)

    from madina.database.seed import seed_default_settings

    inserted = seed_default_settings(engine)
    logger.info("Schema checked, %d default setting(s) inserted", inserted)


async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await a blocking service call on the default thread pool."""
    return await asyncio.to_thread(func, *args, **kwargs)
