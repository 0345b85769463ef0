"""
madina.api.rate_limit — Admin Mutation Throttle
================================================

Every admin gets a budget of mutating calls (POST/PUT/PATCH/DELETE) per
sliding window, counted per JWT ``sub``.  Hits are rows in
``admin_rate_limit_events``; several API workers therefore share one
budget, and it survives restarts.

The budget defaults to 30 calls per 60 s and can be tuned with the
``ADMIN_RATE_LIMIT`` and ``ADMIN_RATE_WINDOW`` environment variables.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from madina.api.deps import get_current_admin
from madina.constants import as_utc, utcnow
from madina.database.models import AdminRateLimitEvent

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 30
DEFAULT_WINDOW_SECONDS = 60

_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True, slots=True)
class Budget:
    allowed: bool
    remaining: int
    reset: int  # seconds until a slot frees up
    limit: int

    def as_dict(self) -> dict:
        return {"remaining": self.remaining, "reset": self.reset, "limit": self.limit}


class AdminRateLimiter:
    """Sliding window over ``admin_rate_limit_events``."""

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        *,
        engine: Engine,
    ) -> None:
        if max_requests < 1 or window_seconds < 1:
            raise ValueError("Rate limit and window must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine

    # -- internals ---------------------------------------------------------

    def _window_hits(self, session: Session, admin_id: str, now: datetime) -> list[datetime]:
        """Drop expired hits for *admin_id* and return the live ones, oldest first."""
        session.execute(
            delete(AdminRateLimitEvent).where(
                AdminRateLimitEvent.admin_id == admin_id,
                AdminRateLimitEvent.timestamp < now - timedelta(seconds=self.window_seconds),
            )
        )
        return list(session.scalars(
            select(AdminRateLimitEvent.timestamp)
            .where(AdminRateLimitEvent.admin_id == admin_id)
            .order_by(AdminRateLimitEvent.timestamp.asc())
        ))

    def _budget(self, hits: list[datetime], now: datetime) -> Budget:
        if len(hits) >= self.max_requests:
            frees_at = as_utc(hits[0]) + timedelta(seconds=self.window_seconds)
            wait = int((frees_at - now).total_seconds()) + 1
            return Budget(False, 0, max(1, wait), self.max_requests)
        return Budget(True, self.max_requests - len(hits), self.window_seconds, self.max_requests)

    # -- public ------------------------------------------------------------

    def check(self, admin_id: str) -> tuple[bool, dict]:
        """Peek at the budget without spending it."""
        now = utcnow()
        with Session(self.engine) as session:
            budget = self._budget(self._window_hits(session, admin_id, now), now)
            session.commit()
        return budget.allowed, budget.as_dict()

    def record(self, admin_id: str) -> dict:
        """Spend one slot unconditionally."""
        now = utcnow()
        with Session(self.engine) as session:
            hits = self._window_hits(session, admin_id, now)
            session.add(AdminRateLimitEvent(admin_id=admin_id, timestamp=now))
            session.commit()
        return {
            "remaining": max(0, self.max_requests - len(hits) - 1),
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def hit(self, admin_id: str) -> Budget:
        """Spend one slot if the window has room, in a single transaction."""
        now = utcnow()
        with Session(self.engine) as session:
            budget = self._budget(self._window_hits(session, admin_id, now), now)
            if budget.allowed:
                session.add(AdminRateLimitEvent(admin_id=admin_id, timestamp=now))
                budget = Budget(True, budget.remaining - 1, budget.reset, budget.limit)
            session.commit()
        return budget

    def reset(self, admin_id: str | None = None) -> None:
        """Forget the hits of one admin, or of everybody."""
        stmt = delete(AdminRateLimitEvent)
        if admin_id is not None:
            stmt = stmt.where(AdminRateLimitEvent.admin_id == admin_id)
        with Session(self.engine) as session:
            session.execute(stmt)
            session.commit()


# ---------------------------------------------------------------------------
# Process-wide limiter, installed by the app lifespan (or a test fixture)
# ---------------------------------------------------------------------------
_limiter: AdminRateLimiter | None = None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %d", name, raw, default)
        return default


def get_rate_limiter() -> AdminRateLimiter:
    if _limiter is None:
        raise RuntimeError("Rate limiter not configured; call configure_rate_limiter() first")
    return _limiter


def configure_rate_limiter(
    *,
    engine: Engine,
    max_requests: int | None = None,
    window_seconds: int | None = None,
) -> AdminRateLimiter:
    global _limiter
    _limiter = AdminRateLimiter(
        max_requests if max_requests is not None else _env_int("ADMIN_RATE_LIMIT", DEFAULT_RATE_LIMIT),
        window_seconds if window_seconds is not None else _env_int("ADMIN_RATE_WINDOW", DEFAULT_WINDOW_SECONDS),
        engine=engine,
    )
    return _limiter


# ---------------------------------------------------------------------------
# Dependency used by every admin route
# ---------------------------------------------------------------------------
async def rate_limited_admin(
    request: Request,
    response: Response,
    admin: dict = Depends(get_current_admin),
) -> dict:
    """Admin check followed by the mutation throttle; reads are free."""
    if request.method in _SAFE_METHODS:
        return admin

    limiter = get_rate_limiter()
    budget = await asyncio.to_thread(limiter.hit, admin["sub"])
    if not budget.allowed:
        logger.warning(
            "Admin %s hit the mutation limit (%d per %ds)",
            admin["sub"], limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": (
                    f"Too many admin changes: at most {limiter.max_requests} "
                    f"every {limiter.window_seconds} seconds."
                ),
                "retry_after": budget.reset,
            },
            headers={"Retry-After": str(budget.reset)},
        )
    response.headers["X-RateLimit-Limit"] = str(budget.limit)
    response.headers["X-RateLimit-Remaining"] = str(budget.remaining)
    return admin
