"""
madina.api.routes.dashboard — Personal dashboard
================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from madina.api.deps import get_current_user, get_engine
from madina.services.dashboard_service import get_dashboard_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("")
def dashboard(user: dict = Depends(get_current_user), engine=Depends(get_engine)):
    return get_dashboard_stats(engine, user["id"])
