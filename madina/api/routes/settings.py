"""
madina.api.routes.settings — System settings (public view + admin edit)
=======================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from madina.api.deps import get_config, get_current_admin, get_engine, service_errors
from madina.api.rate_limit import rate_limited_admin
from madina.config import MadinaConfig
from madina.constants import format_currency
from madina.services import settings_service

router = APIRouter(tags=["settings"])


class SettingsUpdate(BaseModel):
    p2p_fee_percentage: float | None = Field(default=None, ge=0, le=100)
    ticket_fee_percentage: float | None = Field(default=None, ge=0, le=100)
    invoice_fee_percentage: float | None = Field(default=None, ge=0, le=100)
    withdrawal_fee_percentage: float | None = Field(default=None, ge=0, le=100)
    maintenance_mode: bool | None = None
    maintenance_message: str | None = None
    max_balance_for_deletion: int | None = Field(default=None, ge=0)
    currency: str | None = None
    hero_headline: str | None = None
    hero_subheadline: str | None = None
    hero_background_image_url: str | None = None


@router.get("/settings/public")
def public_settings(cfg: MadinaConfig = Depends(get_config), engine=Depends(get_engine)):
    """What the landing page and maintenance banner need, no auth."""
    s = settings_service.get_system_settings(engine)
    return {
        "site_name": cfg.site_name,
        "site_tagline": cfg.site_tagline,
        "maintenance_mode": s.maintenance_mode,
        "maintenance_message": s.maintenance_message,
        "currency": s.currency,
        "hero_headline": s.hero_headline,
        "hero_subheadline": s.hero_subheadline,
        "hero_background_image_url": s.hero_background_image_url,
        "fees": {
            "p2p": s.p2p_fee_percentage,
            "ticket": s.ticket_fee_percentage,
            "invoice": s.invoice_fee_percentage,
            "withdrawal": s.withdrawal_fee_percentage,
        },
    }


@router.get("/admin/settings")
def get_settings(admin: dict = Depends(get_current_admin), engine=Depends(get_engine)):
    s = settings_service.get_system_settings(engine)
    data = s.to_dict()
    data["max_balance_for_deletion_display"] = format_currency(
        s.max_balance_for_deletion, s.currency
    )
    return data


@router.put("/admin/settings")
def update_settings(
    body: SettingsUpdate,
    admin: dict = Depends(rate_limited_admin),
    engine=Depends(get_engine),
):
    with service_errors():
        s = settings_service.update_system_settings(
            engine, body.model_dump(exclude_none=True), actor_id=admin["id"],
        )
    return s.to_dict()
