"""
madina.database.seed — Default Settings Seeder
===============================================

Baseline system settings seeded on first startup so the wallet works
immediately (fee percentages, maintenance flag, currency, landing texts).

Only missing keys are written, so running it on every boot is harmless.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from madina.database.models import Setting

logger = logging.getLogger(__name__)

DEFAULT_MAINTENANCE_MESSAGE = (
    "The website is currently under maintenance. Please check back later."
)
DEFAULT_HERO_HEADLINE = "Time is money.\nSave both."
DEFAULT_HERO_SUBHEADLINE = (
    "Easy-to-use corporate cards, bill payments, accounting, and a whole lot "
    "more. All in one place."
)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "fees.p2p_percentage": (5, "fees", "Percent charged on wallet-to-wallet transfers"),
    "fees.ticket_percentage": (10, "fees", "Percent kept from every ticket sold"),
    "fees.invoice_percentage": (5, "fees", "Percent charged to the payer of an invoice"),
    "fees.withdrawal_percentage": (
        5, "fees", "Percent deducted from cash payouts at the finance desk",
    ),
    "system.maintenance_mode": (
        False, "system", "Block non-admin changes while maintenance is running",
    ),
    "system.maintenance_message": (
        DEFAULT_MAINTENANCE_MESSAGE, "system", "Message shown during maintenance",
    ),
    "system.max_balance_for_deletion": (
        0, "system", "Largest wallet balance (cents) a user may have and still be deleted",
    ),
    "system.currency": ("SSP", "system", "Currency code used for display"),
    "display.hero_headline": (
        DEFAULT_HERO_HEADLINE, "display", "Landing page headline",
    ),
    "display.hero_subheadline": (
        DEFAULT_HERO_SUBHEADLINE, "display", "Landing page sub-headline",
    ),
    "display.hero_background_image_url": (
        "", "display", "Landing page background image (uploaded media URL)",
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> int:
    """Add any catalogue key missing from ``settings``; return how many.

    Existing rows keep whatever an admin last saved.
    """
    with Session(engine) as session:
        present = set(session.scalars(
            select(Setting.key).where(Setting.key.in_(list(DEFAULT_SETTINGS)))
        ))
        missing = [key for key in DEFAULT_SETTINGS if key not in present]
        for key in missing:
            value, category, desc = DEFAULT_SETTINGS[key]
            session.add(Setting(
                key=key,
                value_json=json.dumps(value),
                category=category,
                description=desc,
            ))
        session.commit()

    if missing:
        logger.info("Seeded default settings: %s", ", ".join(missing))
    return len(missing)
