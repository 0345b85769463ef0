"""
madina.constants — Shared Constants & Helpers
==============================================

Single source of truth for identifier formats, input limits and currency
presentation.  Import from here instead of duplicating in services and
routes.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Identifier formats
# ---------------------------------------------------------------------------
WALLET_ID_REGEX = re.compile(r"^[A-Z]{3}\d{3}$")
REDEEM_CODE_REGEX = re.compile(r"^\d{4}-\d{4}-\d{4}-\d{4}$")
PIN_REGEX = re.compile(r"^\d{4}$")
EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

WALLET_ID_EXAMPLE = "VXE445"

# ---------------------------------------------------------------------------
# Input limits
# ---------------------------------------------------------------------------
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 25

REDEEM_CODE_MAX_ATTEMPTS = 10
NOTIFICATION_LIST_LIMIT = 50

HERO_HEADLINE_MAX = 500
HERO_SUBHEADLINE_MAX = 1000
HERO_IMAGE_URL_MAX = 500
CURRENCY_CODE_MAX = 10

DEFAULT_CURRENCY = "SSP"

# ---------------------------------------------------------------------------
# Fee ledger display labels keyed by the linked transaction type
# ---------------------------------------------------------------------------
FEE_SOURCE_LABELS: dict[str, str] = {
    "send": "p2p",
    "ticket_payout": "ticket",
    "invoice_payment": "invoice",
    "cash_payout": "withdrawal",
}


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------
def normalize_wallet_id(raw: str | None) -> str:
    """Strip and upper-case a user supplied wallet id."""
    return (raw or "").strip().upper()


def is_valid_wallet_id(wallet_id: str) -> bool:
    return bool(WALLET_ID_REGEX.match(wallet_id))


def format_currency(cents: int, currency: str | None = None) -> str:
    """Render an amount in cents as ``"SSP 1,234.50"``.

    Negative amounts keep their sign in front of the number.
    """
    code = (currency or DEFAULT_CURRENCY).upper()
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(int(cents)), 100)
    return f"{code} {sign}{whole:,}.{frac:02d}"


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None
