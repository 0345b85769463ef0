"""
madina.services.settings_service — System Settings
===================================================

Typed read/write access to the ``settings`` table.

Services that need a fee percentage or the maintenance flag call
:func:`load_system_settings` with their open session so the value is read
inside the same transaction as the money movement.  Admin edits go through
:func:`update_system_settings`, which validates every field and records
each changed key in ``admin_log``.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy.orm import Session

from madina.constants import (
    CURRENCY_CODE_MAX,
    DEFAULT_CURRENCY,
    HERO_HEADLINE_MAX,
    HERO_IMAGE_URL_MAX,
    HERO_SUBHEADLINE_MAX,
)
from madina.database.models import AdminActionType, AdminLog, Setting
from madina.database.seed import (
    DEFAULT_HERO_HEADLINE,
    DEFAULT_HERO_SUBHEADLINE,
    DEFAULT_MAINTENANCE_MESSAGE,
    DEFAULT_SETTINGS,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Typed view
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SystemSettings:
    p2p_fee_percentage: float = 5
    ticket_fee_percentage: float = 10
    invoice_fee_percentage: float = 5
    withdrawal_fee_percentage: float = 5
    maintenance_mode: bool = False
    maintenance_message: str = DEFAULT_MAINTENANCE_MESSAGE
    max_balance_for_deletion: int = 0
    currency: str = DEFAULT_CURRENCY
    hero_headline: str = DEFAULT_HERO_HEADLINE
    hero_subheadline: str = DEFAULT_HERO_SUBHEADLINE
    hero_background_image_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Field name on :class:`SystemSettings` → row key in ``settings``
FIELD_KEYS: dict[str, str] = {
    "p2p_fee_percentage": "fees.p2p_percentage",
    "ticket_fee_percentage": "fees.ticket_percentage",
    "invoice_fee_percentage": "fees.invoice_percentage",
    "withdrawal_fee_percentage": "fees.withdrawal_percentage",
    "maintenance_mode": "system.maintenance_mode",
    "maintenance_message": "system.maintenance_message",
    "max_balance_for_deletion": "system.max_balance_for_deletion",
    "currency": "system.currency",
    "hero_headline": "display.hero_headline",
    "hero_subheadline": "display.hero_subheadline",
    "hero_background_image_url": "display.hero_background_image_url",
}

_PERCENTAGE_FIELDS = (
    ("p2p_fee_percentage", "P2P fee percentage"),
    ("ticket_fee_percentage", "Ticket fee percentage"),
    ("invoice_fee_percentage", "Invoice fee percentage"),
    ("withdrawal_fee_percentage", "Withdrawal fee percentage"),
)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_setting_value(session: Session, key: str, default=None):
    """Read a single setting's parsed value from an existing session.

    Parameters
    ----------
    session : Session
        An open SQLAlchemy session.
    key : str
        The setting key to look up.
    default
        Returned when the key does not exist.

    Returns
    -------
    The JSON-decoded value, or *default*.
    """
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        return row.value_json


def load_system_settings(session: Session) -> SystemSettings:
    """Build a :class:`SystemSettings` from the ``settings`` rows.

    Missing or blank rows fall back to the dataclass defaults.
    """
    defaults = SystemSettings()
    values: dict[str, Any] = {}
    for field_name, key in FIELD_KEYS.items():
        fallback = getattr(defaults, field_name)
        value = get_setting_value(session, key, fallback)
        if value is None or (isinstance(fallback, str) and fallback and value == ""):
            value = fallback
        values[field_name] = value
    return SystemSettings(**values)


def get_system_settings(engine) -> SystemSettings:
    with Session(engine) as session:
        return load_system_settings(session)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_updates(updates: dict[str, Any]) -> dict[str, Any]:
    """Validate and normalise a partial settings update.

    Unknown fields and ``None`` values are ignored.

    Raises
    ------
    ValueError
        With a user-facing message for the first invalid field.
    """
    clean = {k: v for k, v in updates.items() if k in FIELD_KEYS and v is not None}

    for field_name, label in _PERCENTAGE_FIELDS:
        if field_name in clean:
            value = float(clean[field_name])
            if not math.isfinite(value) or value < 0 or value > 100:
                raise ValueError(f"{label} must be between 0 and 100")
            clean[field_name] = value

    if "max_balance_for_deletion" in clean:
        value = int(clean["max_balance_for_deletion"])
        if value < 0:
            raise ValueError("Maximum balance for deletion cannot be negative")
        clean["max_balance_for_deletion"] = value

    if "currency" in clean:
        currency = str(clean["currency"]).strip()
        if not currency:
            raise ValueError("Currency code cannot be empty")
        if len(currency) > CURRENCY_CODE_MAX:
            raise ValueError(
                f"Currency code must be {CURRENCY_CODE_MAX} characters or less"
            )
        clean["currency"] = currency.upper()

    limits = (
        ("hero_headline", HERO_HEADLINE_MAX, "Hero headline"),
        ("hero_subheadline", HERO_SUBHEADLINE_MAX, "Hero subheadline"),
        ("hero_background_image_url", HERO_IMAGE_URL_MAX, "Hero background image URL"),
    )
    for field_name, limit, label in limits:
        if field_name in clean:
            if len(clean[field_name]) > limit:
                raise ValueError(f"{label} must be {limit} characters or less")
            clean[field_name] = clean[field_name].strip()

    if "maintenance_mode" in clean:
        clean["maintenance_mode"] = bool(clean["maintenance_mode"])

    return clean


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def update_system_settings(
    engine, updates: dict[str, Any], *, actor_id: int
) -> SystemSettings:
    """Validate *updates* (field names of :class:`SystemSettings`) and save.

    Returns the settings as they stand after the update.
    """
    clean = validate_updates(updates)
    items = [{"key": FIELD_KEYS[name], "value": value} for name, value in clean.items()]
    if items:
        bulk_upsert(engine, items, actor_id=actor_id)
        logger.info(
            "System settings updated by %s: %s", actor_id, ", ".join(sorted(clean)),
        )
    return get_system_settings(engine)


def bulk_upsert(engine, settings: list[dict], *, actor_id: int | None = None) -> int:
    """Upsert many settings at once.

    Each dict should have at least ``key`` and ``value``.
    Optional: ``category``, ``description``.

    When *actor_id* is provided, each change is individually recorded in the
    ``admin_log`` table with before/after snapshots.

    Returns the number of rows touched.
    """
    count = 0
    with Session(engine) as session:
        for item in settings:
            key = item["key"]
            value_json = json.dumps(item["value"])
            existing = session.get(Setting, key)

            before_snapshot: dict | None = None
            if existing and actor_id is not None:
                before_snapshot = {
                    "key": existing.key,
                    "value": json.loads(existing.value_json) if existing.value_json else None,
                    "category": existing.category,
                    "description": existing.description,
                }

            if existing:
                existing.value_json = value_json
                if "category" in item:
                    existing.category = item["category"]
                if "description" in item:
                    existing.description = item["description"]
            else:
                _, default_category, default_desc = DEFAULT_SETTINGS.get(
                    key, (None, "general", None)
                )
                existing = Setting(
                    key=key,
                    value_json=value_json,
                    category=item.get("category", default_category),
                    description=item.get("description", default_desc),
                )
                session.add(existing)

            if actor_id is not None:
                after_snapshot = {
                    "key": key,
                    "value": item["value"],
                    "category": existing.category,
                    "description": existing.description,
                }
                # Only log if something actually changed
                if before_snapshot != after_snapshot:
                    session.add(AdminLog(
                        actor_id=actor_id,
                        action_type=(
                            AdminActionType.UPDATE if before_snapshot
                            else AdminActionType.CREATE
                        ),
                        target_table="settings",
                        target_id=key,
                        before_snapshot=before_snapshot,
                        after_snapshot=after_snapshot,
                    ))

            count += 1
        session.commit()

    return count
