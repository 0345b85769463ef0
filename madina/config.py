"""
madina.config — YAML Configuration Loader
==========================================

This module reads ``config.yaml`` for **infrastructure-only** settings
(site identity, API port, session lifetime, withdrawal hold window).
All business tuning values (fee percentages, maintenance mode, currency,
hero texts) live in the ``settings`` database table, editable from the
admin back-office.

Usage::

    from madina.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.site_name)         # "Madina"
    print(cfg.session_hours)     # 12
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure/identity only.
# Business tuning lives in the DB ``settings`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MadinaConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    site_name: str
    site_tagline: str

    # API
    api_port: int
    session_hours: int  # Lifetime of issued JWTs

    # Wallet
    withdrawal_hold_hours: int = 24  # How long a cash request waits in the pool

    # Optional
    bootstrap_admin_email: str | None = None  # Promoted to admin on sign up


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def default_config_path() -> Path:
    """Return the config path from ``MADINA_CONFIG`` or ``config.yaml``."""
    return Path(os.getenv("MADINA_CONFIG", "config.yaml"))


def load_config(path: str | Path | None = None) -> MadinaConfig:
    """Read *path* (default ``$MADINA_CONFIG`` or ``./config.yaml``).

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a required key is missing or a number is out of range.
    """
    config_path = Path(path) if path is not None else default_config_path()
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: start from config.yaml.example."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    missing = [k for k in ("site_name", "api_port", "session_hours") if k not in raw]
    if missing:
        raise ValueError(f"{config_path}: missing key(s) {', '.join(missing)}")

    session_hours = int(raw["session_hours"])
    hold_hours = int(raw.get("withdrawal_hold_hours", 24))
    if session_hours <= 0 or hold_hours <= 0:
        raise ValueError(f"{config_path}: session_hours and withdrawal_hold_hours must be positive")

    admin_email = str(raw.get("bootstrap_admin_email") or "").strip().lower()
    return MadinaConfig(
        site_name=str(raw["site_name"]),
        site_tagline=str(raw.get("site_tagline", "")),
        api_port=int(raw["api_port"]),
        session_hours=session_hours,
        withdrawal_hold_hours=hold_hours,
        bootstrap_admin_email=admin_email or None,
    )
