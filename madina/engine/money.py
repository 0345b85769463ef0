"""
madina.engine.money — Cents Arithmetic & Identifier Generation
===============================================================

Pure calculation helpers, no DB I/O.

All balances and amounts are stored as integer **cents**.  User input
arrives in major units (``12.5`` → ``1250``) and is converted with
half-up rounding, which is also used for every percentage fee.
"""

from __future__ import annotations

import secrets
import string
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_LETTERS = string.ascii_uppercase


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------
def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(amount: float | int | str | Decimal) -> int:
    """Convert a major-unit amount to integer cents.

    Raises
    ------
    ValueError
        If *amount* is not a finite number.
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return _round_half_up(value * 100)


def from_cents(cents: int) -> float:
    return cents / 100


def percentage_fee(cents: int, percentage: float | int) -> int:
    """Fee in cents for *percentage* percent of *cents*, rounded half-up."""
    if cents <= 0 or not percentage:
        return 0
    return _round_half_up(Decimal(cents) * Decimal(str(percentage)) / 100)


def fee_for(cents: int, percentage: float | int, *, exempt: bool = False) -> int:
    """Fee charged on *cents*; admins (``exempt``) pay nothing."""
    return 0 if exempt else percentage_fee(cents, percentage)


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------
def generate_wallet_id() -> str:
    """Three uppercase letters followed by three digits, e.g. ``VXE445``."""
    letters = "".join(secrets.choice(_LETTERS) for _ in range(3))
    return f"{letters}{secrets.randbelow(1000):03d}"


def generate_reference() -> str:
    """Six-digit reference number in ``100000..999999``."""
    return str(100000 + secrets.randbelow(900000))


def generate_fee_deposit_reference(now: float | None = None) -> str:
    return f"FEE-{int(now if now is not None else time.time())}"


def generate_redeem_code() -> str:
    """Four dash-separated groups, each in ``1000..9999``."""
    return "-".join(str(1000 + secrets.randbelow(9000)) for _ in range(4))


def generate_pin() -> str:
    return f"{secrets.randbelow(10000):04d}"


def generate_ticket_serial(index: int) -> str:
    """Serial for the *index*-th (1-based) ticket of a purchase."""
    millis = int(time.time() * 1000)
    token = "".join(
        secrets.choice(_LETTERS + string.digits) for _ in range(7)
    )
    return f"{millis}-{token}-{index}"
