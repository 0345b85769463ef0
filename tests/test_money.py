"""
tests/test_money.py — Cents Arithmetic & Identifier Tests
==========================================================
"""

from __future__ import annotations

import re
from decimal import Decimal

import pytest

from madina.constants import (
    REDEEM_CODE_REGEX,
    WALLET_ID_REGEX,
    format_currency,
    is_valid_wallet_id,
    normalize_wallet_id,
)
from madina.engine.money import (
    fee_for,
    from_cents,
    generate_fee_deposit_reference,
    generate_pin,
    generate_redeem_code,
    generate_reference,
    generate_ticket_serial,
    generate_wallet_id,
    percentage_fee,
    to_cents,
)


class TestToCents:
    @pytest.mark.parametrize("amount, expected", [
        (12.5, 1250),
        ("7", 700),
        (0.015, 2),
        (Decimal("19.999"), 2000),
        (0, 0),
    ])
    def test_converts_half_up(self, amount, expected):
        assert to_cents(amount) == expected

    @pytest.mark.parametrize("bad", ["abc", "", "nan", "inf"])
    def test_rejects_non_numbers(self, bad):
        with pytest.raises(ValueError, match="Invalid amount"):
            to_cents(bad)

    def test_from_cents(self):
        assert from_cents(1250) == 12.5


class TestFees:
    def test_five_percent(self):
        assert percentage_fee(10000, 5) == 500

    def test_rounds_half_up(self):
        # 5% of 10 cents is exactly 0.5
        assert percentage_fee(10, 5) == 1

    def test_fractional_percentage(self):
        assert percentage_fee(1000, 2.5) == 25

    def test_zero_percentage_or_amount(self):
        assert percentage_fee(1000, 0) == 0
        assert percentage_fee(0, 5) == 0

    def test_exempt_pays_nothing(self):
        assert fee_for(10000, 5, exempt=True) == 0
        assert fee_for(10000, 5) == 500


class TestIdentifiers:
    def test_wallet_id_format(self):
        for _ in range(50):
            assert WALLET_ID_REGEX.match(generate_wallet_id())

    def test_reference_range(self):
        for _ in range(50):
            assert 100000 <= int(generate_reference()) <= 999999

    def test_fee_deposit_reference(self):
        assert generate_fee_deposit_reference(1700000000.9) == "FEE-1700000000"

    def test_redeem_code_format(self):
        code = generate_redeem_code()
        assert REDEEM_CODE_REGEX.match(code)
        assert all(1000 <= int(g) <= 9999 for g in code.split("-"))

    def test_pin_is_four_digits(self):
        assert re.fullmatch(r"\d{4}", generate_pin())

    def test_ticket_serials_are_unique(self):
        serials = {generate_ticket_serial(i) for i in range(1, 20)}
        assert len(serials) == 19
        assert generate_ticket_serial(3).endswith("-3")


class TestWalletIdHelpers:
    def test_normalize(self):
        assert normalize_wallet_id("  vxe445 ") == "VXE445"
        assert normalize_wallet_id(None) == ""

    @pytest.mark.parametrize("wallet_id, ok", [
        ("VXE445", True),
        ("VX445", False),
        ("VXEE45", False),
        ("vxe445", False),
    ])
    def test_validation(self, wallet_id, ok):
        assert is_valid_wallet_id(wallet_id) is ok


class TestFormatCurrency:
    def test_thousands_and_code(self):
        assert format_currency(123450, "usd") == "USD 1,234.50"

    def test_default_code_and_negative(self):
        assert format_currency(-5) == "SSP -0.05"
