"""
tests/test_redeem.py — Redeem Codes
====================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from conftest import balance_of, make_user, make_wallet
from madina.constants import REDEEM_CODE_REGEX, utcnow
from madina.database.models import RedeemCode, Role, Transaction, WalletStatus
from madina.services import redeem_service


@pytest.fixture
def admin(db_engine):
    return make_user(db_engine, role=Role.ADMIN)


@pytest.fixture
def holder(db_engine):
    user = make_user(db_engine)
    make_wallet(db_engine, user.id, balance=100)
    return user


class TestGenerate:
    def test_format_and_given_pin(self, db_engine, admin):
        rc = redeem_service.generate_redeem_code(db_engine, admin.id, amount=25, pin="0042")
        assert REDEEM_CODE_REGEX.match(rc.code)
        assert rc.pin == "0042"
        assert rc.amount == 2500
        assert not rc.used

    def test_random_pin_when_omitted(self, db_engine, admin):
        rc = redeem_service.generate_redeem_code(db_engine, admin.id, amount=1)
        assert len(rc.pin) == 4 and rc.pin.isdigit()

    @pytest.mark.parametrize("pin", ["12", "abcd", "12345"])
    def test_rejects_bad_pin(self, db_engine, admin, pin):
        with pytest.raises(ValueError, match="PIN must be exactly 4 digits"):
            redeem_service.generate_redeem_code(db_engine, admin.id, amount=1, pin=pin)

    def test_rejects_zero_amount(self, db_engine, admin):
        with pytest.raises(ValueError, match="greater than 0"):
            redeem_service.generate_redeem_code(db_engine, admin.id, amount=0)

    def test_list_and_delete(self, db_engine, admin):
        a = redeem_service.generate_redeem_code(db_engine, admin.id, amount=1)
        b = redeem_service.generate_redeem_code(db_engine, admin.id, amount=2)
        listed = redeem_service.get_all_redeem_codes(db_engine)
        assert [r["id"] for r in listed] == [b.id, a.id]

        assert redeem_service.delete_redeem_codes(db_engine, [a.id, 9999]) == 1
        assert [r["id"] for r in redeem_service.get_all_redeem_codes(db_engine)] == [b.id]

    def test_delete_needs_ids(self, db_engine):
        with pytest.raises(ValueError, match="No redeem codes selected"):
            redeem_service.delete_redeem_codes(db_engine, [])


class TestRedeem:
    def test_credits_wallet_once(self, db_engine, admin, holder):
        rc = redeem_service.generate_redeem_code(db_engine, admin.id, amount=10, pin="1111")
        result = redeem_service.redeem_code(db_engine, holder.id, code=rc.code, pin="1111")
        assert result["amount_cents"] == 1000
        assert result["new_balance"] == 11.0
        assert balance_of(db_engine, holder.id) == 1100

        with Session(db_engine) as session:
            stored = session.get(RedeemCode, rc.id)
            assert stored.used
            assert stored.used_by == holder.id
            tx = session.query(Transaction).filter_by(user_id=holder.id).one()
            assert tx.type == "deposit"
            assert tx.meta == {"redeem_id": rc.id}

        with pytest.raises(ValueError, match="already been used"):
            redeem_service.redeem_code(db_engine, holder.id, code=rc.code, pin="1111")
        assert balance_of(db_engine, holder.id) == 1100

    def test_wrong_pin(self, db_engine, admin, holder):
        rc = redeem_service.generate_redeem_code(db_engine, admin.id, amount=10, pin="1111")
        with pytest.raises(ValueError, match="Invalid PIN"):
            redeem_service.redeem_code(db_engine, holder.id, code=rc.code, pin="2222")

    def test_unknown_code(self, db_engine, holder):
        with pytest.raises(ValueError, match="Invalid redeem code"):
            redeem_service.redeem_code(
                db_engine, holder.id, code="1000-1000-1000-1000", pin="1111"
            )

    def test_expired_code(self, db_engine, admin, holder):
        rc = redeem_service.generate_redeem_code(
            db_engine, admin.id, amount=10, pin="1111",
            expires_at=utcnow() - timedelta(hours=1),
        )
        with pytest.raises(ValueError, match="expired"):
            redeem_service.redeem_code(db_engine, holder.id, code=rc.code, pin="1111")
        assert balance_of(db_engine, holder.id) == 100

    def test_missing_fields(self, db_engine, holder):
        with pytest.raises(ValueError, match="required"):
            redeem_service.redeem_code(db_engine, holder.id, code=" ", pin="1111")

    def test_suspended_wallet_cannot_redeem(self, db_engine, admin):
        user = make_user(db_engine)
        make_wallet(db_engine, user.id, status=WalletStatus.SUSPENDED)
        rc = redeem_service.generate_redeem_code(db_engine, admin.id, amount=10, pin="1111")
        with pytest.raises(ValueError, match="suspended"):
            redeem_service.redeem_code(db_engine, user.id, code=rc.code, pin="1111")
