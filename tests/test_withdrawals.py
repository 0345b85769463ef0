"""
tests/test_withdrawals.py — Cash Pool & Finance Desk
=====================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from conftest import balance_of, make_user, make_wallet
from madina.database.models import (
    Fee,
    PendingWithdrawal,
    Role,
    Transaction,
    TransactionStatus,
    Wallet,
    WithdrawalStatus,
)
from madina.services import withdrawal_service


@pytest.fixture
def customer(db_engine):
    user = make_user(db_engine)
    make_wallet(db_engine, user.id, balance=10000)
    return user


@pytest.fixture
def teller(db_engine):
    user = make_user(db_engine, role=Role.FINANCE)
    make_wallet(db_engine, user.id)
    return user


def _original(engine, ref):
    with Session(engine) as session:
        return session.query(Transaction).filter_by(ref=ref, note="Cash withdrawal request").one()


class TestRequestCash:
    def test_debits_immediately(self, db_engine, customer):
        w = withdrawal_service.request_cash(db_engine, customer.id, amount=40)
        assert w.status == WithdrawalStatus.PENDING
        assert w.amount == 4000
        assert balance_of(db_engine, customer.id) == 6000
        assert _original(db_engine, w.ref).status == TransactionStatus.PENDING

    def test_insufficient_funds(self, db_engine, customer):
        with pytest.raises(ValueError, match="Insufficient funds"):
            withdrawal_service.request_cash(db_engine, customer.id, amount=101)
        assert balance_of(db_engine, customer.id) == 10000

    def test_no_wallet(self, db_engine):
        user = make_user(db_engine)
        with pytest.raises(ValueError, match="Wallet not found"):
            withdrawal_service.request_cash(db_engine, user.id, amount=1)


class TestProcessPayout:
    def test_pays_out_minus_fee(self, db_engine, customer, teller):
        w = withdrawal_service.request_cash(db_engine, customer.id, amount=40)
        result = withdrawal_service.process_cash_payout(db_engine, teller.id, w.ref)
        assert result == {"ref": w.ref, "amount": 40.0, "fee": 2.0, "payout": 38.0}

        with Session(db_engine) as session:
            stored = session.get(PendingWithdrawal, w.id)
            assert stored.status == WithdrawalStatus.PROCESSED
            assert stored.processed_by == teller.id
            assert stored.payout_amount_cents == 3800
            fee = session.query(Fee).one()
            assert (fee.type, fee.amount) == ("withdrawal", 200)
        assert _original(db_engine, w.ref).status == TransactionStatus.SUCCESS
        # cash leaves the desk, not the teller's wallet
        assert balance_of(db_engine, teller.id) == 0

    def test_admin_requester_is_exempt(self, db_engine, teller):
        admin = make_user(db_engine, role=Role.ADMIN)
        make_wallet(db_engine, admin.id, balance=1000)
        w = withdrawal_service.request_cash(db_engine, admin.id, amount=10)
        result = withdrawal_service.process_cash_payout(db_engine, teller.id, w.ref)
        assert result["fee"] == 0
        assert result["payout"] == 10.0

    def test_cannot_pay_yourself(self, db_engine, teller):
        with Session(db_engine) as session:
            session.query(Wallet).filter_by(user_id=teller.id).update({"balance": 500})
            session.commit()
        w = withdrawal_service.request_cash(db_engine, teller.id, amount=1)
        with pytest.raises(ValueError, match="own wallet"):
            withdrawal_service.process_cash_payout(db_engine, teller.id, w.ref)

    def test_unknown_or_processed_ref(self, db_engine, customer, teller):
        with pytest.raises(ValueError, match="not found"):
            withdrawal_service.process_cash_payout(db_engine, teller.id, "000000")
        w = withdrawal_service.request_cash(db_engine, customer.id, amount=1)
        withdrawal_service.process_cash_payout(db_engine, teller.id, w.ref)
        with pytest.raises(ValueError, match="not found"):
            withdrawal_service.process_cash_payout(db_engine, teller.id, w.ref)

    def test_expired_request_is_refunded(self, db_engine, customer, teller):
        w = withdrawal_service.request_cash(db_engine, customer.id, amount=40, hold_hours=-1)
        assert balance_of(db_engine, customer.id) == 6000
        with pytest.raises(ValueError, match="expired and was refunded"):
            withdrawal_service.process_cash_payout(db_engine, teller.id, w.ref)
        assert balance_of(db_engine, customer.id) == 10000
        with Session(db_engine) as session:
            assert session.get(PendingWithdrawal, w.id).status == WithdrawalStatus.EXPIRED
        assert _original(db_engine, w.ref).status == TransactionStatus.FAILED


class TestPoolAndExpiry:
    def test_expire_stale(self, db_engine, customer):
        withdrawal_service.request_cash(db_engine, customer.id, amount=10, hold_hours=-1)
        fresh = withdrawal_service.request_cash(db_engine, customer.id, amount=20)
        assert withdrawal_service.expire_stale_withdrawals(db_engine) == 1
        assert withdrawal_service.expire_stale_withdrawals(db_engine) == 0
        assert balance_of(db_engine, customer.id) == 8000

        pool = withdrawal_service.get_pool_details(db_engine)
        assert pool["count"] == 1
        assert pool["total_cents"] == 2000
        assert pool["withdrawals"][0]["ref"] == fresh.ref

    def test_lookup_by_ref(self, db_engine, customer):
        w = withdrawal_service.request_cash(db_engine, customer.id, amount=5)
        found = withdrawal_service.get_pending_withdrawal_by_ref(db_engine, f" {w.ref} ")
        assert found["email"] == customer.email
        assert not found["is_expired"]
        assert withdrawal_service.get_pending_withdrawal_by_ref(db_engine, "nope") is None

    def test_cash_payout_report(self, db_engine, customer, teller):
        w = withdrawal_service.request_cash(db_engine, customer.id, amount=20)
        withdrawal_service.process_cash_payout(db_engine, teller.id, w.ref)
        report = withdrawal_service.get_cash_payout_details(db_engine)
        assert report["count"] == 1
        assert report["total_cents"] == 1900
        assert report["payouts"][0]["paid_by"] == teller.email
