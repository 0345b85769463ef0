"""
tests/test_admin.py — Admin Back-Office Services
=================================================
Role changes, wallet status transitions, account deletion and the audit
trail each of them leaves behind.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from conftest import make_user, make_wallet, set_setting
from madina.constants import utcnow
from madina.database.models import (
    AdminActionType,
    AdminLog,
    RedeemCode,
    Role,
    Ticket,
    User,
    Wallet,
    WalletStatus,
)
from madina.services import admin_service, event_service, redeem_service, withdrawal_service


@pytest.fixture
def admin(db_engine):
    return make_user(db_engine, role=Role.ADMIN)


def _log_entries(engine, action_type):
    with Session(engine) as session:
        return session.query(AdminLog).filter_by(action_type=action_type).all()


def _paid_event(engine, admin, organiser):
    start = utcnow() + timedelta(days=1)
    event = event_service.create_event(
        engine, organiser.id, title="Gala", description="Dinner",
        start_time=start, end_time=start + timedelta(hours=3),
        is_free=False, ticket_price=10, ticket_quantity=5,
    )
    event_service.approve_event(engine, admin.id, event.id)
    return event


# ---------------------------------------------------------------------------
# Users & roles
# ---------------------------------------------------------------------------
class TestRoles:
    def test_staff_role_needs_wallet(self, db_engine, admin):
        user = make_user(db_engine)
        with pytest.raises(ValueError, match="must have a wallet"):
            admin_service.update_user_role(
                db_engine, user_id=user.id, role=Role.FINANCE, actor_id=admin.id,
            )
        make_wallet(db_engine, user.id)
        updated = admin_service.update_user_role(
            db_engine, user_id=user.id, role=Role.FINANCE, actor_id=admin.id, ip_address="10.0.0.1",
        )
        assert updated.role == Role.FINANCE

        (entry,) = _log_entries(db_engine, AdminActionType.ROLE_CHANGE)
        assert entry.before_snapshot["role"] == Role.USER
        assert entry.after_snapshot["role"] == Role.FINANCE
        assert "password_hash" not in entry.after_snapshot
        assert entry.ip_address == "10.0.0.1"

    def test_wallet_rechecked_under_row_lock(self, db_engine, admin, monkeypatch):
        user = make_user(db_engine)
        make_wallet(db_engine, user.id)
        real_update = admin_service._audited_update

        def wallet_removed_meanwhile(engine, model_cls, pk, **kwargs):
            with Session(engine) as session:
                session.query(Wallet).filter_by(user_id=pk).delete()
                session.commit()
            return real_update(engine, model_cls, pk, **kwargs)

        monkeypatch.setattr(admin_service, "_audited_update", wallet_removed_meanwhile)
        with pytest.raises(ValueError, match="must have a wallet"):
            admin_service.update_user_role(
                db_engine, user_id=user.id, role=Role.FINANCE, actor_id=admin.id,
            )
        with Session(db_engine) as session:
            assert session.get(User, user.id).role == Role.USER

    def test_invalid_role(self, db_engine, admin):
        with pytest.raises(ValueError, match="Invalid role"):
            admin_service.update_user_role(
                db_engine, user_id=admin.id, role="overlord", actor_id=admin.id,
            )

    def test_unknown_user(self, db_engine, admin):
        assert admin_service.update_user_role(
            db_engine, user_id=999, role=Role.USER, actor_id=admin.id,
        ) is None

    def test_user_listing(self, db_engine, admin):
        user = make_user(db_engine)
        wallet = make_wallet(db_engine, user.id)
        rows = {r["id"]: r for r in admin_service.get_users(db_engine)}
        assert rows[user.id]["wallet_id"] == wallet.wallet_id
        assert rows[admin.id]["has_wallet"] is False

    def test_admin_opens_wallet(self, db_engine, admin):
        user = make_user(db_engine)
        wallet = admin_service.create_wallet_for_user(db_engine, user_id=user.id, actor_id=admin.id)
        assert wallet.status == WalletStatus.ACTIVE
        assert _log_entries(db_engine, AdminActionType.CREATE)[0].target_table == "wallets"
        with pytest.raises(ValueError, match="already has a wallet"):
            admin_service.create_wallet_for_user(db_engine, user_id=user.id, actor_id=admin.id)


# ---------------------------------------------------------------------------
# Wallet status
# ---------------------------------------------------------------------------
class TestWalletStatus:
    def test_suspend_reactivate_terminate(self, db_engine, admin):
        user = make_user(db_engine)
        wallet = make_wallet(db_engine, user.id)
        wid = wallet.wallet_id.lower()

        assert admin_service.suspend_wallet(db_engine, wid, actor_id=admin.id).status == "suspended"
        with pytest.raises(ValueError, match="Cannot change wallet"):
            admin_service.suspend_wallet(db_engine, wid, actor_id=admin.id)
        assert admin_service.reactivate_wallet(db_engine, wid, actor_id=admin.id).status == "active"
        assert admin_service.terminate_wallet(db_engine, wid, actor_id=admin.id).status == "terminated"
        with pytest.raises(ValueError, match="Cannot change wallet"):
            admin_service.reactivate_wallet(db_engine, wid, actor_id=admin.id)

        assert len(_log_entries(db_engine, AdminActionType.WALLET_STATUS)) == 3

    def test_unknown_wallet(self, db_engine, admin):
        assert admin_service.suspend_wallet(db_engine, "ZZZ999", actor_id=admin.id) is None

    def test_status_rechecked_under_row_lock(self, db_engine, admin, monkeypatch):
        user = make_user(db_engine)
        wallet = make_wallet(db_engine, user.id)
        real_update = admin_service._audited_update

        def terminated_meanwhile(engine, model_cls, pk, **kwargs):
            with Session(engine) as session:
                session.get(Wallet, pk).status = WalletStatus.TERMINATED
                session.commit()
            return real_update(engine, model_cls, pk, **kwargs)

        monkeypatch.setattr(admin_service, "_audited_update", terminated_meanwhile)
        with pytest.raises(ValueError, match="from terminated to suspended"):
            admin_service.suspend_wallet(db_engine, wallet.wallet_id, actor_id=admin.id)

        with Session(db_engine) as session:
            assert session.get(Wallet, wallet.id).status == WalletStatus.TERMINATED
        assert _log_entries(db_engine, AdminActionType.WALLET_STATUS) == []


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
class TestStatistics:
    def test_counts_and_totals(self, db_engine, admin):
        a = make_user(db_engine)
        b = make_user(db_engine)
        make_wallet(db_engine, a.id, balance=5000)
        wb = make_wallet(db_engine, b.id, balance=1000)
        admin_service.suspend_wallet(db_engine, wb.wallet_id, actor_id=admin.id)
        withdrawal_service.request_cash(db_engine, a.id, amount=10)

        stats = admin_service.get_platform_statistics(db_engine)
        assert stats["total_users"] == 3
        assert stats["total_wallets"] == 2
        assert stats["active_wallets"] == 1
        assert stats["suspended_wallets"] == 1
        assert stats["total_balance_cents"] == 5000
        assert stats["withdrawal_pool_cents"] == 1000
        assert stats["undeposited_fees_cents"] == 0


# ---------------------------------------------------------------------------
# Account deletion
# ---------------------------------------------------------------------------
class TestDeleteUser:
    def test_cannot_delete_self(self, db_engine, admin):
        with pytest.raises(ValueError, match="cannot delete your own account"):
            admin_service.delete_user(db_engine, user_id=admin.id, actor_id=admin.id)

    def test_balance_above_limit(self, db_engine, admin):
        user = make_user(db_engine)
        make_wallet(db_engine, user.id, balance=1)
        with pytest.raises(ValueError, match="exceeds the maximum"):
            admin_service.delete_user(db_engine, user_id=user.id, actor_id=admin.id)

        set_setting(db_engine, max_balance_for_deletion=100)
        assert admin_service.delete_user(db_engine, user_id=user.id, actor_id=admin.id)

    def test_cascade_and_redeem_reset(self, db_engine, admin):
        user = make_user(db_engine)
        make_wallet(db_engine, user.id)
        rc = redeem_service.generate_redeem_code(db_engine, admin.id, amount=1, pin="1234")
        redeem_service.redeem_code(db_engine, user.id, code=rc.code, pin="1234")
        set_setting(db_engine, max_balance_for_deletion=100)

        assert admin_service.delete_user(db_engine, user_id=user.id, actor_id=admin.id)
        with Session(db_engine) as session:
            assert session.get(User, user.id) is None
            assert session.query(Wallet).filter_by(user_id=user.id).count() == 0
            code = session.get(RedeemCode, rc.id)
            assert not code.used and code.used_by is None
        (entry,) = _log_entries(db_engine, AdminActionType.DELETE)
        assert entry.before_snapshot["email"] == user.email
        assert "wallet" in entry.before_snapshot

        assert not admin_service.delete_user(db_engine, user_id=user.id, actor_id=admin.id)

    def test_deleted_buyer_keeps_organiser_revenue(self, db_engine, admin):
        organiser = make_user(db_engine)
        make_wallet(db_engine, organiser.id)
        buyer = make_user(db_engine)
        make_wallet(db_engine, buyer.id, balance=2000)
        event = _paid_event(db_engine, admin, organiser)
        event_service.purchase_ticket(db_engine, buyer.id, event.id, 2)
        set_setting(db_engine, max_balance_for_deletion=100)

        assert admin_service.delete_user(db_engine, user_id=buyer.id, actor_id=admin.id)
        with Session(db_engine) as session:
            kept = session.query(Ticket).filter_by(event_id=event.id).all()
            assert len(kept) == 3
            assert {t.buyer_user_id for t in kept} == {None}

        sold = event_service.get_user_event_tickets(db_engine, organiser.id, event.id)
        assert [t["buyer_email"] for t in sold] == [None, None]
        result = event_service.deposit_ticket_sales(db_engine, organiser.id, event.id)
        assert result["amount_cents"] == 1800

    def test_held_ticket_revenue_counts_toward_limit(self, db_engine, admin):
        organiser = make_user(db_engine)
        make_wallet(db_engine, organiser.id)
        buyer = make_user(db_engine)
        make_wallet(db_engine, buyer.id, balance=2000)
        event = _paid_event(db_engine, admin, organiser)
        event_service.purchase_ticket(db_engine, buyer.id, event.id, 1)

        with pytest.raises(ValueError, match="exceeds the maximum"):
            admin_service.delete_user(db_engine, user_id=organiser.id, actor_id=admin.id)


# ---------------------------------------------------------------------------
# Audit log paging
# ---------------------------------------------------------------------------
class TestAuditLog:
    def test_newest_first_and_paged(self, db_engine, admin):
        for _ in range(3):
            user = make_user(db_engine)
            admin_service.create_wallet_for_user(db_engine, user_id=user.id, actor_id=admin.id)

        page = admin_service.get_audit_log(db_engine, page=1, page_size=2)
        assert page["total"] == 3
        assert len(page["entries"]) == 2
        assert page["entries"][0]["id"] > page["entries"][1]["id"]
        assert len(admin_service.get_audit_log(db_engine, page=2, page_size=2)["entries"]) == 1

    def test_page_size_clamped(self, db_engine):
        assert admin_service.get_audit_log(db_engine, page=0, page_size=10_000)["page_size"] == 200
