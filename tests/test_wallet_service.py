"""
tests/test_wallet_service.py — Wallets & P2P Transfers
=======================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from conftest import balance_of, make_user, make_wallet, set_setting
from madina.database.models import (
    Fee,
    Notification,
    Role,
    Transaction,
    WalletStatus,
)
from madina.services import wallet_service
from madina.services.wallet_service import WalletSuspendedError


@pytest.fixture
def pair(db_engine):
    """Sender with 100.00 and an empty recipient."""
    sender = make_user(db_engine)
    recipient = make_user(db_engine)
    sw = make_wallet(db_engine, sender.id, balance=10000)
    rw = make_wallet(db_engine, recipient.id)
    return sender, sw, recipient, rw


class TestCreateWallet:
    def test_one_wallet_per_user(self, db_engine):
        user = make_user(db_engine)
        make_wallet(db_engine, user.id)
        with pytest.raises(ValueError, match="already has a wallet"):
            wallet_service.create_wallet(db_engine, user.id)

    def test_unknown_user(self, db_engine):
        with pytest.raises(ValueError, match="User not found"):
            wallet_service.create_wallet(db_engine, 4242)


class TestBalance:
    def test_no_wallet(self, db_engine):
        user = make_user(db_engine)
        with pytest.raises(ValueError, match="Wallet not found"):
            wallet_service.get_balance(db_engine, user.id)

    def test_suspended_raises_coded_error(self, db_engine):
        user = make_user(db_engine)
        make_wallet(db_engine, user.id, balance=500, status=WalletStatus.SUSPENDED)
        with pytest.raises(WalletSuspendedError) as exc:
            wallet_service.get_balance(db_engine, user.id)
        assert exc.value.code == "suspended"

    def test_terminated_reads_zero(self, db_engine):
        user = make_user(db_engine)
        make_wallet(db_engine, user.id, balance=500, status=WalletStatus.TERMINATED)
        info = wallet_service.get_balance(db_engine, user.id)
        assert info["balance_cents"] == 0
        assert info["status"] == WalletStatus.TERMINATED


class TestSendMoney:
    def test_fee_on_top_and_ledger(self, db_engine, pair):
        sender, sw, recipient, rw = pair
        result = wallet_service.send_money(
            db_engine, sender.id, recipient_wallet_id=rw.wallet_id.lower(), amount=50, note="rent",
        )
        assert result.amount_cents == 5000
        assert result.fee_cents == 250
        assert result.sender_balance == 10000 - 5250
        assert balance_of(db_engine, sender.id) == 4750
        assert balance_of(db_engine, recipient.id) == 5000

        with Session(db_engine) as session:
            txs = session.query(Transaction).filter(Transaction.ref == result.ref).all()
            assert sorted(t.type for t in txs) == ["fee", "receive", "send"]
            fee = session.query(Fee).one()
            assert fee.amount == 250
            assert fee.type == "transaction"
            assert not fee.deposited
            note = session.query(Notification).filter_by(user_id=recipient.id).one()
            assert note.title == "Money Received"

    def test_admin_sender_pays_no_fee(self, db_engine):
        admin = make_user(db_engine, role=Role.ADMIN)
        other = make_user(db_engine)
        make_wallet(db_engine, admin.id, balance=10000)
        ow = make_wallet(db_engine, other.id)
        result = wallet_service.send_money(
            db_engine, admin.id, recipient_wallet_id=ow.wallet_id, amount=100,
        )
        assert result.fee_cents == 0
        assert balance_of(db_engine, admin.id) == 0
        with Session(db_engine) as session:
            assert session.query(Fee).count() == 0

    def test_fee_counts_toward_insufficient_funds(self, db_engine, pair):
        sender, _, _, rw = pair
        with pytest.raises(ValueError, match="Insufficient funds"):
            wallet_service.send_money(
                db_engine, sender.id, recipient_wallet_id=rw.wallet_id, amount=100,
            )
        assert balance_of(db_engine, sender.id) == 10000

    def test_zero_fee_setting(self, db_engine, pair):
        sender, _, recipient, rw = pair
        set_setting(db_engine, p2p_fee_percentage=0)
        wallet_service.send_money(db_engine, sender.id, recipient_wallet_id=rw.wallet_id, amount=100)
        assert balance_of(db_engine, sender.id) == 0
        assert balance_of(db_engine, recipient.id) == 10000

    def test_self_transfer(self, db_engine, pair):
        sender, sw, _, _ = pair
        with pytest.raises(ValueError, match="own wallet"):
            wallet_service.send_money(db_engine, sender.id, recipient_wallet_id=sw.wallet_id, amount=1)

    @pytest.mark.parametrize("wallet_id", ["AB12", "123ABC", ""])
    def test_malformed_wallet_id(self, db_engine, pair, wallet_id):
        sender = pair[0]
        with pytest.raises(ValueError, match="Invalid Wallet ID"):
            wallet_service.send_money(db_engine, sender.id, recipient_wallet_id=wallet_id, amount=1)

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount(self, db_engine, pair, amount):
        sender, _, _, rw = pair
        with pytest.raises(ValueError, match="greater than 0"):
            wallet_service.send_money(
                db_engine, sender.id, recipient_wallet_id=rw.wallet_id, amount=amount,
            )

    def test_inactive_recipient(self, db_engine, pair):
        sender = pair[0]
        other = make_user(db_engine)
        frozen = make_wallet(db_engine, other.id, status=WalletStatus.SUSPENDED)
        with pytest.raises(ValueError, match="Recipient wallet is suspended"):
            wallet_service.send_money(
                db_engine, sender.id, recipient_wallet_id=frozen.wallet_id, amount=1,
            )

    def test_unknown_recipient(self, db_engine, pair):
        sender = pair[0]
        with pytest.raises(ValueError, match="Recipient wallet not found"):
            wallet_service.send_money(db_engine, sender.id, recipient_wallet_id="ZZZ999", amount=1)


class TestHistory:
    def test_directions_and_order(self, db_engine, pair):
        sender, sw, recipient, rw = pair
        set_setting(db_engine, p2p_fee_percentage=0)
        wallet_service.send_money(db_engine, sender.id, recipient_wallet_id=rw.wallet_id, amount=1)
        wallet_service.send_money(db_engine, sender.id, recipient_wallet_id=rw.wallet_id, amount=2)

        sent = wallet_service.get_transactions(db_engine, sender.id)
        assert [t["amount_cents"] for t in sent] == [200, 100]
        assert all(t["is_sent"] and not t["is_received"] for t in sent)

        received = wallet_service.get_transactions(db_engine, recipient.id)
        assert all(t["is_received"] for t in received)

    def test_admin_wallet_view(self, db_engine, pair):
        sender, _, _, rw = pair
        wallet_service.send_money(db_engine, sender.id, recipient_wallet_id=rw.wallet_id, amount=1)
        rows = wallet_service.get_wallet_transactions(db_engine, rw.wallet_id)
        assert len(rows) == 2
        assert wallet_service.get_wallet_transactions(db_engine, "ZZZ999") is None

    def test_delete_own_row_only(self, db_engine, pair):
        sender, _, recipient, rw = pair
        wallet_service.send_money(db_engine, sender.id, recipient_wallet_id=rw.wallet_id, amount=1)
        mine = wallet_service.get_transactions(db_engine, sender.id)[0]
        with pytest.raises(PermissionError):
            wallet_service.delete_transaction(db_engine, recipient.id, mine["id"])
        assert wallet_service.delete_transaction(db_engine, sender.id, mine["id"])
        assert not wallet_service.delete_transaction(db_engine, sender.id, mine["id"])
        assert balance_of(db_engine, sender.id) == 10000 - 105


class TestRecipientLookup:
    def test_shows_status_and_email(self, db_engine, pair):
        _, _, recipient, rw = pair
        info = wallet_service.get_recipient_info(db_engine, rw.wallet_id)
        assert info["email"] == recipient.email
        assert info["status"] == WalletStatus.ACTIVE
        assert info["first_name"] == ""

    def test_find_user_by_email(self, db_engine, pair):
        sender, sw, _, _ = pair
        found = wallet_service.find_user_by_email(db_engine, sender.email.upper())
        assert found["wallet_id"] == sw.wallet_id
        assert wallet_service.find_user_by_email(db_engine, "ghost@example.com") is None
