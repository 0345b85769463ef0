"""
tests/test_kyc.py — KYC Applications
=====================================
"""

from __future__ import annotations

import pytest

from conftest import balance_of, make_user, make_wallet
from madina.database.models import KycStatus, Role
from madina.services import kyc_service


def _submit(engine, user_id, **overrides):
    fields = {
        "first_name": "Amina",
        "last_name": "Deng",
        "phone": "+211 912 000 000",
        "address": "Block 4, Juba",
        "id_front_url": "/api/uploads/kyc/front.png",
        "id_back_url": "/api/uploads/kyc/back.png",
    }
    fields.update(overrides)
    return kyc_service.submit_kyc_application(engine, user_id, **fields)


@pytest.fixture
def reviewer(db_engine):
    return make_user(db_engine, role=Role.EMPLOYEE)


class TestSubmit:
    def test_documents_recorded(self, db_engine):
        user = make_user(db_engine)
        app = _submit(db_engine, user.id)
        assert app.status == KycStatus.PENDING
        assert [d["type"] for d in app.documents] == ["id_front", "id_back"]
        assert kyc_service.get_kyc_status(db_engine, user.id)["status"] == KycStatus.PENDING
        assert kyc_service.get_kyc_user_info(db_engine, user.id)["last_name"] == "Deng"

    @pytest.mark.parametrize("field", ["first_name", "phone", "id_back_url"])
    def test_every_field_required(self, db_engine, field):
        user = make_user(db_engine)
        with pytest.raises(ValueError, match="All fields are required"):
            _submit(db_engine, user.id, **{field: " "})

    def test_no_second_pending(self, db_engine):
        user = make_user(db_engine)
        _submit(db_engine, user.id)
        with pytest.raises(ValueError, match="under review"):
            _submit(db_engine, user.id)

    def test_resubmit_after_rejection(self, db_engine, reviewer):
        user = make_user(db_engine)
        app = _submit(db_engine, user.id)
        kyc_service.reject_kyc(db_engine, reviewer.id, app.id, "Blurry photo")
        assert kyc_service.get_kyc_status(db_engine, user.id)["rejection_reason"] == "Blurry photo"

        again = _submit(db_engine, user.id, first_name="Amina B.")
        assert again.status == KycStatus.PENDING
        assert len(kyc_service.get_all_kyc_applications(db_engine)) == 1

    def test_unknown_user_has_no_status(self, db_engine):
        assert kyc_service.get_kyc_status(db_engine, 999) is None


class TestReview:
    def test_approve_opens_wallet(self, db_engine, reviewer):
        user = make_user(db_engine)
        app = _submit(db_engine, user.id)
        result = kyc_service.approve_kyc(db_engine, reviewer.id, app.id)
        assert result["application"]["status"] == KycStatus.APPROVED
        assert result["application"]["reviewed_by"] == reviewer.id
        assert len(result["wallet_id"]) == 6
        assert balance_of(db_engine, user.id) == 0

        with pytest.raises(ValueError, match="already been approved"):
            _submit(db_engine, user.id)

    def test_approve_keeps_existing_wallet(self, db_engine, reviewer):
        user = make_user(db_engine)
        wallet = make_wallet(db_engine, user.id, balance=300)
        app = _submit(db_engine, user.id)
        result = kyc_service.approve_kyc(db_engine, reviewer.id, app.id)
        assert result["wallet_id"] == wallet.wallet_id
        assert balance_of(db_engine, user.id) == 300

    def test_review_only_pending(self, db_engine, reviewer):
        user = make_user(db_engine)
        app = _submit(db_engine, user.id)
        kyc_service.approve_kyc(db_engine, reviewer.id, app.id)
        with pytest.raises(ValueError, match="already approved"):
            kyc_service.reject_kyc(db_engine, reviewer.id, app.id, "late")
        with pytest.raises(ValueError, match="not found"):
            kyc_service.approve_kyc(db_engine, reviewer.id, 999)

    def test_reject_needs_reason(self, db_engine, reviewer):
        user = make_user(db_engine)
        app = _submit(db_engine, user.id)
        with pytest.raises(ValueError, match="reason is required"):
            kyc_service.reject_kyc(db_engine, reviewer.id, app.id, "   ")

    def test_admin_listing_includes_email(self, db_engine):
        user = make_user(db_engine)
        _submit(db_engine, user.id)
        (row,) = kyc_service.get_all_kyc_applications(db_engine)
        assert row["email"] == user.email
        assert row["full_name"] == "Amina Deng"
