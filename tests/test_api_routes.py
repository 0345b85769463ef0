"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Auth guards, the public endpoints and the main money flows driven through
the FastAPI TestClient against the in-memory database.
"""

from __future__ import annotations

import jwt
import pytest

from conftest import auth, balance_of, make_user, make_wallet, set_setting
from madina import __version__
from madina.api.deps import JWT_ALGORITHM
from madina.database.models import Role, WalletStatus
from madina.services import upload_service

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def admin(db_engine):
    return make_user(db_engine, role=Role.ADMIN)


@pytest.fixture
def user(db_engine):
    return make_user(db_engine)


# ===========================================================================
# Health
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": __version__}


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAdminAuthGuards:
    """Admin endpoints answer 401 without a valid token and 403 for non-admins."""

    ADMIN_GET_ENDPOINTS = [
        "/api/admin/users",
        "/api/admin/wallets",
        "/api/admin/stats",
        "/api/admin/settings",
        "/api/admin/audit",
        "/api/admin/fees",
        "/api/admin/redeem-codes",
        "/api/admin/logs",
        "/api/admin/media",
    ]

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_no_token_returns_401(self, client, endpoint):
        assert client.get(endpoint).status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_invalid_token_returns_401(self, client, endpoint):
        resp = client.get(endpoint, headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_non_admin_returns_403(self, client, user, endpoint):
        assert client.get(endpoint, headers=auth(user)).status_code == 403

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_admin_allowed(self, client, admin, endpoint):
        assert client.get(endpoint, headers=auth(admin)).status_code == 200

    def test_token_signed_with_other_secret(self, client, user):
        token = jwt.encode({"sub": str(user.id)}, "x" * 64, algorithm=JWT_ALGORITHM)
        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_deleted_user_token_rejected(self, client, admin, user):
        headers = auth(user)
        assert client.delete(f"/api/admin/users/{user.id}", headers=auth(admin)).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_role_change_applies_without_new_token(self, client, db_engine, admin, user):
        make_wallet(db_engine, user.id)
        headers = auth(user)
        assert client.get("/api/finance/pool", headers=headers).status_code == 403
        resp = client.put(
            f"/api/admin/users/{user.id}/role", json={"role": "finance"}, headers=auth(admin),
        )
        assert resp.status_code == 200
        assert client.get("/api/finance/pool", headers=headers).status_code == 200


# ===========================================================================
# Accounts
# ===========================================================================
class TestAuthRoutes:
    def test_signup_then_login(self, client):
        resp = client.post("/api/auth/signup", json={"email": "New@Example.com", "password": "password123"})
        assert resp.status_code == 201
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["email"] == "new@example.com"
        assert body["user"]["role"] == "user"

        resp = client.post("/api/auth/login", json={"email": "new@example.com", "password": "password123"})
        assert resp.status_code == 200
        me = client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {resp.json()['access_token']}"}
        )
        assert me.json()["email"] == "new@example.com"

    def test_bootstrap_email_becomes_admin(self, client):
        resp = client.post("/api/auth/signup", json={"email": "boss@example.com", "password": "password123"})
        assert resp.json()["user"]["role"] == "admin"

    def test_duplicate_signup(self, client, user):
        resp = client.post("/api/auth/signup", json={"email": user.email, "password": "password123"})
        assert resp.status_code == 400

    def test_bad_password_is_401(self, client, user):
        resp = client.post("/api/auth/login", json={"email": user.email, "password": "wrong-password"})
        assert resp.status_code == 401


# ===========================================================================
# Public settings & maintenance mode
# ===========================================================================
class TestSettingsRoutes:
    def test_public_settings(self, client):
        body = client.get("/api/settings/public").json()
        assert body["site_name"] == "Madina Test"
        assert body["maintenance_mode"] is False
        assert body["fees"] == {"p2p": 5, "ticket": 10, "invoice": 5, "withdrawal": 5}

    def test_admin_update_shows_publicly(self, client, admin):
        resp = client.put(
            "/api/admin/settings", json={"p2p_fee_percentage": 2.5}, headers=auth(admin),
        )
        assert resp.status_code == 200
        assert client.get("/api/settings/public").json()["fees"]["p2p"] == 2.5

    def test_admin_update_out_of_range(self, client, admin):
        resp = client.put(
            "/api/admin/settings", json={"invoice_fee_percentage": 150}, headers=auth(admin),
        )
        assert resp.status_code == 422


class TestMaintenanceMode:
    @pytest.fixture(autouse=True)
    def _maintenance(self, db_engine):
        set_setting(db_engine, maintenance_mode=True, maintenance_message="Back soon")

    def test_user_mutation_blocked(self, client, user):
        resp = client.post(
            "/api/wallet/send",
            json={"recipient_wallet_id": "ABC123", "amount": 1},
            headers=auth(user),
        )
        assert resp.status_code == 503
        assert resp.json()["detail"] == {"error": "maintenance", "message": "Back soon"}

    def test_anonymous_contact_blocked(self, client):
        resp = client.post(
            "/api/contact", json={"email": "a@b.co", "subject": "s", "message": "m"},
        )
        assert resp.status_code == 503

    def test_reads_still_work(self, client, user):
        assert client.get("/api/news").status_code == 200
        assert client.get("/api/wallet/transactions", headers=auth(user)).status_code == 200

    def test_admin_passes(self, client, admin):
        resp = client.post(
            "/api/news",
            json={"title": "Notice", "content": "Upgrade tonight", "category": "system"},
            headers=auth(admin),
        )
        assert resp.status_code == 201


# ===========================================================================
# Wallet flows
# ===========================================================================
class TestWalletRoutes:
    def test_send_money(self, client, db_engine, user):
        other = make_user(db_engine)
        make_wallet(db_engine, user.id, balance=10000)
        ow = make_wallet(db_engine, other.id)

        preview = client.get(f"/api/wallet/recipient/{ow.wallet_id}", headers=auth(user))
        assert preview.json()["email"] == other.email

        resp = client.post(
            "/api/wallet/send",
            json={"recipient_wallet_id": ow.wallet_id, "amount": 20, "note": "lunch"},
            headers=auth(user),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["fee"] == 1.0
        assert body["total_deducted"] == 21.0
        assert body["new_balance"] == 79.0
        assert balance_of(db_engine, other.id) == 2000

        history = client.get("/api/wallet/transactions", headers=auth(other)).json()
        assert history["transactions"][0]["is_received"]

    def test_send_errors_are_400(self, client, db_engine, user):
        make_wallet(db_engine, user.id, balance=100)
        resp = client.post(
            "/api/wallet/send",
            json={"recipient_wallet_id": "bad", "amount": 1},
            headers=auth(user),
        )
        assert resp.status_code == 400
        assert "Invalid Wallet ID" in resp.json()["detail"]

    def test_non_positive_amount_is_422(self, client, db_engine, user):
        resp = client.post(
            "/api/wallet/send",
            json={"recipient_wallet_id": "ABC123", "amount": 0},
            headers=auth(user),
        )
        assert resp.status_code == 422

    def test_suspended_balance_has_code(self, client, db_engine, user):
        make_wallet(db_engine, user.id, balance=100, status=WalletStatus.SUSPENDED)
        resp = client.get("/api/wallet/balance", headers=auth(user))
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "suspended"

    def test_admin_code_then_redeem(self, client, db_engine, admin, user):
        make_wallet(db_engine, user.id)
        created = client.post(
            "/api/admin/redeem-codes", json={"amount": 15, "pin": "4321"}, headers=auth(admin),
        )
        assert created.status_code == 201
        code = created.json()["code"]

        resp = client.post(
            "/api/wallet/redeem", json={"code": code, "pin": "4321"}, headers=auth(user),
        )
        assert resp.status_code == 200
        assert resp.json()["new_balance"] == 15.0

        again = client.post(
            "/api/wallet/redeem", json={"code": code, "pin": "4321"}, headers=auth(user),
        )
        assert again.status_code == 400

    def test_cash_request_and_payout(self, client, db_engine, user):
        teller = make_user(db_engine, role=Role.FINANCE)
        make_wallet(db_engine, user.id, balance=5000)
        resp = client.post("/api/wallet/withdrawals", json={"amount": 20}, headers=auth(user))
        assert resp.status_code == 201
        ref = resp.json()["ref"]
        assert ref in resp.json()["message"]

        assert client.get(f"/api/finance/withdrawals/{ref}", headers=auth(teller)).status_code == 200
        paid = client.post(f"/api/finance/withdrawals/{ref}/payout", headers=auth(teller))
        assert paid.json() == {"ref": ref, "amount": 20.0, "fee": 1.0, "payout": 19.0}
        assert client.get(f"/api/finance/withdrawals/{ref}", headers=auth(teller)).status_code == 404


# ===========================================================================
# Admin wallet management
# ===========================================================================
class TestAdminWalletRoutes:
    def test_status_actions(self, client, db_engine, admin, user):
        wallet = make_wallet(db_engine, user.id)
        url = f"/api/admin/wallets/{wallet.wallet_id}"
        assert client.post(f"{url}/suspend", headers=auth(admin)).json()["status"] == "suspended"
        assert client.post(f"{url}/suspend", headers=auth(admin)).status_code == 400
        assert client.post(f"{url}/reactivate", headers=auth(admin)).json()["status"] == "active"
        assert client.post(f"{url}/freeze", headers=auth(admin)).status_code == 404
        assert client.post("/api/admin/wallets/ZZZ999/suspend", headers=auth(admin)).status_code == 404

    def test_fee_deposit(self, client, db_engine, admin, user):
        other = make_user(db_engine)
        make_wallet(db_engine, user.id, balance=10000)
        ow = make_wallet(db_engine, other.id)
        assert client.post("/api/admin/fees/deposit", headers=auth(admin)).status_code == 400

        client.post(
            "/api/wallet/send",
            json={"recipient_wallet_id": ow.wallet_id, "amount": 10},
            headers=auth(user),
        )
        resp = client.post("/api/admin/fees/deposit", headers=auth(admin))
        assert resp.status_code == 200
        assert resp.json()["total_cents"] == 50
        assert len(client.get("/api/admin/fees/deposited", headers=auth(admin)).json()["fees"]) == 1

    def test_invalid_log_level(self, client, admin):
        resp = client.put("/api/admin/logs/level", json={"level": "LOUD"}, headers=auth(admin))
        assert resp.status_code == 400


# ===========================================================================
# Uploads & contact form
# ===========================================================================
class TestMediaAndContact:
    def test_upload_image(self, client, user, tmp_path, monkeypatch):
        monkeypatch.setattr(upload_service, "UPLOAD_DIR", tmp_path)
        resp = client.post(
            "/api/media",
            files={"file": ("front.png", PNG, "image/png")},
            data={"purpose": "kyc"},
            headers=auth(user),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["purpose"] == "kyc"
        assert (tmp_path / body["filename"]).exists()

    def test_upload_rejects_other_types(self, client, user, tmp_path, monkeypatch):
        monkeypatch.setattr(upload_service, "UPLOAD_DIR", tmp_path)
        resp = client.post(
            "/api/media",
            files={"file": ("page.html", b"<html>", "text/html")},
            headers=auth(user),
        )
        assert resp.status_code == 400

    def test_upload_unknown_purpose(self, client, user):
        resp = client.post(
            "/api/media",
            files={"file": ("front.png", PNG, "image/png")},
            data={"purpose": "avatar"},
            headers=auth(user),
        )
        assert resp.status_code == 400

    def test_anonymous_contact(self, client, admin):
        resp = client.post(
            "/api/contact",
            json={"email": "visitor@example.com", "subject": "Hi", "message": "Hello"},
        )
        assert resp.status_code == 201
        listed = client.get("/api/admin/contact", headers=auth(admin)).json()["messages"]
        assert [m["email"] for m in listed] == ["visitor@example.com"]
