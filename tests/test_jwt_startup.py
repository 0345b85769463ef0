"""
tests/test_jwt_startup — JWT Secret Validation at Startup
===========================================================
The API refuses to start when JWT_SECRET is missing, blank, too short, or
a known weak default.
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from madina.api.deps import _load_jwt_secret


class TestJWTSecretValidation:
    """``_load_jwt_secret()`` runs at import; here it is called directly so
    the already-imported routers keep their dependency objects."""

    def test_rejects_missing_secret(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("JWT_SECRET", None)
            with pytest.raises(RuntimeError, match="JWT_SECRET environment variable is not set"):
                _load_jwt_secret()

    def test_rejects_empty_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": ""}):
            with pytest.raises(RuntimeError, match="JWT_SECRET environment variable is not set"):
                _load_jwt_secret()

    def test_rejects_known_weak_default(self):
        with patch.dict(os.environ, {"JWT_SECRET": "madina-dev-secret-change-me"}):
            with pytest.raises(RuntimeError, match="known weak default"):
                _load_jwt_secret()

    def test_rejects_change_me_variant(self):
        with patch.dict(os.environ, {"JWT_SECRET": "change-me"}):
            with pytest.raises(RuntimeError, match="known weak default"):
                _load_jwt_secret()

    def test_rejects_short_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": "tooshort"}):
            with pytest.raises(RuntimeError, match="too short"):
                _load_jwt_secret()

    def test_accepts_strong_secret(self):
        good_secret = "a" * 64
        with patch.dict(os.environ, {"JWT_SECRET": good_secret}):
            assert _load_jwt_secret() == good_secret


class TestAccessTokens:
    """Tokens carry the user id in ``sub`` and are checked against the DB."""

    def test_token_claims(self, db_engine):
        import jwt

        from conftest import make_user
        from madina.api.deps import JWT_ALGORITHM, JWT_SECRET, create_access_token

        user = make_user(db_engine, "claims@example.com")
        claims = jwt.decode(create_access_token(user, hours=2), JWT_SECRET, algorithms=[JWT_ALGORITHM])
        assert claims["sub"] == str(user.id)
        assert claims["email"] == "claims@example.com"
        assert claims["role"] == "user"

    def test_expired_token_rejected(self, db_engine):
        from fastapi import HTTPException

        from conftest import make_user
        from madina.api.deps import _decode_bearer, create_access_token

        user = make_user(db_engine)
        token = create_access_token(user, hours=-1)
        with pytest.raises(HTTPException) as exc:
            _decode_bearer(f"Bearer {token}")
        assert exc.value.status_code == 401

    @pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer not-a-jwt"])
    def test_malformed_headers(self, header):
        from fastapi import HTTPException

        from madina.api.deps import _decode_bearer

        with pytest.raises(HTTPException) as exc:
            _decode_bearer(header)
        assert exc.value.status_code == 401
