# tests/test_auth.py
"""
Authentication helper tests.

Tests for:
- bcrypt password hashing (72-byte truncation, malformed hashes)
- JWT issuance and validation
- Supabase-backed user operations against a mocked client
- Bearer dependencies

Run with: pytest tests/test_auth.py -v
"""

import os
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from shopnest.accounts.auth import (
    create_token,
    create_user,
    get_current_user_optional,
    get_current_user_required,
    get_user_by_email,
    hash_password,
    mark_user_verified,
    verify_password,
    verify_token,
)

pytestmark = pytest.mark.unit

SECRET = "test-secret-for-testing-only-not-production"
USER_ID = "550e8400-e29b-41d4-a716-446655440000"


# ============================================================
# Passwords
# ============================================================

class TestPasswords:

    def test_hash_and_verify(self):
        hashed = hash_password("Abc123!@")
        assert hashed != "Abc123!@"
        assert hashed.startswith("$2")
        assert verify_password("Abc123!@", hashed) is True
        assert verify_password("Abc123!#", hashed) is False

    def test_long_passwords_are_truncated_consistently(self):
        base = "a" * 72
        hashed = hash_password(base + "suffix-one")
        assert verify_password(base + "suffix-two", hashed) is True

    def test_missing_or_malformed_hash(self):
        assert verify_password("Abc123!@", None) is False
        assert verify_password("Abc123!@", "not-a-bcrypt-hash") is False


# ============================================================
# JWT
# ============================================================

class TestTokens:

    def test_token_round_trip(self):
        with patch.dict(os.environ, {"JWT_SECRET": SECRET}):
            token, expires_at = create_token(USER_ID, "a@x.com", "seller")
            payload = verify_token(token)

        assert payload["user_id"] == USER_ID
        assert payload["email"] == "a@x.com"
        assert payload["role"] == "seller"
        assert expires_at > datetime.now(timezone.utc)

    def test_expiry_hours_from_env(self):
        with patch.dict(os.environ, {"JWT_SECRET": SECRET, "JWT_EXPIRY_HOURS": "2"}):
            _, expires_at = create_token(USER_ID, "a@x.com", "customer")

        delta = expires_at - datetime.now(timezone.utc)
        assert timedelta(hours=1, minutes=59) < delta <= timedelta(hours=2)

    def test_missing_secret_raises(self):
        with patch.dict(os.environ, {"JWT_SECRET": ""}):
            with pytest.raises(ValueError):
                create_token(USER_ID, "a@x.com", "customer")

    def test_wrong_secret_rejected(self):
        token = jwt.encode({"user_id": USER_ID}, "another-secret-of-sufficient-length!!", algorithm="HS256")
        with patch.dict(os.environ, {"JWT_SECRET": SECRET}):
            assert verify_token(token) is None

    def test_expired_token_rejected(self):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode({"user_id": USER_ID, "exp": int(past.timestamp())}, SECRET, algorithm="HS256")
        with patch.dict(os.environ, {"JWT_SECRET": SECRET}):
            assert verify_token(token) is None

    def test_garbage_rejected(self):
        with patch.dict(os.environ, {"JWT_SECRET": SECRET}):
            assert verify_token("not.a.token") is None


# ============================================================
# User Operations
# ============================================================

class TestUserOperations:

    def test_create_user_inserts_row(self):
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.return_value.data = []
        client.table.return_value.insert.return_value.execute.return_value.data = [{"id": USER_ID}]

        with patch("shopnest.accounts.auth.get_supabase_client", return_value=client):
            row = create_user("A", " A@X.com ", "hash", "seller", store_name="My Shop", store_slug="my-shop")

        assert row == {"id": USER_ID}
        inserted = client.table.return_value.insert.call_args[0][0]
        assert inserted["email"] == "a@x.com"
        assert inserted["is_verified"] is True
        assert inserted["store_slug"] == "my-shop"

    def test_create_user_refuses_duplicate(self):
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.return_value.data = [{"id": USER_ID}]

        with patch("shopnest.accounts.auth.get_supabase_client", return_value=client):
            assert create_user("A", "a@x.com", "hash", "customer") is None
        client.table.return_value.insert.assert_not_called()

    def test_lookup_without_database_returns_none(self):
        with patch("shopnest.accounts.auth.get_supabase_client", return_value=None):
            assert get_user_by_email("a@x.com") is None

    def test_lookup_error_returns_none(self):
        client = MagicMock()
        client.table.side_effect = RuntimeError("connection reset")
        with patch("shopnest.accounts.auth.get_supabase_client", return_value=client):
            assert get_user_by_email("a@x.com") is None

    def test_mark_user_verified(self):
        client = MagicMock()
        client.table.return_value.update.return_value.eq.return_value.execute.return_value.data = [{"id": USER_ID}]
        with patch("shopnest.accounts.auth.get_supabase_client", return_value=client):
            assert mark_user_verified(USER_ID) is True
        client.table.return_value.update.assert_called_with({"is_verified": True})


# ============================================================
# Bearer Dependencies
# ============================================================

def _bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestBearerDependencies:

    def test_required_without_credentials(self):
        with pytest.raises(HTTPException) as exc:
            asyncio.run(get_current_user_required(None))
        assert exc.value.status_code == 401
        assert exc.value.detail["error"]["code"] == "AUTH_REQUIRED"

    def test_required_with_bad_token(self):
        with patch.dict(os.environ, {"JWT_SECRET": SECRET}):
            with pytest.raises(HTTPException) as exc:
                asyncio.run(get_current_user_required(_bearer("garbage")))
        assert exc.value.detail["error"]["code"] == "TOKEN_INVALID"

    def test_required_resolves_user(self):
        with patch.dict(os.environ, {"JWT_SECRET": SECRET}):
            token, _ = create_token(USER_ID, "a@x.com", "customer")
            with patch("shopnest.accounts.auth.get_user_by_id", return_value={"id": USER_ID}):
                user = asyncio.run(get_current_user_required(_bearer(token)))
        assert user == {"id": USER_ID}

    def test_optional_guest(self):
        assert asyncio.run(get_current_user_optional(None)) is None
