# tests/conftest.py
"""
Pytest configuration and shared fixtures.

- Rate limiter disabled for the whole session
- Controllable clock + in-memory OTP store
- Recording delivery channels (capture codes instead of sending them)
- Fake users table patched over the Supabase-backed user operations
- API client wired to the test gate through dependency_overrides
"""

import os
import sys
import uuid
from pathlib import Path
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Make "from shopnest.main import app" work when tests run from CI/workdir
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

os.environ.setdefault("JWT_SECRET", "test-secret-for-testing-only-not-production")

from shopnest.main import app  # noqa: E402
from shopnest.rate_limit import limiter  # noqa: E402
from shopnest.accounts.auth import hash_password  # noqa: E402
from shopnest.accounts.delivery import DeliveryChannel, DeliveryDispatcher  # noqa: E402
from shopnest.accounts.otp import InMemoryOTPStore  # noqa: E402
from shopnest.accounts.verification import VerificationGate, get_verification_gate  # noqa: E402


# ============================================================
# Rate Limiter Disabling
# ============================================================
# Disable rate limiting in tests only (prevents 429 when many POSTs run)
limiter.enabled = False


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: exercises the HTTP API end to end")
    config.addinivalue_line("markers", "unit: pure in-process tests")


# ============================================================
# Clock & Store
# ============================================================

class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryOTPStore(clock=clock)


# ============================================================
# Delivery
# ============================================================

class RecordingChannel(DeliveryChannel):
    """Captures codes instead of delivering them."""

    def __init__(self, kind="email", fail=False, raises=False):
        self.kind = kind
        self.fail = fail
        self.raises = raises
        self.sent = []

    def send(self, recipient, otp):
        if self.raises:
            raise RuntimeError("transport down")
        if self.fail:
            return False
        self.sent.append((recipient, otp))
        return True

    def last_code(self, recipient=None):
        for to, otp in reversed(self.sent):
            if recipient is None or to == recipient:
                return otp
        return None

    def get_provider_name(self):
        return f"recording-{self.kind}"


@pytest.fixture
def channel_factory():
    """The RecordingChannel class, for tests that need extra channels."""
    return RecordingChannel


@pytest.fixture
def email_channel():
    return RecordingChannel("email")


@pytest.fixture
def sms_channel():
    return RecordingChannel("sms")


@pytest.fixture
def gate(store, email_channel, sms_channel):
    return VerificationGate(store, DeliveryDispatcher(email_channel=email_channel, sms_channel=sms_channel))


# ============================================================
# Users Table Mock
# ============================================================

class FakeUserTable:
    """In-memory stand-in for the users table operations in shopnest.accounts.auth."""

    def __init__(self):
        self.rows = {}

    def add(self, email, password=None, **fields):
        row = {
            "id": str(uuid.uuid4()),
            "name": fields.pop("name", "Test User"),
            "email": email.strip().lower(),
            "role": fields.pop("role", "customer"),
            "phone": fields.pop("phone", None),
            "password_hash": hash_password(password) if password else None,
            "google_id": None,
            "store_name": None,
            "store_slug": None,
            "is_verified": True,
            "is_approved": False,
            "is_suspended": False,
            "created_at": "2025-01-01T00:00:00Z",
        }
        row.update(fields)
        self.rows[row["id"]] = row
        return row

    def get_user_by_email(self, email):
        email = email.strip().lower()
        return next((r for r in self.rows.values() if r["email"] == email), None)

    def get_user_by_id(self, user_id):
        return self.rows.get(user_id)

    def create_user(self, name, email, password_hash, role, phone=None,
                    store_name=None, store_slug=None, is_verified=True):
        if self.get_user_by_email(email):
            return None
        row = self.add(email, name=name, role=role, phone=phone, store_name=store_name,
                       store_slug=store_slug, is_verified=is_verified)
        row["password_hash"] = password_hash
        return row

    def mark_user_verified(self, user_id):
        if user_id not in self.rows:
            return False
        self.rows[user_id]["is_verified"] = True
        return True

    def update_user_password(self, user_id, password_hash):
        if user_id not in self.rows:
            return False
        self.rows[user_id]["password_hash"] = password_hash
        return True


@pytest.fixture
def user_table():
    """Patch every user operation the routes use with a FakeUserTable."""
    table = FakeUserTable()
    routes = "shopnest.accounts.auth_routes"

    with patch(f"{routes}.get_supabase_client", return_value=MagicMock()), \
         patch(f"{routes}.get_user_by_email", side_effect=table.get_user_by_email), \
         patch(f"{routes}.get_user_by_id", side_effect=table.get_user_by_id), \
         patch(f"{routes}.create_user", side_effect=table.create_user), \
         patch(f"{routes}.mark_user_verified", side_effect=table.mark_user_verified), \
         patch(f"{routes}.update_user_password", side_effect=table.update_user_password), \
         patch("shopnest.accounts.auth.get_user_by_id", side_effect=table.get_user_by_id):
        yield table


@pytest.fixture
def mock_supabase():
    """Mock Supabase client."""
    mock_client = MagicMock()

    # Default empty responses
    mock_client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.return_value.data = []
    mock_client.table.return_value.upsert.return_value.execute.return_value.data = []
    mock_client.table.return_value.delete.return_value.eq.return_value.execute.return_value.data = []
    mock_client.table.return_value.delete.return_value.eq.return_value.eq.return_value.execute.return_value.data = []

    with patch("shopnest.db.get_supabase_client", return_value=mock_client):
        yield mock_client


# ============================================================
# Test Clients
# ============================================================

@pytest.fixture
def api(gate, user_table):
    """TestClient with the gate and users table replaced by test doubles."""
    app.dependency_overrides[get_verification_gate] = lambda: gate
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def client():
    """Plain TestClient against the app."""
    with TestClient(app) as c:
        yield c
