# tests/test_privacy_utils.py
"""
PII masking tests, including a check over the logs an entire register
flow produces.
"""

import logging

import pytest

from shopnest.privacy_utils import contains_raw_email, hash_user_id, mask_email, mask_phone


class TestPrivacyUtils:
    """Tests for privacy utility functions."""

    def test_mask_email(self):
        assert mask_email("john@example.com") == "jo**@example.com"
        assert mask_email("ab@example.com") == "**@example.com"
        assert mask_email("invalid") == "***"
        assert mask_email(None) == "***"

    def test_mask_phone(self):
        assert mask_phone("+14155551234") == "+14****1234"
        assert mask_phone("4155551234") == "******1234"
        assert mask_phone("12345") == "****"
        assert mask_phone(None) == "****"

    def test_hash_user_id(self):
        uid = "550e8400-e29b-41d4-a716-446655440000"
        hashed = hash_user_id(uid)
        assert len(hashed) == 8
        assert hashed.isalnum()
        assert hash_user_id(uid) == hashed
        assert hash_user_id(None) == "anon"
        assert hash_user_id("   ") == "anon"

    def test_contains_raw_email(self):
        assert contains_raw_email("lookup for john@example.com failed") is True
        assert contains_raw_email("lookup for jo**@example.com failed") is False
        assert contains_raw_email("") is False


@pytest.mark.integration
def test_register_flow_logs_no_raw_email(api, email_channel, caplog):
    with caplog.at_level(logging.DEBUG, logger="shopnest"):
        api.post("/api/auth/register", json={"name": "A", "email": "shopper@example.com", "password": "Abc123!@"})
        api.post("/api/auth/verify-register", json={"email": "shopper@example.com", "otp": email_channel.last_code()})

    assert caplog.records
    for record in caplog.records:
        assert not contains_raw_email(record.getMessage()), record.getMessage()
