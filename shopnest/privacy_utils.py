# shopnest/privacy_utils.py
"""
PII masking helpers for logging.

Every log line in the accounts service that mentions a person goes through
one of these:

- mask_email(email): jo**@example.com
- mask_phone(phone): +14****1234
- hash_user_id(user_id): first 8 chars of SHA-256

Verification codes are never logged (the stub email channel is the only
exception, and it is development-only).
"""

from __future__ import annotations

import re
from hashlib import sha256


# ============================================================
# Email Masking
# ============================================================

def mask_email(email: str) -> str:
    """
    Mask email for logs: john@example.com → jo**@example.com

    Examples:
        mask_email("john@example.com") → "jo**@example.com"
        mask_email("ab@example.com") → "**@example.com"
        mask_email(None) → "***"
        mask_email("invalid") → "***"
    """
    if not email or not isinstance(email, str):
        return "***"

    email = email.strip()

    if "@" not in email:
        return "***"

    local, domain = email.rsplit("@", 1)

    if len(local) <= 2:
        return f"**@{domain}"

    return f"{local[:2]}**@{domain}"


# ============================================================
# Phone Masking
# ============================================================

def mask_phone(phone: str) -> str:
    """
    Mask phone for logs: +14155551234 → +14****1234

    Examples:
        mask_phone("+14155551234") → "+14****1234"
        mask_phone("4155551234") → "******1234"
        mask_phone("12345") → "****"
        mask_phone(None) → "****"
    """
    if not phone or not isinstance(phone, str):
        return "****"

    phone = phone.strip()
    digits = re.sub(r'\D', '', phone)

    if len(digits) < 6:
        return "****"

    if phone.startswith('+'):
        return f"+{digits[:2]}****{digits[-4:]}"
    return f"******{digits[-4:]}"


# ============================================================
# User ID Hashing
# ============================================================

def hash_user_id(user_id: str) -> str:
    """
    Hash user ID for logs: full UUID → first 8 chars of SHA-256.

    Returns "anon" when there is no user_id.
    """
    if not user_id or not isinstance(user_id, str):
        return "anon"

    user_id = user_id.strip()
    if not user_id:
        return "anon"

    return sha256(user_id.encode("utf-8")).hexdigest()[:8]


def contains_raw_email(log_string: str) -> bool:
    """
    Heuristic check that a log line does not carry an unmasked email.

    Used by the test-suite against captured log records.
    """
    if not log_string or not isinstance(log_string, str):
        return False

    email_pattern = r'\b[A-Za-z0-9._%+-]{3,}@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'
    matches = re.findall(email_pattern, log_string)
    return any('**' not in m for m in matches)
