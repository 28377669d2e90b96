# shopnest/accounts/otp.py
"""
OTP generation and storage.

This module provides:
- OTP generation, hashing, and constant-time verification
- The OTPStore interface (put / get_and_validate)
- InMemoryOTPStore: process-local, lock-guarded (default)
- SupabaseOTPStore: shared otp_codes table for multi-process deployments

Store Contract:
- put(identifier, code, payload): insert or silently replace; TTL 10 minutes
- get_and_validate(identifier, code) → VerificationResult
    NOT_FOUND  no entry
    EXPIRED    now > expires_at; entry purged
    MISMATCH   entry kept, retry allowed within the TTL
    VALID      entry purged (single-use), payload released
- Expiry is enforced lazily at lookup time; no background sweep is required.

Security:
- OTP is 6 digits (000000-999999), zero-padded
- OTP hashed with SHA-256 before storage (never store plaintext)
- Constant-time hash comparison
"""

from __future__ import annotations

import hmac
import os
import secrets
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from hashlib import sha256
from typing import Any, Callable, Dict, Optional

from shopnest.db import get_supabase_client, TABLE_OTP_CODES
from shopnest.accounts.models import PendingVerification, utcnow
from shopnest.privacy_utils import mask_email

log = logging.getLogger("shopnest.otp")

Clock = Callable[[], datetime]

# ============================================================
# OTP Utilities
# ============================================================

def generate_otp() -> str:
    """
    Generate a secure 6-digit OTP.

    Returns:
        String of 6 digits (e.g., "123456", "000001").

    Security:
        Uses secrets module for cryptographically secure random numbers.
    """
    return f"{secrets.randbelow(1000000):06d}"


def hash_otp(otp: str) -> str:
    """Hash OTP with SHA-256 (hex digest)."""
    return sha256(otp.encode("utf-8")).hexdigest()


def verify_otp_hash(otp: str, otp_hash: str) -> bool:
    """Verify OTP against stored hash (constant-time comparison)."""
    return hmac.compare_digest(hash_otp(otp), otp_hash)


# ============================================================
# Verification Outcomes
# ============================================================

class VerificationStatus(str, Enum):
    VALID = "valid"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MISMATCH = "mismatch"


# User-facing messages per outcome
STATUS_MESSAGES = {
    VerificationStatus.VALID: "Verified successfully.",
    VerificationStatus.NOT_FOUND: "No verification code found, please request a new one.",
    VerificationStatus.EXPIRED: "Code expired, please request a new one.",
    VerificationStatus.MISMATCH: "Invalid code.",
}

# Error codes surfaced by the HTTP layer
STATUS_ERROR_CODES = {
    VerificationStatus.NOT_FOUND: "OTP_NOT_FOUND",
    VerificationStatus.EXPIRED: "OTP_EXPIRED",
    VerificationStatus.MISMATCH: "OTP_INVALID",
}


@dataclass
class VerificationResult:
    """Typed result of a verification attempt."""

    status: VerificationStatus
    payload: Optional[Dict[str, Any]] = None

    @property
    def valid(self) -> bool:
        return self.status is VerificationStatus.VALID

    @property
    def message(self) -> str:
        return STATUS_MESSAGES[self.status]

    @property
    def error_code(self) -> Optional[str]:
        return STATUS_ERROR_CODES.get(self.status)

    @classmethod
    def not_found(cls) -> "VerificationResult":
        return cls(VerificationStatus.NOT_FOUND)


# ============================================================
# Abstract Store
# ============================================================

class OTPStore(ABC):
    """
    Keyed table of pending verifications.

    At most one entry per identifier. Implementations must be safe to call
    from concurrent request handlers.
    """

    def __init__(self, clock: Clock | None = None):
        self.clock: Clock = clock or utcnow

    def _build_entry(self, identifier: str, code: str, payload: Optional[dict]) -> PendingVerification:
        now = self.clock()
        return PendingVerification(
            identifier=identifier,
            code_hash=hash_otp(code),
            payload=dict(payload or {}),
            created_at=now,
            expires_at=PendingVerification.compute_expiry(now),
        )

    def _check(self, entry: PendingVerification, code: str) -> VerificationStatus:
        if entry.is_expired(self.clock()):
            return VerificationStatus.EXPIRED
        if not verify_otp_hash(code, entry.code_hash):
            return VerificationStatus.MISMATCH
        return VerificationStatus.VALID

    @abstractmethod
    def put(self, identifier: str, code: str, payload: Optional[dict] = None) -> PendingVerification:
        """Insert or replace the entry for identifier."""

    @abstractmethod
    def get_and_validate(self, identifier: str, code: str) -> VerificationResult:
        """Look up, check expiry, compare code; consume on VALID or EXPIRED."""

    @abstractmethod
    def get_payload(self, identifier: str) -> Optional[dict]:
        """Payload of the outstanding entry (expired or not), without consuming it."""

    @abstractmethod
    def discard(self, identifier: str) -> bool:
        """Remove the entry for identifier. Returns True if one existed."""

    @abstractmethod
    def purge_expired(self) -> int:
        """Delete every expired entry. Returns the number removed."""

    def get_store_name(self) -> str:
        return self.__class__.__name__


# ============================================================
# In-Memory Implementation
# ============================================================

class InMemoryOTPStore(OTPStore):
    """
    Process-local OTP table guarded by a single mutex.

    A process restart drops every pending verification. Deployments running
    more than one worker must use SupabaseOTPStore instead.
    """

    def __init__(self, clock: Clock | None = None):
        super().__init__(clock)
        self._entries: Dict[str, PendingVerification] = {}
        self._lock = threading.Lock()

    def put(self, identifier: str, code: str, payload: Optional[dict] = None) -> PendingVerification:
        entry = self._build_entry(identifier, code, payload)
        with self._lock:
            replaced = identifier in self._entries
            self._entries[identifier] = entry
        if replaced:
            log.debug("Replaced pending verification for %s", mask_email(identifier))
        return entry

    def get_and_validate(self, identifier: str, code: str) -> VerificationResult:
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None:
                return VerificationResult.not_found()

            status = self._check(entry, code)
            if status is VerificationStatus.MISMATCH:
                return VerificationResult(status)

            del self._entries[identifier]

        if status is VerificationStatus.EXPIRED:
            return VerificationResult(status)
        return VerificationResult(status, payload=entry.payload)

    def get_payload(self, identifier: str) -> Optional[dict]:
        with self._lock:
            entry = self._entries.get(identifier)
            return dict(entry.payload) if entry else None

    def discard(self, identifier: str) -> bool:
        with self._lock:
            return self._entries.pop(identifier, None) is not None

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [k for k, v in self._entries.items() if v.is_expired(now)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ============================================================
# Supabase Implementation
# ============================================================

class StoreUnavailableError(RuntimeError):
    """The backing store could not be reached."""


class SupabaseOTPStore(OTPStore):
    """
    OTP table shared across processes (otp_codes).

    Columns: email (unique), otp_hash, payload (jsonb), created_at, expires_at.
    Replacement is an upsert on email, so "last put wins" holds across workers.
    """

    def __init__(self, client=None, clock: Clock | None = None):
        super().__init__(clock)
        self._client = client

    def _get_client(self):
        client = self._client or get_supabase_client()
        if client is None:
            raise StoreUnavailableError("Database unavailable for OTP store")
        return client

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except Exception as e:
            log.error("OTP store %s failed: %s", action, str(e)[:100])
            raise StoreUnavailableError(f"OTP store {action} failed") from e

    def put(self, identifier: str, code: str, payload: Optional[dict] = None) -> PendingVerification:
        entry = self._build_entry(identifier, code, payload)
        client = self._get_client()
        self._execute(client.table(TABLE_OTP_CODES).upsert({
            "email": entry.identifier,
            "otp_hash": entry.code_hash,
            "payload": entry.payload,
            "created_at": entry.created_at.isoformat(),
            "expires_at": entry.expires_at.isoformat(),
        }, on_conflict="email"), "upsert")
        return entry

    def _fetch(self, identifier: str) -> Optional[PendingVerification]:
        query = self._get_client().table(TABLE_OTP_CODES)\
            .select("*")\
            .eq("email", identifier)\
            .limit(1)
        result = self._execute(query, "lookup")
        if not result.data:
            return None
        return PendingVerification.from_db_row(result.data[0])

    def _delete(self, identifier: str, code_hash: Optional[str] = None) -> int:
        query = self._get_client().table(TABLE_OTP_CODES).delete().eq("email", identifier)
        if code_hash is not None:
            # Only consume the row we validated; a concurrent put wins
            query = query.eq("otp_hash", code_hash)
        result = self._execute(query, "delete")
        return len(result.data) if result.data else 0

    def get_and_validate(self, identifier: str, code: str) -> VerificationResult:
        entry = self._fetch(identifier)
        if entry is None:
            return VerificationResult.not_found()

        status = self._check(entry, code)
        if status is VerificationStatus.MISMATCH:
            return VerificationResult(status)

        deleted = self._delete(identifier, entry.code_hash)
        if status is VerificationStatus.EXPIRED:
            return VerificationResult(status)
        if deleted == 0:
            # Another request consumed or replaced the entry first
            return VerificationResult.not_found()
        return VerificationResult(status, payload=entry.payload)

    def get_payload(self, identifier: str) -> Optional[dict]:
        entry = self._fetch(identifier)
        return dict(entry.payload) if entry else None

    def discard(self, identifier: str) -> bool:
        return self._delete(identifier) > 0

    def purge_expired(self) -> int:
        now = self.clock().isoformat()
        query = self._get_client().table(TABLE_OTP_CODES)\
            .delete()\
            .lt("expires_at", now)
        result = self._execute(query, "purge")
        deleted = len(result.data) if result.data else 0
        if deleted > 0:
            log.info("Cleaned up %d expired OTP records", deleted)
        return deleted

    def count_expired(self) -> int:
        now = self.clock().isoformat()
        query = self._get_client().table(TABLE_OTP_CODES)\
            .select("email", count="exact")\
            .lt("expires_at", now)
        result = self._execute(query, "count")
        if getattr(result, "count", None) is not None:
            return result.count
        return len(result.data or [])


# ============================================================
# Store Factory
# ============================================================

def get_otp_store() -> OTPStore:
    """
    Build the OTP store named by OTP_STORE.

    Stores:
    - "memory" (default): InMemoryOTPStore
    - "supabase": SupabaseOTPStore
    """
    backend = os.getenv("OTP_STORE", "memory").lower().strip()

    if backend == "supabase":
        return SupabaseOTPStore()
    if backend != "memory":
        log.warning("Unknown OTP_STORE '%s', falling back to memory", backend)
    return InMemoryOTPStore()
