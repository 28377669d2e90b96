# shopnest/accounts/models.py
"""
Pydantic models for the ShopNest accounts service.

Tables (2):
1. users: Registered accounts (customers, sellers, employers, employees, admin)
2. otp_codes: Pending verifications (only when OTP_STORE=supabase)

Design Decisions:
- Pydantic v2 syntax (field_validator, ConfigDict)
- Emails lowercased before storage and lookup
- Phone normalization to E.164 format
- Verification codes stored as SHA-256 hashes, never plaintext
"""

from __future__ import annotations

import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


# ============================================================
# Constants
# ============================================================

# OTP settings
OTP_TTL_MINUTES = 10
OTP_LENGTH = 6

# Roles
SELF_SERVICE_ROLES = frozenset({"customer", "seller", "employee", "employer"})
DEFAULT_ROLE = "customer"

# Verification purposes (carried in every pending payload)
PURPOSE_REGISTER = "register"
PURPOSE_LOGIN = "login"
PURPOSE_RESET = "reset"
PURPOSES = frozenset({PURPOSE_REGISTER, PURPOSE_LOGIN, PURPOSE_RESET})

# 8-16 chars, at least one letter, one digit and one special character
PASSWORD_PATTERN = re.compile(r"^(?=.*[A-Za-z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,16}$")
PASSWORD_RULES_MESSAGE = (
    "Password must be 8-16 characters and contain at least one letter, "
    "one number, and one special character (@$!%*?&)"
)


def utcnow() -> datetime:
    """Timezone-aware UTC now (the store's default clock)."""
    return datetime.now(timezone.utc)


# ============================================================
# Normalization Helpers
# ============================================================

def _default_country_code() -> str:
    code = os.getenv("DEFAULT_COUNTRY_CODE", "+1").strip()
    return code if code.startswith("+") else f"+{code}"


def normalize_phone(phone: str | None) -> str | None:
    """
    Normalize phone to E.164 format.

    Args:
        phone: Raw phone input (may include spaces, dashes, parentheses).

    Returns:
        E.164 formatted phone (e.g., +14155551234) or None if invalid.

    Behavior:
        - If input starts with '+', validates as E.164 (+ followed by 7-15 digits)
        - If input is exactly 10 digits, prepends DEFAULT_COUNTRY_CODE (default +1)
        - All other inputs return None

    Examples:
        normalize_phone("+1 (415) 555-1234") → "+14155551234"
        normalize_phone("415-555-1234") → "+14155551234"
        normalize_phone("12345") → None
    """
    if not phone:
        return None

    cleaned = re.sub(r'[^\d+]', '', phone.strip())

    if not cleaned.startswith('+'):
        digits_only = re.sub(r'\D', '', phone)
        if len(digits_only) == 10:
            cleaned = f"{_default_country_code()}{digits_only}"
        else:
            return None

    if re.match(r'^\+\d{7,15}$', cleaned):
        return cleaned

    return None


def normalize_email(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def slugify_store_name(store_name: str) -> str:
    """'My Corner Shop!' → 'my-corner-shop'"""
    slug = re.sub(r"\s+", "-", store_name.strip().lower())
    return re.sub(r"[^a-z0-9-]", "", slug)


def validate_password_strength(password: str) -> str:
    if not isinstance(password, str) or not PASSWORD_PATTERN.match(password):
        raise ValueError(PASSWORD_RULES_MESSAGE)
    return password


# ============================================================
# PendingVerification
# ============================================================

class PendingVerification(BaseModel):
    """
    One outstanding verification for an identifier.

    Lifecycle:
    - Created on request-code (register / login / resend / reset)
    - Replaced wholesale by a newer request for the same identifier
    - Destroyed on successful verification, or on the first lookup
      that finds it expired
    """

    model_config = ConfigDict(from_attributes=True)

    identifier: str = Field(..., description="Lowercased email address")
    code_hash: str = Field(..., description="SHA-256 hash of the 6-digit code")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Opaque caller data")
    created_at: datetime = Field(..., description="Issuance timestamp (UTC)")
    expires_at: datetime = Field(..., description="created_at + 10 minutes")

    def is_expired(self, now: datetime) -> bool:
        """Expired strictly after expires_at."""
        return now > self.expires_at

    @staticmethod
    def compute_expiry(created_at: datetime) -> datetime:
        """Compute expiry timestamp (created_at + 10 minutes)."""
        return created_at + timedelta(minutes=OTP_TTL_MINUTES)

    @classmethod
    def from_db_row(cls, row: dict) -> "PendingVerification":
        """Create PendingVerification from an otp_codes row."""
        return cls(
            identifier=row["email"],
            code_hash=row["otp_hash"],
            payload=row.get("payload") or {},
            created_at=_parse_ts(row["created_at"]),
            expires_at=_parse_ts(row["expires_at"]),
        )


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ============================================================
# User Model
# ============================================================

class User(BaseModel):
    """Full user model with database fields."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="User UUID (primary key)")
    name: str
    email: str
    role: str = DEFAULT_ROLE
    phone: Optional[str] = None
    password_hash: Optional[str] = None
    google_id: Optional[str] = None
    store_name: Optional[str] = None
    store_slug: Optional[str] = None
    is_verified: bool = False
    is_approved: bool = False
    is_suspended: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_db_row(cls, row: dict) -> "User":
        created = row.get("created_at")
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            email=row["email"],
            role=row.get("role") or DEFAULT_ROLE,
            phone=row.get("phone"),
            password_hash=row.get("password_hash"),
            google_id=row.get("google_id"),
            store_name=row.get("store_name"),
            store_slug=row.get("store_slug"),
            is_verified=bool(row.get("is_verified", False)),
            is_approved=bool(row.get("is_approved", False)),
            is_suspended=bool(row.get("is_suspended", False)),
            created_at=_parse_ts(created) if created else None,
        )


class UserResponse(BaseModel):
    """Public-safe user shape (no hashes or flags used only server-side)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    email: str
    role: str
    phone: Optional[str] = None
    store_name: Optional[str] = Field(default=None, alias="storeName")
    store_slug: Optional[str] = Field(default=None, alias="storeSlug")
    is_verified: bool = Field(default=False, alias="isVerified")
    is_approved: bool = Field(default=False, alias="isApproved")

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            phone=user.phone,
            store_name=user.store_name,
            store_slug=user.store_slug,
            is_verified=user.is_verified,
            is_approved=user.is_approved,
        )


# ============================================================
# Request Schemas
# ============================================================

class _EmailInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr = Field(..., description="Account email address")

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email_field(cls, v):
        return normalize_email(v)


class _OtpInput(_EmailInput):
    otp: str = Field(..., description="6-digit verification code", min_length=OTP_LENGTH, max_length=OTP_LENGTH)

    @field_validator("otp", mode="before")
    @classmethod
    def normalize_otp(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if isinstance(v, str):
            cleaned = v.strip()
            if not cleaned.isdigit():
                raise ValueError("OTP must contain only digits")
            return cleaned
        return v


class RegisterInput(_EmailInput):
    """Input schema for POST /register."""

    name: str = Field(..., min_length=1, max_length=100)
    password: str
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")
    role: str = DEFAULT_ROLE
    phone: Optional[str] = None
    store_name: Optional[str] = Field(default=None, alias="storeName", max_length=100)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("password")
    @classmethod
    def check_password(cls, v):
        return validate_password_strength(v)

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v, info):
        if v is not None and v != info.data.get("password"):
            raise ValueError("Passwords do not match")
        return v

    @field_validator("role", mode="before")
    @classmethod
    def check_role(cls, v):
        if v is None:
            return DEFAULT_ROLE
        role = str(v).strip().lower()
        if role not in SELF_SERVICE_ROLES:
            raise ValueError("Invalid role")
        return role

    @field_validator("phone", mode="before")
    @classmethod
    def check_phone(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        normalized = normalize_phone(v)
        if normalized is None:
            raise ValueError("Please provide a valid phone number")
        return normalized


class LoginInput(_EmailInput):
    """Input schema for POST /login."""

    password: str = Field(..., min_length=1)


class VerifyOTPInput(_OtpInput):
    """Input schema for /verify-register and /verify-login."""


class ResendOTPInput(_EmailInput):
    """Input schema for POST /resend-otp."""

    phone: Optional[str] = None
    context: Optional[str] = None

    @field_validator("phone", mode="before")
    @classmethod
    def check_phone(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        normalized = normalize_phone(v)
        if normalized is None:
            raise ValueError("Please provide a valid phone number")
        return normalized

    @field_validator("context", mode="before")
    @classmethod
    def check_context(cls, v):
        if v is None:
            return None
        context = str(v).strip().lower()
        if context not in PURPOSES:
            raise ValueError(f"context must be one of: {', '.join(sorted(PURPOSES))}")
        return context


class ForgotPasswordInput(_EmailInput):
    """Input schema for POST /forgot-password."""


class ResetPasswordInput(_OtpInput):
    """Input schema for POST /reset-password."""

    password: str
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")

    @field_validator("password")
    @classmethod
    def check_password(cls, v):
        return validate_password_strength(v)

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v, info):
        if v is not None and v != info.data.get("password"):
            raise ValueError("Passwords do not match")
        return v


# ============================================================
# Response Schemas
# ============================================================

class VerificationSent(BaseModel):
    email: bool
    sms: bool


class VerificationRequiredResponse(BaseModel):
    """Response for /register and /login (step 1)."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "Verification code sent"
    requires_verification: bool = Field(default=True, alias="requiresVerification")
    verification_sent: VerificationSent = Field(..., alias="verificationSent")


class ResendOTPResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "New verification code sent"
    verification_sent: VerificationSent = Field(..., alias="verificationSent")


class VerifyRegisterResponse(BaseModel):
    success: bool = True
    message: str = "Account verified and created successfully"
    user: UserResponse


class VerifyLoginResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "Login successful"
    token: str
    expires_at: str = Field(..., alias="expiresAt")
    user: UserResponse


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ProfileResponse(BaseModel):
    success: bool = True
    user: UserResponse
