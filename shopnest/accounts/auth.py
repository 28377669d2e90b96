# shopnest/accounts/auth.py
"""
Authentication module.

This module provides:
- Password hashing (bcrypt)
- JWT token creation and verification (PyJWT)
- User persistence in the users table (supabase-py)
- FastAPI dependencies for authenticated routes

Environment Variables Required:
- JWT_SECRET: Random 32+ character string (REQUIRED)
- JWT_EXPIRY_HOURS: Token expiry in hours (default: 24)

Token Payload:
- user_id: User UUID
- email: User email
- role: User role
- exp / iat: Expiry / issued-at timestamps
"""

from __future__ import annotations

import os
import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import bcrypt
import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from shopnest.db import get_supabase_client, TABLE_USERS
from shopnest.privacy_utils import mask_email, hash_user_id

log = logging.getLogger("shopnest.auth")

# Bcrypt limit is 72 bytes; truncate to avoid errors
BCRYPT_MAX_PASSWORD_BYTES = 72

# ============================================================
# Configuration
# ============================================================

def _get_jwt_secret() -> str:
    """Get JWT secret from environment."""
    secret = os.getenv("JWT_SECRET", "").strip()
    if not secret:
        log.error("JWT_SECRET not set - authentication will fail")
    elif len(secret) < 32:
        log.warning("JWT_SECRET should be at least 32 characters")
    return secret


def _get_jwt_expiry_hours() -> int:
    """Get JWT expiry in hours from environment."""
    try:
        return int(os.getenv("JWT_EXPIRY_HOURS", "24"))
    except ValueError:
        return 24


# ============================================================
# Passwords
# ============================================================

def _pwd_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_PASSWORD_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_pwd_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_pwd_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the users table
        log.warning("Stored password hash is not a valid bcrypt hash")
        return False


# ============================================================
# Tokens
# ============================================================

def create_token(user_id: str, email: str, role: str) -> Tuple[str, datetime]:
    """
    Create signed JWT token for an authenticated user.

    Returns:
        Tuple of (token: str, expires_at: datetime).

    Raises:
        ValueError: If JWT_SECRET not configured.
    """
    secret = _get_jwt_secret()
    if not secret:
        raise ValueError("JWT_SECRET not configured")

    now = datetime.now(timezone.utc)
    expiry_hours = _get_jwt_expiry_hours()
    expires_at = now + timedelta(hours=expiry_hours)

    payload = {
        "user_id": user_id,
        "email": email,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }

    token = jwt.encode(payload, secret, algorithm="HS256")

    log.info("Token created for user %s (expires in %dh)", hash_user_id(user_id), expiry_hours)
    return token, expires_at


def verify_token(token: str) -> Optional[dict]:
    """
    Verify and decode JWT token.

    Returns:
        Decoded payload dict, or None if the token is invalid or expired.
    """
    secret = _get_jwt_secret()
    if not secret:
        log.error("Cannot verify token: JWT_SECRET not configured")
        return None

    try:
        return jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        log.info("Token expired")
        return None
    except jwt.InvalidTokenError as e:
        log.warning("Invalid token: %s", str(e)[:50])
        return None


# ============================================================
# User Operations
# ============================================================

def get_user_by_email(email: str) -> Optional[dict]:
    """User row by email (stored lowercased), or None."""
    client = get_supabase_client()
    if not client:
        return None

    try:
        result = client.table(TABLE_USERS)\
            .select("*")\
            .eq("email", email.strip().lower())\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None
    except Exception as e:
        log.error("User lookup failed: %s", str(e)[:100])
        return None


def get_user_by_id(user_id: str) -> Optional[dict]:
    """User row by UUID, or None."""
    client = get_supabase_client()
    if not client:
        return None

    try:
        result = client.table(TABLE_USERS)\
            .select("*")\
            .eq("id", user_id)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None
    except Exception as e:
        log.error("User lookup by ID failed: %s", str(e)[:100])
        return None


def create_user(
    name: str,
    email: str,
    password_hash: str,
    role: str,
    phone: Optional[str] = None,
    store_name: Optional[str] = None,
    store_slug: Optional[str] = None,
    is_verified: bool = True,
) -> Optional[dict]:
    """
    Insert a new user row.

    Returns:
        Created user dict, or None if the email is taken or the insert fails.
    """
    client = get_supabase_client()
    if not client:
        log.error("Database unavailable for user creation")
        return None

    email = email.strip().lower()

    try:
        existing = client.table(TABLE_USERS)\
            .select("id")\
            .eq("email", email)\
            .limit(1)\
            .execute()

        if existing.data:
            log.info("User already exists: %s", mask_email(email))
            return None

        result = client.table(TABLE_USERS).insert({
            "id": str(uuid.uuid4()),
            "name": name,
            "email": email,
            "password_hash": password_hash,
            "role": role,
            "phone": phone,
            "store_name": store_name,
            "store_slug": store_slug,
            "is_verified": is_verified,
            "is_approved": False,
            "is_suspended": False,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }).execute()

        if result.data:
            log.info("User created: %s (role=%s)", mask_email(email), role)
            return result.data[0]
        return None

    except Exception as e:
        log.error("User creation failed: %s", str(e)[:100])
        return None


def _update_user(user_id: str, changes: dict) -> bool:
    client = get_supabase_client()
    if not client:
        return False

    try:
        result = client.table(TABLE_USERS)\
            .update(changes)\
            .eq("id", user_id)\
            .execute()
        return bool(result.data)
    except Exception as e:
        log.error("User update failed: %s", str(e)[:100])
        return False


def mark_user_verified(user_id: str) -> bool:
    updated = _update_user(user_id, {"is_verified": True})
    if updated:
        log.info("User %s marked verified", hash_user_id(user_id))
    return updated


def update_user_password(user_id: str, password_hash: str) -> bool:
    updated = _update_user(user_id, {"password_hash": password_hash})
    if updated:
        log.info("Password updated for user %s", hash_user_id(user_id))
    return updated


# ============================================================
# FastAPI Dependencies
# ============================================================

bearer_scheme = HTTPBearer(auto_error=False)


def _auth_error(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": {"code": code, "message": message}},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[dict]:
    """Current user from the bearer token, or None for guests."""
    if not credentials:
        return None

    payload = verify_token(credentials.credentials)
    if not payload or not payload.get("user_id"):
        return None

    return get_user_by_id(payload["user_id"])


async def get_current_user_required(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    """
    Current user from the bearer token.

    Raises HTTPException 401 if not authenticated.
    """
    if not credentials:
        raise _auth_error("AUTH_REQUIRED", "Authentication required")

    payload = verify_token(credentials.credentials)
    if not payload:
        raise _auth_error("TOKEN_INVALID", "Invalid or expired token")

    user_id = payload.get("user_id")
    if not user_id:
        raise _auth_error("TOKEN_MALFORMED", "Token missing user_id")

    user = get_user_by_id(user_id)
    if not user:
        raise _auth_error("USER_NOT_FOUND", "User account not found")

    return user
