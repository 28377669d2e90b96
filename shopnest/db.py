# shopnest/db.py
"""
Supabase client setup for the ShopNest accounts service.

This module provides:
- Singleton Supabase client instance
- Feature flag checks for auth endpoints and rate limiting
- Connection helpers with error handling

Environment Variables Required:
- SUPABASE_URL: Project URL (https://xxx.supabase.co)
- SUPABASE_KEY: Service role key

Feature Flags:
- AUTH_ENDPOINTS_ENABLED: Enable /api/auth/* (default: on)
- RATE_LIMIT_ENABLED: Enable slowapi limits (default: on)
"""

from __future__ import annotations

import os
import logging
from functools import lru_cache

log = logging.getLogger("shopnest.db")

# ============================================================
# Feature Flags
# ============================================================

def _flag_on(name: str, default: str = "off") -> bool:
    """Check if a feature flag is enabled."""
    val = os.getenv(name, default).lower()
    return val in ("on", "true", "1", "yes")


def is_auth_endpoints_enabled() -> bool:
    """Check if auth endpoints (/api/auth/*) are enabled."""
    return _flag_on("AUTH_ENDPOINTS_ENABLED", default="on")


def is_rate_limit_enabled() -> bool:
    """Check if IP-based rate limiting is enabled."""
    return _flag_on("RATE_LIMIT_ENABLED", default="on")


# ============================================================
# Supabase Client
# ============================================================

def _get_supabase_url() -> str:
    url = os.getenv("SUPABASE_URL", "").strip()
    if not url:
        log.warning("SUPABASE_URL not set - database operations will fail")
    return url


def _get_supabase_key() -> str:
    key = os.getenv("SUPABASE_KEY", "").strip()
    if not key:
        log.warning("SUPABASE_KEY not set - database operations will fail")
    return key


@lru_cache(maxsize=1)
def get_supabase_client():
    """
    Get singleton Supabase client instance.

    Returns:
        Supabase client or None if not configured.
    """
    url = _get_supabase_url()
    key = _get_supabase_key()

    if not url or not key:
        log.error("Supabase credentials not configured")
        return None

    from supabase import create_client

    try:
        client = create_client(url, key)
        log.info("Supabase client initialized successfully")
        return client
    except Exception as e:
        log.error("Failed to initialize Supabase client: %s", str(e)[:100])
        return None


# ============================================================
# Health Check
# ============================================================

def check_db_health() -> dict:
    """
    Check database connectivity for /health endpoint.

    Returns:
        Dict with status and optional error message.
    """
    client = get_supabase_client()

    if client is None:
        return {
            "database": "unavailable",
            "error": "Supabase client not initialized"
        }

    try:
        client.table(TABLE_USERS).select("id").limit(1).execute()
        return {"database": "ok"}
    except Exception as e:
        error_msg = str(e)[:100]
        log.warning("Database health check failed: %s", error_msg)
        return {
            "database": "degraded",
            "error": error_msg
        }


# ============================================================
# Table Names
# ============================================================

TABLE_USERS = "users"
TABLE_OTP_CODES = "otp_codes"
