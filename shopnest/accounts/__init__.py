# shopnest/accounts/__init__.py
"""
ShopNest Accounts Package

This package provides:
- Two-step registration and login (password, then emailed/texted code)
- Password reset over the same one-time-code machinery
- JWT session tokens for authenticated routes

Feature Flags (controlled in shopnest/db.py):
- AUTH_ENDPOINTS_ENABLED: /api/auth/*

Submodules:
- models: Pydantic models for users, pending verifications, request/response schemas
- otp: code generation, hashing, OTPStore (memory / Supabase)
- delivery: email and SMS channels, DeliveryDispatcher
- verification: VerificationGate (issue / verify / resend)
- auth: password hashing, JWT, user persistence, bearer dependencies
- auth_routes: FastAPI routes for /api/auth/*
"""

from __future__ import annotations

# Explicit exports for clean imports
__all__ = [
    # Models
    "User",
    "UserResponse",
    "PendingVerification",
    # OTP
    "OTPStore",
    "InMemoryOTPStore",
    "SupabaseOTPStore",
    "VerificationResult",
    "VerificationStatus",
    "generate_otp",
    "hash_otp",
    "verify_otp_hash",
    "get_otp_store",
    # Delivery
    "DeliveryDispatcher",
    "DeliveryReport",
    # Verification
    "VerificationGate",
    "get_verification_gate",
    # Auth
    "create_token",
    "verify_token",
    "create_user",
    "get_user_by_email",
    "get_user_by_id",
    "get_current_user_optional",
    "get_current_user_required",
    # Routes
    "auth_router",
]

# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    """Lazy import pattern for clean module loading."""

    if name in ("User", "UserResponse", "PendingVerification"):
        from . import models
        return getattr(models, name)

    if name in ("OTPStore", "InMemoryOTPStore", "SupabaseOTPStore",
                "VerificationResult", "VerificationStatus", "generate_otp",
                "hash_otp", "verify_otp_hash", "get_otp_store"):
        from . import otp
        return getattr(otp, name)

    if name in ("DeliveryDispatcher", "DeliveryReport"):
        from . import delivery
        return getattr(delivery, name)

    if name in ("VerificationGate", "get_verification_gate"):
        from . import verification
        return getattr(verification, name)

    if name in ("create_token", "verify_token", "create_user",
                "get_user_by_email", "get_user_by_id",
                "get_current_user_optional", "get_current_user_required"):
        from . import auth
        return getattr(auth, name)

    if name == "auth_router":
        from .auth_routes import router
        return router

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
