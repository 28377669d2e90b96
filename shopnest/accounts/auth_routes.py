# shopnest/accounts/auth_routes.py
"""
Authentication routes.

Endpoints (all under /api/auth):
- POST /register         Validate, stash the registration, send a code
- POST /verify-register  Check the code, create the verified user
- POST /login            Check the password, send a code
- POST /verify-login     Check the code, issue a session token
- POST /resend-otp       Re-send a code for the verification in progress
- POST /forgot-password  Send a reset code (anti-enumeration response)
- POST /reset-password   Check the reset code, store the new password
- GET  /me               Current user from the bearer token
- GET  /status           Internal feature-flag and provider status

Feature Flag:
- AUTH_ENDPOINTS_ENABLED: routes answer 503 AUTH_DISABLED when "off"

Rate Limits (per IP, slowapi):
┌──────────────────────────────────────────────────────────────┐
│ Endpoint                                    │ IP Limit       │
├──────────────────────────────────────────────────────────────┤
│ /register /login /resend-otp /forgot-password │ 5/min        │
│ /verify-register /verify-login /reset-password │ 10/min      │
└──────────────────────────────────────────────────────────────┘

Security:
- Login codes are issued only after the password matches
- Codes are tagged with a purpose; a login code cannot finish a registration
- No raw PII in logs
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from shopnest.db import get_supabase_client, is_auth_endpoints_enabled
from shopnest.rate_limit import limiter, ISSUE_LIMIT, VERIFY_LIMIT
from shopnest.privacy_utils import mask_email, hash_user_id
from shopnest.accounts.auth import (
    create_token,
    create_user,
    get_current_user_required,
    get_user_by_email,
    get_user_by_id,
    hash_password,
    mark_user_verified,
    update_user_password,
    verify_password,
)
from shopnest.accounts.models import (
    PURPOSE_LOGIN,
    PURPOSE_REGISTER,
    PURPOSE_RESET,
    ForgotPasswordInput,
    LoginInput,
    MessageResponse,
    ProfileResponse,
    RegisterInput,
    ResendOTPInput,
    ResendOTPResponse,
    ResetPasswordInput,
    User,
    UserResponse,
    VerificationRequiredResponse,
    VerificationSent,
    VerifyLoginResponse,
    VerifyOTPInput,
    VerifyRegisterResponse,
    slugify_store_name,
)
from shopnest.accounts.otp import VerificationResult
from shopnest.accounts.verification import IssueResult, VerificationGate, get_verification_gate

log = logging.getLogger("shopnest.auth_routes")

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"
FORGOT_PASSWORD_MESSAGE = "If that email exists, a verification code has been sent."

# ============================================================
# Router Setup
# ============================================================

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


# ============================================================
# Guards & Error Helpers
# ============================================================

def check_auth_enabled():
    """
    Dependency to check if auth endpoints are enabled.

    Raises HTTPException 503 if AUTH_ENDPOINTS_ENABLED is off.
    """
    if not is_auth_endpoints_enabled():
        log.info("Auth endpoints disabled (AUTH_ENDPOINTS_ENABLED=off)")
        raise _error(503, "AUTH_DISABLED", "Authentication endpoints are currently disabled")


def _error(status: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status, detail={"error": {"code": code, "message": message}})


def _require_database():
    if get_supabase_client() is None:
        log.error("Database unavailable for auth request")
        raise _error(503, "SERVICE_UNAVAILABLE", "Service temporarily unavailable. Please try again.")


def _verification_failed(result: VerificationResult) -> HTTPException:
    return _error(400, result.error_code, result.message)


def _issue_failed(issued: IssueResult) -> HTTPException:
    if issued.error_code == "OTP_NOT_FOUND":
        return _error(400, issued.error_code, issued.message)
    return _error(503, issued.error_code or "DELIVERY_FAILED", issued.message)


def _sent(issued: IssueResult) -> VerificationSent:
    return VerificationSent(**issued.report.as_dict())


# ============================================================
# Registration
# ============================================================

@router.post(
    "/register",
    response_model=VerificationRequiredResponse,
    responses={
        400: {"description": "Validation error or email already registered"},
        429: {"description": "Rate limit exceeded"},
        503: {"description": "Code could not be delivered, or auth disabled"},
    },
    summary="Register (step 1)",
)
@limiter.limit(ISSUE_LIMIT)
async def register_endpoint(
    body: RegisterInput,
    request: Request,
    _: None = Depends(check_auth_enabled),
    gate: VerificationGate = Depends(get_verification_gate),
) -> VerificationRequiredResponse:
    """
    Start a registration.

    Nothing is written to the users table yet: the validated registration
    (with the password already hashed) rides in the OTP payload until the
    code is confirmed.
    """
    email = body.email
    _require_database()

    if await run_in_threadpool(get_user_by_email, email):
        log.info("Registration refused, email taken: %s", mask_email(email))
        raise _error(400, "USER_EXISTS", "User already exists")

    payload = {
        "purpose": PURPOSE_REGISTER,
        "name": body.name,
        "email": email,
        "password_hash": await run_in_threadpool(hash_password, body.password),
        "role": body.role,
        "phone": body.phone,
        "store_name": body.store_name,
    }

    issued = await run_in_threadpool(gate.issue, email, payload, body.phone)
    if not issued.issued:
        raise _issue_failed(issued)

    log.info("Registration pending verification for %s (role=%s)", mask_email(email), body.role)
    return VerificationRequiredResponse(message=issued.message, verification_sent=_sent(issued))


@router.post(
    "/verify-register",
    response_model=VerifyRegisterResponse,
    status_code=201,
    responses={
        400: {"description": "Code not found, expired, or invalid"},
        429: {"description": "Rate limit exceeded"},
    },
    summary="Register (step 2)",
)
@limiter.limit(VERIFY_LIMIT)
async def verify_register_endpoint(
    body: VerifyOTPInput,
    request: Request,
    _: None = Depends(check_auth_enabled),
    gate: VerificationGate = Depends(get_verification_gate),
) -> VerifyRegisterResponse:
    email = body.email
    _require_database()

    result = await run_in_threadpool(gate.verify, email, body.otp, PURPOSE_REGISTER)
    if not result.valid:
        raise _verification_failed(result)

    data = result.payload or {}

    # Someone may have completed a registration for this email meanwhile
    if await run_in_threadpool(get_user_by_email, email):
        raise _error(400, "USER_EXISTS", "User already exists")

    role = data.get("role")
    store_name = data.get("store_name")
    store_slug = slugify_store_name(store_name) if role == "seller" and store_name else None

    row = await run_in_threadpool(
        create_user,
        name=data.get("name", ""),
        email=email,
        password_hash=data.get("password_hash"),
        role=role,
        phone=data.get("phone"),
        store_name=store_name,
        store_slug=store_slug,
        is_verified=True,
    )
    if not row:
        raise _error(500, "REGISTRATION_FAILED", "Registration failed. Please try again.")

    user = User.from_db_row(row)
    log.info("Registration complete for %s (user=%s)", mask_email(email), hash_user_id(user.id))
    return VerifyRegisterResponse(user=UserResponse.from_user(user))


# ============================================================
# Login
# ============================================================

@router.post(
    "/login",
    response_model=VerificationRequiredResponse,
    responses={
        401: {"description": "Invalid credentials or Google-only account"},
        403: {"description": "Account suspended"},
        429: {"description": "Rate limit exceeded"},
        503: {"description": "Code could not be delivered, or auth disabled"},
    },
    summary="Login (step 1)",
)
@limiter.limit(ISSUE_LIMIT)
async def login_endpoint(
    body: LoginInput,
    request: Request,
    _: None = Depends(check_auth_enabled),
    gate: VerificationGate = Depends(get_verification_gate),
) -> VerificationRequiredResponse:
    """
    Check the password, then send a login code.

    A wrong password never issues a code, and never says which half of the
    credentials was wrong.
    """
    email = body.email
    _require_database()

    row = await run_in_threadpool(get_user_by_email, email)
    if not row:
        log.info("Login failed for %s: unknown email", mask_email(email))
        raise _error(401, "INVALID_CREDENTIALS", INVALID_CREDENTIALS_MESSAGE)

    user = User.from_db_row(row)

    if not user.password_hash and user.google_id:
        raise _error(401, "USE_GOOGLE_SIGNIN", "This account uses Google sign-in. Please continue with Google.")

    if not await run_in_threadpool(verify_password, body.password, user.password_hash):
        log.info("Login failed for %s: bad password", mask_email(email))
        raise _error(401, "INVALID_CREDENTIALS", INVALID_CREDENTIALS_MESSAGE)

    if user.is_suspended:
        raise _error(403, "ACCOUNT_SUSPENDED", "Your account has been suspended. Please contact support.")

    payload = {"purpose": PURPOSE_LOGIN, "user_id": user.id, "email": email, "phone": user.phone}

    issued = await run_in_threadpool(gate.issue, email, payload, user.phone)
    if not issued.issued:
        raise _issue_failed(issued)

    return VerificationRequiredResponse(message=issued.message, verification_sent=_sent(issued))


@router.post(
    "/verify-login",
    response_model=VerifyLoginResponse,
    responses={
        400: {"description": "Code not found, expired, or invalid"},
        403: {"description": "Account suspended"},
        429: {"description": "Rate limit exceeded"},
    },
    summary="Login (step 2)",
)
@limiter.limit(VERIFY_LIMIT)
async def verify_login_endpoint(
    body: VerifyOTPInput,
    request: Request,
    _: None = Depends(check_auth_enabled),
    gate: VerificationGate = Depends(get_verification_gate),
) -> VerifyLoginResponse:
    email = body.email
    _require_database()

    result = await run_in_threadpool(gate.verify, email, body.otp, PURPOSE_LOGIN)
    if not result.valid:
        raise _verification_failed(result)

    row = await run_in_threadpool(get_user_by_id, (result.payload or {}).get("user_id", ""))
    if not row:
        log.warning("Verified login code for %s but user row is gone", mask_email(email))
        raise _error(401, "INVALID_CREDENTIALS", INVALID_CREDENTIALS_MESSAGE)

    user = User.from_db_row(row)
    if user.is_suspended:
        raise _error(403, "ACCOUNT_SUSPENDED", "Your account has been suspended. Please contact support.")

    if not user.is_verified and await run_in_threadpool(mark_user_verified, user.id):
        user.is_verified = True

    try:
        token, expires_at = create_token(user.id, user.email, user.role)
    except ValueError as e:
        log.error("Token creation failed: %s", e)
        raise _error(500, "AUTH_FAILED", "Authentication failed. Please try again.")

    log.info("Login complete for user %s", hash_user_id(user.id))
    return VerifyLoginResponse(
        token=token,
        expires_at=expires_at.isoformat(),
        user=UserResponse.from_user(user),
    )


# ============================================================
# Resend
# ============================================================

@router.post(
    "/resend-otp",
    response_model=ResendOTPResponse,
    responses={
        400: {"description": "No verification in progress"},
        429: {"description": "Rate limit exceeded"},
        503: {"description": "Code could not be delivered"},
    },
    summary="Resend verification code",
)
@limiter.limit(ISSUE_LIMIT)
async def resend_otp_endpoint(
    body: ResendOTPInput,
    request: Request,
    _: None = Depends(check_auth_enabled),
    gate: VerificationGate = Depends(get_verification_gate),
) -> ResendOTPResponse:
    """
    Send a fresh code for the verification already in progress.

    The previous code stops working. Without a pending registration, login
    or reset for this email nothing is sent. A phone in the body is used
    only for a pending registration.
    """
    issued = await run_in_threadpool(gate.resend, body.email, body.phone, body.context)
    if not issued.issued:
        raise _issue_failed(issued)

    return ResendOTPResponse(message=issued.message, verification_sent=_sent(issued))


# ============================================================
# Password Reset
# ============================================================

@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Request password reset code",
)
@limiter.limit(ISSUE_LIMIT)
async def forgot_password_endpoint(
    body: ForgotPasswordInput,
    request: Request,
    _: None = Depends(check_auth_enabled),
    gate: VerificationGate = Depends(get_verification_gate),
) -> MessageResponse:
    """Anti-enumeration: same response whether the email exists or not."""
    email = body.email
    row = await run_in_threadpool(get_user_by_email, email)

    if row and not row.get("is_suspended"):
        phone = row.get("phone")
        payload = {"purpose": PURPOSE_RESET, "user_id": str(row["id"]), "email": email, "phone": phone}
        issued = await run_in_threadpool(gate.issue, email, payload, phone)
        if not issued.issued:
            log.warning("Reset code for %s could not be delivered", mask_email(email))
    else:
        log.info("Reset requested for unknown or suspended account %s", mask_email(email))

    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    responses={400: {"description": "Code not found, expired, or invalid"}},
    summary="Reset password with code",
)
@limiter.limit(VERIFY_LIMIT)
async def reset_password_endpoint(
    body: ResetPasswordInput,
    request: Request,
    _: None = Depends(check_auth_enabled),
    gate: VerificationGate = Depends(get_verification_gate),
) -> MessageResponse:
    email = body.email
    _require_database()

    result = await run_in_threadpool(gate.verify, email, body.otp, PURPOSE_RESET)
    if not result.valid:
        raise _verification_failed(result)

    user_id = (result.payload or {}).get("user_id", "")
    password_hash = await run_in_threadpool(hash_password, body.password)
    if not await run_in_threadpool(update_user_password, user_id, password_hash):
        raise _error(500, "RESET_FAILED", "Password reset failed. Please try again.")

    return MessageResponse(message="Password reset successful. Please log in with your new password.")


# ============================================================
# Profile & Status
# ============================================================

@router.get("/me", response_model=ProfileResponse, summary="Current user")
async def me_endpoint(
    _: None = Depends(check_auth_enabled),
    current_user: dict = Depends(get_current_user_required),
) -> ProfileResponse:
    return ProfileResponse(user=UserResponse.from_user(User.from_db_row(current_user)))


@router.get(
    "/status",
    response_model=dict,
    include_in_schema=False,  # Internal endpoint
)
async def auth_status(gate: VerificationGate = Depends(get_verification_gate)):
    """
    Internal endpoint to check auth system status.

    Not included in OpenAPI schema.
    """
    sms_channel = gate.dispatcher.sms_channel
    return {
        "auth_enabled": is_auth_endpoints_enabled(),
        "otp_store": gate.store.get_store_name(),
        "email_provider": gate.dispatcher.email_channel.get_provider_name(),
        "sms_provider": sms_channel.get_provider_name() if sms_channel else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
