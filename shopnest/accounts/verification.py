# shopnest/accounts/verification.py
"""
Verification gate: issue, verify and resend one-time codes.

Flow:
    issue   → generate_otp → store.put → dispatcher.send
    verify  → store.get_and_validate → payload released to the caller
    resend  → reuse the outstanding payload → issue

The gate never performs the side effect itself (creating a user, issuing a
token, changing a password); route handlers do that with the payload it
returns.

Per-identifier state:
    [no entry]  --issue-->            [pending]
    [pending]   --correct code-->     [no entry]   payload released
    [pending]   --wrong code-->       [pending]    MISMATCH
    [pending]   --after 10 minutes--> [expired]
    [expired]   --any verify-->       [no entry]   EXPIRED
    [pending]   --issue again-->      [pending]    old code dead
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from shopnest.accounts.delivery import DeliveryDispatcher, DeliveryReport
from shopnest.accounts.models import PURPOSE_REGISTER
from shopnest.accounts.otp import (
    OTPStore,
    VerificationResult,
    generate_otp,
    get_otp_store,
)
from shopnest.privacy_utils import mask_email

log = logging.getLogger("shopnest.verification")

DELIVERY_FAILED_MESSAGE = "We couldn't deliver your verification code. Please try again."
NO_PENDING_MESSAGE = "No verification in progress. Please start again."


@dataclass
class IssueResult:
    """Outcome of issuing (or re-issuing) a code."""

    issued: bool
    report: DeliveryReport = field(default_factory=DeliveryReport)
    message: str = ""
    error_code: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.issued and self.report.any_delivered


class VerificationGate:
    """
    Orchestrates the OTP store and the delivery dispatcher.

    Both collaborators are injected so the store can be swapped for a shared
    backend without touching call sites.
    """

    def __init__(self, store: OTPStore, dispatcher: DeliveryDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    def issue(self, identifier: str, payload: dict, phone: Optional[str] = None) -> IssueResult:
        """
        Generate, store and deliver a fresh code for identifier.

        Any previous code for the same identifier stops working. If every
        attempted channel fails, the new entry is discarded so no code is
        left valid that the user cannot read.
        """
        otp = generate_otp()
        self.store.put(identifier, otp, payload)

        report = self.dispatcher.send(identifier, otp, phone=phone)

        if not report.any_delivered:
            self.store.discard(identifier)
            log.error(
                "OTP delivery failed on all channels for %s (purpose=%s); entry discarded",
                mask_email(identifier), payload.get("purpose"),
            )
            return IssueResult(
                issued=False, report=report, message=DELIVERY_FAILED_MESSAGE, error_code="DELIVERY_FAILED",
            )

        log.info(
            "OTP issued for %s (purpose=%s, email=%s, sms=%s)",
            mask_email(identifier), payload.get("purpose"), report.email, report.sms,
        )
        return IssueResult(issued=True, report=report, message=f"Verification code sent via {report.channels}")

    def verify(self, identifier: str, otp: str, purpose: Optional[str] = None) -> VerificationResult:
        """
        Check a submitted code.

        When purpose is given, a pending entry issued for a different purpose
        is reported as NOT_FOUND and left untouched.
        """
        if purpose is not None:
            pending = self.store.get_payload(identifier)
            if pending is not None and pending.get("purpose") != purpose:
                log.info(
                    "OTP purpose mismatch for %s (pending=%s, requested=%s)",
                    mask_email(identifier), pending.get("purpose"), purpose,
                )
                return VerificationResult.not_found()

        result = self.store.get_and_validate(identifier, otp)

        if result.valid and purpose is not None and (result.payload or {}).get("purpose") != purpose:
            # Entry was replaced between the purpose check and the lookup
            return VerificationResult.not_found()

        if result.valid:
            log.info("OTP verified for %s (purpose=%s)", mask_email(identifier), purpose)
        else:
            log.info("OTP verification failed for %s: %s", mask_email(identifier), result.status.value)
        return result

    def resend(self, identifier: str, phone: Optional[str] = None, purpose: Optional[str] = None) -> IssueResult:
        """
        Issue a fresh code carrying the outstanding entry's payload.

        phone may replace the remembered phone only while a registration is
        pending; login and reset codes go to the account's stored phone.
        Without an outstanding entry (or with one for another purpose)
        nothing is sent.
        """
        payload = self.store.get_payload(identifier)

        if payload is None or (purpose is not None and payload.get("purpose") != purpose):
            log.info("Resend refused for %s: no pending verification", mask_email(identifier))
            return IssueResult(issued=False, message=NO_PENDING_MESSAGE, error_code="OTP_NOT_FOUND")

        if phone and payload.get("purpose") == PURPOSE_REGISTER:
            payload["phone"] = phone
        elif phone and phone != payload.get("phone"):
            log.warning(
                "Ignoring phone override on %s resend for %s",
                payload.get("purpose"), mask_email(identifier),
            )

        return self.issue(identifier, payload, phone=payload.get("phone"))


# ============================================================
# Module-level singleton (FastAPI dependency)
# ============================================================

_gate: Optional[VerificationGate] = None


def get_verification_gate() -> VerificationGate:
    """Get singleton gate built from OTP_STORE / EMAIL_PROVIDER / SMS_PROVIDER."""
    global _gate
    if _gate is None:
        _gate = VerificationGate(store=get_otp_store(), dispatcher=DeliveryDispatcher.from_env())
    return _gate
