# shopnest/accounts/delivery.py
"""
Verification code delivery.

This module provides:
- Abstract DeliveryChannel interface
- Email channels: stub (console), SMTP, Resend, SendGrid
- SMS channels: stub (console), Twilio
- DeliveryDispatcher: fans a code out to email (always) and SMS (when a
  phone is known), reporting success per channel

Channel Selection:
- EMAIL_PROVIDER: "stub" (default) | "smtp" | "resend" | "sendgrid"
- SMS_PROVIDER: "none" (default) | "stub" | "twilio"

Failure Isolation:
- A channel that raises or returns False is logged and reported as False
- One channel's failure never blocks the other
- Delivery never touches the stored verification entry
"""

from __future__ import annotations

import os
import smtplib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import httpx

from shopnest.accounts.models import OTP_TTL_MINUTES
from shopnest.privacy_utils import mask_email, mask_phone

log = logging.getLogger("shopnest.delivery")

BRAND_NAME = "ShopNest"
PROVIDER_TIMEOUT_SECONDS = 10.0
SMTP_TIMEOUT_SECONDS = 15


def _email_subject() -> str:
    return f"{BRAND_NAME} - Your Verification Code"


def _email_html(otp: str) -> str:
    return f"""
        <div style="font-family: Arial, sans-serif; max-width: 480px; margin: 0 auto; padding: 40px 20px;">
            <h1 style="font-size: 28px; font-weight: 900; text-align: center;">{BRAND_NAME}</h1>
            <div style="background: #000; color: #fff; border-radius: 20px; padding: 40px; text-align: center;">
                <p style="font-size: 12px; text-transform: uppercase; letter-spacing: 0.2em;">Verification Code</p>
                <h2 style="font-size: 48px; font-weight: 900; letter-spacing: 12px;">{otp}</h2>
                <p style="font-size: 14px;">
                    This code expires in <strong>{OTP_TTL_MINUTES} minutes</strong>.<br/>
                    Do not share this code with anyone.
                </p>
            </div>
        </div>
    """


def _email_text(otp: str) -> str:
    return (
        f"Your {BRAND_NAME} verification code is: {otp}\n\n"
        f"This code expires in {OTP_TTL_MINUTES} minutes. Do not share it with anyone."
    )


def _sms_body(otp: str) -> str:
    return f"Your {BRAND_NAME} verification code is: {otp}. This code expires in {OTP_TTL_MINUTES} minutes."


# ============================================================
# Abstract Channel
# ============================================================

class DeliveryChannel(ABC):
    """
    One outbound transport for verification codes.

    send() returns True on success; it may also raise, which the
    dispatcher records as a failure.
    """

    kind: str = "email"

    @abstractmethod
    def send(self, recipient: str, otp: str) -> bool:
        """Deliver otp to recipient (an email address or an E.164 phone)."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return provider name for logging."""


# ============================================================
# Email Channels
# ============================================================

class StubEmailChannel(DeliveryChannel):
    """Logs the code instead of sending it. Development only."""

    def send(self, recipient: str, otp: str) -> bool:
        log.info(
            "[STUB EMAIL] Would send OTP to %s: %s (expires in %d minutes)",
            mask_email(recipient), otp, OTP_TTL_MINUTES,
        )
        return True

    def get_provider_name(self) -> str:
        return "stub"


class SmtpEmailChannel(DeliveryChannel):
    """
    Email over SMTP with STARTTLS.

    Requires:
    - SMTP_HOST, SMTP_USER, SMTP_PASSWORD
    - SMTP_PORT (default 587)
    - EMAIL_FROM (defaults to SMTP_USER)
    """

    def __init__(self):
        self.host = os.getenv("SMTP_HOST", "").strip()
        self.port = int(os.getenv("SMTP_PORT", "587"))
        self.user = os.getenv("SMTP_USER", "").strip()
        self.password = os.getenv("SMTP_PASSWORD", "")
        self.from_email = os.getenv("EMAIL_FROM", "").strip() or self.user

        if not self.host or not self.user:
            log.warning("SMTP not configured (SMTP_HOST/SMTP_USER)")

    def send(self, recipient: str, otp: str) -> bool:
        if not self.host or not self.user:
            log.error("Cannot send OTP: SMTP not configured")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = _email_subject()
        msg["From"] = f"{BRAND_NAME} <{self.from_email}>"
        msg["To"] = recipient
        msg.attach(MIMEText(_email_text(otp), "plain"))
        msg.attach(MIMEText(_email_html(otp), "html"))

        if self.port == 465:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS)

        with server:
            if self.port != 465:
                server.starttls()
            server.login(self.user, self.password)
            server.sendmail(self.from_email, [recipient], msg.as_string())

        log.info("OTP sent via SMTP to %s", mask_email(recipient))
        return True

    def get_provider_name(self) -> str:
        return "smtp"


class ResendEmailChannel(DeliveryChannel):
    """
    Email via the Resend API.

    Requires:
    - EMAIL_API_KEY: Resend API key
    - EMAIL_FROM: Sender email (optional, defaults to noreply@shopnest.app)
    """

    def __init__(self):
        self.api_key = os.getenv("EMAIL_API_KEY", "")
        self.from_email = os.getenv("EMAIL_FROM", "noreply@shopnest.app")

        if not self.api_key:
            log.warning("EMAIL_API_KEY not set for Resend provider")

    def send(self, recipient: str, otp: str) -> bool:
        if not self.api_key:
            log.error("Cannot send OTP: EMAIL_API_KEY not configured")
            return False

        response = httpx.post(
            "https://api.resend.com/emails",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "from": f"{BRAND_NAME} <{self.from_email}>",
                "to": [recipient],
                "subject": _email_subject(),
                "html": _email_html(otp),
                "text": _email_text(otp),
            },
            timeout=PROVIDER_TIMEOUT_SECONDS,
        )

        if response.status_code == 200:
            log.info("OTP sent via Resend to %s", mask_email(recipient))
            return True

        log.error("Resend API error: %s %s", response.status_code, response.text[:100])
        return False

    def get_provider_name(self) -> str:
        return "resend"


class SendGridEmailChannel(DeliveryChannel):
    """
    Email via the SendGrid API.

    Requires:
    - EMAIL_API_KEY: SendGrid API key
    - EMAIL_FROM: Verified sender email
    """

    def __init__(self):
        self.api_key = os.getenv("EMAIL_API_KEY", "")
        self.from_email = os.getenv("EMAIL_FROM", "noreply@shopnest.app")

        if not self.api_key:
            log.warning("EMAIL_API_KEY not set for SendGrid provider")

    def send(self, recipient: str, otp: str) -> bool:
        if not self.api_key:
            log.error("Cannot send OTP: EMAIL_API_KEY not configured")
            return False

        response = httpx.post(
            "https://api.sendgrid.com/v3/mail/send",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "personalizations": [{"to": [{"email": recipient}]}],
                "from": {"email": self.from_email, "name": BRAND_NAME},
                "subject": _email_subject(),
                "content": [
                    {"type": "text/plain", "value": _email_text(otp)},
                    {"type": "text/html", "value": _email_html(otp)},
                ],
            },
            timeout=PROVIDER_TIMEOUT_SECONDS,
        )

        if response.status_code in (200, 202):
            log.info("OTP sent via SendGrid to %s", mask_email(recipient))
            return True

        log.error("SendGrid API error: %s %s", response.status_code, response.text[:100])
        return False

    def get_provider_name(self) -> str:
        return "sendgrid"


# ============================================================
# SMS Channels
# ============================================================

class StubSmsChannel(DeliveryChannel):
    """Logs the code instead of texting it. Development only."""

    kind = "sms"

    def send(self, recipient: str, otp: str) -> bool:
        log.info("[STUB SMS] Would send OTP to %s: %s", mask_phone(recipient), otp)
        return True

    def get_provider_name(self) -> str:
        return "stub"


class TwilioSmsChannel(DeliveryChannel):
    """
    SMS via Twilio.

    Requires:
    - TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN
    - TWILIO_MESSAGING_SERVICE_SID, or TWILIO_FROM_NUMBER
    """

    kind = "sms"

    def __init__(self, client=None):
        self.account_sid = os.getenv("TWILIO_ACCOUNT_SID", "").strip()
        self.auth_token = os.getenv("TWILIO_AUTH_TOKEN", "").strip()
        self.messaging_service_sid = os.getenv("TWILIO_MESSAGING_SERVICE_SID", "").strip()
        self.from_number = os.getenv("TWILIO_FROM_NUMBER", "").strip()
        self._client = client

        if not self.account_sid or not self.auth_token:
            log.warning("Twilio credentials not set (TWILIO_ACCOUNT_SID/TWILIO_AUTH_TOKEN)")

    def _get_client(self):
        if self._client is None:
            from twilio.rest import Client
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def send(self, recipient: str, otp: str) -> bool:
        if not self.account_sid or not self.auth_token:
            log.error("Cannot send OTP SMS: Twilio not configured")
            return False

        params = {"body": _sms_body(otp), "to": recipient}
        if self.messaging_service_sid:
            params["messaging_service_sid"] = self.messaging_service_sid
        elif self.from_number:
            params["from_"] = self.from_number
        else:
            log.error("Cannot send OTP SMS: no messaging service SID or from number")
            return False

        message = self._get_client().messages.create(**params)
        log.info("OTP SMS sent to %s (sid=%s)", mask_phone(recipient), getattr(message, "sid", "?"))
        return True

    def get_provider_name(self) -> str:
        return "twilio"


# ============================================================
# Channel Factories
# ============================================================

def get_email_channel() -> DeliveryChannel:
    """
    Get email channel based on EMAIL_PROVIDER.

    Providers:
    - "stub" (default): Logs to console
    - "smtp": smtplib with STARTTLS
    - "resend": Resend API
    - "sendgrid": SendGrid API
    """
    provider = os.getenv("EMAIL_PROVIDER", "stub").lower().strip()

    if provider == "smtp":
        return SmtpEmailChannel()
    elif provider == "resend":
        return ResendEmailChannel()
    elif provider == "sendgrid":
        return SendGridEmailChannel()
    else:
        if provider != "stub":
            log.warning("Unknown EMAIL_PROVIDER '%s', falling back to stub", provider)
        return StubEmailChannel()


def get_sms_channel() -> Optional[DeliveryChannel]:
    """
    Get SMS channel based on SMS_PROVIDER.

    Returns None when SMS is disabled ("none", the default).
    """
    provider = os.getenv("SMS_PROVIDER", "none").lower().strip()

    if provider == "twilio":
        return TwilioSmsChannel()
    elif provider == "stub":
        return StubSmsChannel()
    else:
        if provider not in ("none", ""):
            log.warning("Unknown SMS_PROVIDER '%s', SMS disabled", provider)
        return None


# ============================================================
# Dispatcher
# ============================================================

@dataclass
class DeliveryReport:
    """Per-channel delivery outcome."""

    email: bool = False
    sms: bool = False
    sms_attempted: bool = False

    @property
    def any_delivered(self) -> bool:
        return self.email or self.sms

    @property
    def channels(self) -> str:
        """'email', 'email and SMS', 'SMS', or '' for user-facing copy."""
        sent = [name for name, ok in (("email", self.email), ("SMS", self.sms)) if ok]
        return " and ".join(sent)

    def as_dict(self) -> dict:
        return {"email": self.email, "sms": self.sms}


class DeliveryDispatcher:
    """
    Sends a code over every available channel.

    Email is always attempted. SMS is attempted only when a phone number is
    given and an SMS channel is configured.
    """

    def __init__(
        self,
        email_channel: DeliveryChannel | None = None,
        sms_channel: DeliveryChannel | None = None,
    ):
        self.email_channel = email_channel or get_email_channel()
        self.sms_channel = sms_channel

    @classmethod
    def from_env(cls) -> "DeliveryDispatcher":
        return cls(email_channel=get_email_channel(), sms_channel=get_sms_channel())

    @staticmethod
    def _attempt(channel: DeliveryChannel, recipient: str, otp: str) -> bool:
        try:
            return bool(channel.send(recipient, otp))
        except Exception as e:
            log.error(
                "%s delivery via %s raised %s: %s",
                channel.kind, channel.get_provider_name(), type(e).__name__, str(e)[:100],
            )
            return False

    def send(self, identifier: str, otp: str, phone: Optional[str] = None) -> DeliveryReport:
        report = DeliveryReport()

        report.email = self._attempt(self.email_channel, identifier, otp)
        if not report.email:
            log.warning("OTP email delivery failed for %s", mask_email(identifier))

        if phone and self.sms_channel is not None:
            report.sms_attempted = True
            report.sms = self._attempt(self.sms_channel, phone, otp)
            if not report.sms:
                log.warning("OTP SMS delivery failed for %s", mask_phone(phone))

        return report
