"""Email delivery of one-time codes."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from .config import Settings
from .domain.account import OtpPurpose

logger = logging.getLogger(__name__)

_SUBJECTS = {
    OtpPurpose.verification: "Email Verification OTP",
    OtpPurpose.login: "Your Login OTP",
}

_HEADINGS = {
    OtpPurpose.verification: "Email Verification",
    OtpPurpose.login: "Login Verification",
}


class Notifier(Protocol):
    def send(self, address: str, content: str, purpose: OtpPurpose) -> bool:
        """Deliver ``content`` to ``address``; return ``False`` on failure."""
        ...


def redact_email(email: str) -> str:
    """Redact an email address for logging."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpNotifier:
    """Best-effort SMTP sender.

    When no SMTP host is configured the message is logged (without the code)
    and reported as sent, which keeps local development usable.
    """

    def __init__(
        self,
        *,
        smtp_host: str,
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        timeout_seconds: float = 10.0,
        from_email: str = "",
        from_name: str = "Costing Tool",
        ttl_minutes: int = 10,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.timeout_seconds = timeout_seconds
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.ttl_minutes = ttl_minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpNotifier":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            timeout_seconds=settings.smtp_timeout_seconds,
            from_email=settings.email_from,
            ttl_minutes=max(1, settings.otp_ttl_seconds // 60),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send(self, address: str, content: str, purpose: OtpPurpose) -> bool:
        subject = _SUBJECTS[purpose]
        if not self.is_configured:
            logger.info("smtp not configured; skipping %s email to %s", purpose.value, redact_email(address))
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = address
        msg.attach(MIMEText(self._text_body(content, purpose), "plain"))
        msg.attach(MIMEText(self._html_body(content, purpose), "html"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds) as server:
                if self.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, [address], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("failed to send %s email to %s: %s", purpose.value, redact_email(address), exc)
            return False

        logger.info("sent %s email to %s", purpose.value, redact_email(address))
        return True

    def _text_body(self, code: str, purpose: OtpPurpose) -> str:
        return (
            f"{_HEADINGS[purpose]}\n\n"
            f"Your OTP code is: {code}\n\n"
            f"This OTP is valid for {self.ttl_minutes} minutes.\n"
            "If you didn't request this, please ignore this email.\n"
        )

    def _html_body(self, code: str, purpose: OtpPurpose) -> str:
        return f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; color: #333;">
  <h2>{_HEADINGS[purpose]}</h2>
  <p>Your OTP code is:</p>
  <p style="font-size: 32px; font-weight: bold; letter-spacing: 5px;">{code}</p>
  <p>This OTP is valid for {self.ttl_minutes} minutes.</p>
  <p>If you didn't request this, please ignore this email.</p>
</body>
</html>
"""
