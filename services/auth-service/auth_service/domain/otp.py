"""One-time code generation, issuance and validation."""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta

from .. import metrics
from ..notifier import Notifier
from .account import Account, OtpChallenge, OtpPurpose
from .errors import InvalidOtp, OtpExpired, OtpNotFound

logger = logging.getLogger(__name__)

OTP_DIGITS = 6


class OtpEngine:
    """Mint, deliver and check the verification and login codes of an account.

    The engine only mutates the in-memory ``Account``; persisting the change is
    left to the caller so that the slot update lands in the same write as the
    transition it belongs to.
    """

    def __init__(self, notifier: Notifier, ttl_seconds: int) -> None:
        self._notifier = notifier
        self._ttl = timedelta(seconds=ttl_seconds)

    @staticmethod
    def generate() -> str:
        """Return a zero-padded code drawn uniformly from 000000-999999."""
        return f"{secrets.randbelow(10 ** OTP_DIGITS):0{OTP_DIGITS}d}"

    def issue(self, account: Account, purpose: OtpPurpose, now: datetime) -> OtpChallenge:
        """Place a fresh code on the purpose's slot, replacing any pending one."""
        challenge = OtpChallenge(code=self.generate(), expires_at=now + self._ttl)
        account.set_pending_otp(purpose, challenge)
        return challenge

    def deliver(self, account: Account, purpose: OtpPurpose, challenge: OtpChallenge) -> bool:
        """Send the code to the account's address; failures are reported, never raised."""
        try:
            delivered = self._notifier.send(account.email, challenge.code, purpose)
        except Exception:
            logger.exception("otp delivery raised for account %s (%s)", account.account_id, purpose.value)
            delivered = False
        metrics.OTP_DELIVERIES.labels(
            purpose=purpose.value, outcome="sent" if delivered else "failed"
        ).inc()
        if not delivered:
            logger.warning(
                "otp delivery failed for account %s (%s); code remains valid",
                account.account_id,
                purpose.value,
            )
        return delivered

    def validate(self, account: Account, purpose: OtpPurpose, supplied: str, now: datetime) -> None:
        """Raise unless ``supplied`` matches the pending, unexpired code for ``purpose``."""
        challenge = account.pending_otp(purpose)
        if challenge is None:
            raise OtpNotFound()
        if not hmac.compare_digest(challenge.code.encode("utf-8"), supplied.encode("utf-8")):
            raise InvalidOtp()
        if now > challenge.expires_at:
            raise OtpExpired()
