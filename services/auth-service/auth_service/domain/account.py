from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SubscriptionStatus(str, Enum):
    trial = "trial"
    active = "active"
    expired = "expired"
    cancelled = "cancelled"


class SubscriptionTier(str, Enum):
    free = "free"
    trial = "trial"
    one_month = "1_month"
    three_months = "3_months"
    six_months = "6_months"
    twelve_months = "12_months"


class Role(str, Enum):
    user = "user"
    admin = "admin"


class OtpPurpose(str, Enum):
    verification = "verification"
    login = "login"


class AccountState(str, Enum):
    """Lifecycle position derived from the stored fields, never persisted."""

    pending_verification = "pending_verification"
    verified = "verified"
    active_session = "active_session"


@dataclass(frozen=True, slots=True)
class OtpChallenge:
    """An outstanding one-time code; code and expiry only ever travel together."""

    code: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class DeviceSession:
    """The single device currently allowed to use the account."""

    device_id: str
    device_label: str
    last_login_at: datetime


@dataclass(slots=True)
class Account:
    """Aggregate root for credentials, OTP state, device session and subscription."""

    account_id: str
    email: str
    password_hash: str
    full_name: str
    created_at: datetime
    updated_at: datetime
    subscription_end_date: datetime
    subscription_start_date: datetime
    company_name: str = ""
    phone: str = ""
    email_verified: bool = False
    pending_verification: OtpChallenge | None = None
    pending_login: OtpChallenge | None = None
    active_device: DeviceSession | None = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.trial
    subscription_tier: SubscriptionTier = SubscriptionTier.trial
    role: Role = Role.user
    is_active: bool = True
    version: int = 0

    @property
    def state(self) -> AccountState:
        if not self.email_verified:
            return AccountState.pending_verification
        if self.active_device is None:
            return AccountState.verified
        return AccountState.active_session

    def pending_otp(self, purpose: OtpPurpose) -> OtpChallenge | None:
        if purpose is OtpPurpose.verification:
            return self.pending_verification
        return self.pending_login

    def set_pending_otp(self, purpose: OtpPurpose, challenge: OtpChallenge | None) -> None:
        if purpose is OtpPurpose.verification:
            self.pending_verification = challenge
        else:
            self.pending_login = challenge


def normalize_email(email: str) -> str:
    """Return the canonical identity key for an email address."""
    return email.strip().lower()


def device_session_from_fields(
    device_id: str | None,
    device_label: str | None,
    last_login_at: datetime | None,
) -> DeviceSession | None:
    """Rebuild a device session from storage, treating half-populated rows as absent."""
    if not device_id or last_login_at is None:
        return None
    return DeviceSession(
        device_id=device_id,
        device_label=device_label or "Unknown",
        last_login_at=last_login_at,
    )


def otp_challenge_from_fields(code: str | None, expires_at: datetime | None) -> OtpChallenge | None:
    if not code or expires_at is None:
        return None
    return OtpChallenge(code=code, expires_at=expires_at)
