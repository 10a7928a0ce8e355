"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .account import Account, SubscriptionStatus, SubscriptionTier


@dataclass(slots=True)
class RegisterInput:
    """Validated inputs required to self-register an account."""

    email: str
    password: str
    full_name: str
    company_name: str = ""
    phone: str = ""


@dataclass(slots=True)
class ProvisionInput:
    """Operator-supplied inputs for creating a pre-verified account."""

    email: str
    password: str
    full_name: str
    company_name: str = ""
    phone: str = ""
    subscription_tier: SubscriptionTier | None = None
    subscription_status: SubscriptionStatus | None = None
    subscription_end_date: datetime | None = None


@dataclass(slots=True)
class ProfileUpdate:
    """Self-service profile edits; ``None`` leaves a field untouched."""

    full_name: str | None = None
    company_name: str | None = None
    phone: str | None = None


@dataclass(slots=True)
class AccountAdminUpdate:
    """Operator edits to subscription and activation state."""

    subscription_tier: SubscriptionTier | None = None
    subscription_status: SubscriptionStatus | None = None
    subscription_end_date: datetime | None = None
    is_active: bool | None = None


@dataclass(slots=True)
class RegistrationResult:
    account_id: str
    otp_delivered: bool


@dataclass(slots=True)
class LoginResult:
    """Bearer token plus the account it represents."""

    token: str
    expires_in: int
    account: Account
