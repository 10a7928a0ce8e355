"""Operator-only account administration routes."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import EmailStr, Field

from ..domain.account import Account, SubscriptionStatus, SubscriptionTier
from ..domain.contracts import AccountAdminUpdate, ProvisionInput
from ..domain.errors import Forbidden
from ..domain.service import AuthService
from .routes import (
    AccountResponse,
    AccountSummary,
    MessageResponse,
    Password,
    RequestModel,
    current_account,
    get_service,
)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class ProvisionRequest(RequestModel):
    email: EmailStr
    password: Password
    full_name: str = Field(..., min_length=1)
    company_name: str = ""
    phone: str = ""
    subscription_tier: SubscriptionTier | None = None
    subscription_status: SubscriptionStatus | None = None
    subscription_end_date: datetime | None = None


class AdminUpdateRequest(RequestModel):
    subscription_tier: SubscriptionTier | None = None
    subscription_status: SubscriptionStatus | None = None
    subscription_end_date: datetime | None = None
    is_active: bool | None = None


def require_operator(
    account: Account = Depends(current_account),
    service: AuthService = Depends(get_service),
) -> Account:
    """Admit only identities on the configured operator allow-list."""
    if not service.is_operator(account):
        raise Forbidden()
    return account


@router.post("/users", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def provision_user(
    payload: ProvisionRequest,
    operator: Account = Depends(require_operator),
    service: AuthService = Depends(get_service),
) -> AccountResponse:
    """Create a pre-verified account."""
    account = service.provision_account(
        ProvisionInput(
            email=payload.email,
            password=payload.password,
            full_name=payload.full_name,
            company_name=payload.company_name,
            phone=payload.phone,
            subscription_tier=payload.subscription_tier,
            subscription_status=payload.subscription_status,
            subscription_end_date=payload.subscription_end_date,
        ),
        actor=operator.account_id,
    )
    return AccountResponse(user=AccountSummary.from_domain(account))


@router.put("/users/{account_id}", response_model=AccountResponse)
def update_user(
    account_id: str,
    payload: AdminUpdateRequest,
    operator: Account = Depends(require_operator),
    service: AuthService = Depends(get_service),
) -> AccountResponse:
    account = service.admin_update_account(
        account_id,
        AccountAdminUpdate(
            subscription_tier=payload.subscription_tier,
            subscription_status=payload.subscription_status,
            subscription_end_date=payload.subscription_end_date,
            is_active=payload.is_active,
        ),
        actor=operator.account_id,
    )
    return AccountResponse(user=AccountSummary.from_domain(account))


@router.delete("/users/{account_id}", response_model=MessageResponse)
def delete_user(
    account_id: str,
    operator: Account = Depends(require_operator),
    service: AuthService = Depends(get_service),
) -> MessageResponse:
    service.delete_account(account_id, actor=operator.account_id)
    return MessageResponse(message="User deleted successfully")


@router.post("/clear-device/{account_id}", response_model=MessageResponse)
def clear_device(
    account_id: str,
    operator: Account = Depends(require_operator),
    service: AuthService = Depends(get_service),
) -> MessageResponse:
    """Release a user's device binding without an OTP."""
    service.admin_clear_device(account_id, actor=operator.account_id)
    return MessageResponse(message="Device session cleared successfully")
