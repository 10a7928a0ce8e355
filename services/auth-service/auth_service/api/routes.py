"""HTTP route definitions for the auth lifecycle."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints
from pydantic.alias_generators import to_camel

from ..domain.account import Account, normalize_email
from ..domain.contracts import ProfileUpdate, RegisterInput
from ..domain.errors import RateLimited, Unauthorized
from ..domain.service import AuthService
from ..security.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])

# passwords are hashed exactly as typed
Password = Annotated[str, StringConstraints(min_length=6, strip_whitespace=False)]


class RequestModel(BaseModel):
    """Request bodies accept both snake_case and the camelCase used by web clients."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class AccountSummary(BaseModel):
    """Redacted view of an account; credentials and OTP state never leave the service."""

    id: str
    email: EmailStr
    full_name: str
    company_name: str
    phone: str
    email_verified: bool
    subscription_tier: str
    subscription_status: str
    subscription_start_date: datetime
    subscription_end_date: datetime
    role: str

    @classmethod
    def from_domain(cls, account: Account) -> "AccountSummary":
        return cls(
            id=account.account_id,
            email=account.email,
            full_name=account.full_name,
            company_name=account.company_name,
            phone=account.phone,
            email_verified=account.email_verified,
            subscription_tier=account.subscription_tier.value,
            subscription_status=account.subscription_status.value,
            subscription_start_date=account.subscription_start_date,
            subscription_end_date=account.subscription_end_date,
            role=account.role.value,
        )


class RegisterRequest(RequestModel):
    email: EmailStr
    password: Password
    full_name: str = Field(..., min_length=1)
    company_name: str = ""
    phone: str = ""


class EmailRequest(RequestModel):
    email: EmailStr


class OtpRequest(RequestModel):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)


class LoginRequest(OtpRequest):
    device_id: str = Field(..., min_length=1)


class ProfileRequest(RequestModel):
    full_name: str | None = None
    company_name: str | None = None
    phone: str | None = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class OtpSentResponse(MessageResponse):
    otp_delivered: bool


class RegisterResponse(OtpSentResponse):
    user_id: str


class LoginResponse(MessageResponse):
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: AccountSummary


class AccountResponse(BaseModel):
    success: bool = True
    user: AccountSummary


def get_service(request: Request) -> AuthService:
    """Resolve the `AuthService` stored on the FastAPI application state."""
    service: AuthService = request.app.state.auth_service
    return service


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter: RateLimiter = request.app.state.rate_limiter
    return limiter


def throttle(limiter: RateLimiter, scope: str, email: str) -> None:
    if not limiter.allow(f"{scope}:{normalize_email(email)}"):
        logger.info("rate limited %s request", scope)
        raise RateLimited()


async def request_device_id(
    request: Request,
    device_id: str | None = Header(default=None, alias="X-Device-ID"),
) -> str | None:
    """Device id from the ``X-Device-ID`` header, else ``deviceId`` in a JSON body."""
    if device_id:
        return device_id
    body = await request.body()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    value = payload.get("deviceId") or payload.get("device_id")
    return value if isinstance(value, str) and value else None


def current_account(
    authorization: str | None = Header(default=None),
    device_id: str | None = Depends(request_device_id),
    user_agent: str | None = Header(default=None),
    service: AuthService = Depends(get_service),
) -> Account:
    """Authenticate a device-scoped request from its bearer token and device header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized()
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise Unauthorized()
    return service.authenticate(token, device_id, user_agent or "Unknown")


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    service: AuthService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RegisterResponse:
    """Create an account and email its verification code."""
    throttle(limiter, "register", payload.email)
    result = service.register(
        RegisterInput(
            email=payload.email,
            password=payload.password,
            full_name=payload.full_name,
            company_name=payload.company_name,
            phone=payload.phone,
        )
    )
    return RegisterResponse(
        message="Registration successful. Please verify your email with OTP.",
        user_id=result.account_id,
        otp_delivered=result.otp_delivered,
    )


@router.post("/verify-email", response_model=MessageResponse)
def verify_email(
    payload: OtpRequest,
    service: AuthService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> MessageResponse:
    throttle(limiter, "verify-email", payload.email)
    service.verify_email(payload.email, payload.otp)
    return MessageResponse(message="Email verified successfully")


@router.post("/resend-otp", response_model=OtpSentResponse)
def resend_otp(
    payload: EmailRequest,
    service: AuthService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> OtpSentResponse:
    throttle(limiter, "resend-otp", payload.email)
    delivered = service.resend_verification(payload.email)
    return OtpSentResponse(message="OTP sent to your email", otp_delivered=delivered)


@router.post("/request-login-otp", response_model=OtpSentResponse)
def request_login_otp(
    payload: EmailRequest,
    service: AuthService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> OtpSentResponse:
    throttle(limiter, "request-login-otp", payload.email)
    delivered = service.request_login_otp(payload.email)
    return OtpSentResponse(message="Login OTP sent to your email", otp_delivered=delivered)


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    user_agent: str | None = Header(default=None),
    service: AuthService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> LoginResponse:
    """Exchange a login code for a bearer token bound to the presenting device."""
    throttle(limiter, "login", payload.email)
    result = service.login(payload.email, payload.otp, payload.device_id, user_agent or "Unknown")
    return LoginResponse(
        message="Login successful",
        token=result.token,
        expires_in=result.expires_in,
        user=AccountSummary.from_domain(result.account),
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    account: Account = Depends(current_account),
    service: AuthService = Depends(get_service),
) -> MessageResponse:
    service.logout(account)
    return MessageResponse(message="Logged out successfully")


@router.post("/force-logout", response_model=MessageResponse)
def force_logout(
    payload: OtpRequest,
    service: AuthService = Depends(get_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> MessageResponse:
    """Clear the bound device using a login code, for users locked out by another device."""
    throttle(limiter, "force-logout", payload.email)
    service.force_logout(payload.email, payload.otp)
    return MessageResponse(message="Device session cleared. You can now login from any device.")


@router.get("/me", response_model=AccountResponse)
def me(account: Account = Depends(current_account)) -> AccountResponse:
    return AccountResponse(user=AccountSummary.from_domain(account))


@router.put("/me", response_model=AccountResponse)
def update_me(
    payload: ProfileRequest,
    account: Account = Depends(current_account),
    service: AuthService = Depends(get_service),
) -> AccountResponse:
    updated = service.update_profile(
        account,
        ProfileUpdate(full_name=payload.full_name, company_name=payload.company_name, phone=payload.phone),
    )
    return AccountResponse(user=AccountSummary.from_domain(updated))
