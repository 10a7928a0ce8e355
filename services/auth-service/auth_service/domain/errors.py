"""Domain error taxonomy with stable machine-readable codes."""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors surfaced to API clients.

    Each subclass pins an HTTP ``status_code`` and a stable ``code`` so that
    clients can branch on the failure without parsing messages.
    """

    status_code: int = 400
    code: str = "BAD_REQUEST"
    default_message: str = "request could not be processed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(AuthError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "User not found"


class Conflict(AuthError):
    code = "CONFLICT"
    default_message = "User already exists with this email"


class InvalidOtp(AuthError):
    code = "INVALID_OTP"
    default_message = "Invalid OTP"


class OtpExpired(AuthError):
    code = "OTP_EXPIRED"
    default_message = "OTP has expired. Please request a new one."


class OtpNotFound(InvalidOtp):
    """No code is pending; a consumed code lands here, so it is also an ``InvalidOtp``."""

    code = "OTP_NOT_FOUND"
    default_message = "No OTP is pending. Please request a new one."


class EmailNotVerified(AuthError):
    code = "EMAIL_NOT_VERIFIED"
    default_message = "Please verify your email first"


class AlreadyVerified(AuthError):
    code = "ALREADY_VERIFIED"
    default_message = "Email already verified"


class DeviceRequired(AuthError):
    code = "DEVICE_REQUIRED"
    default_message = "Device ID is required"


class DeviceConflict(AuthError):
    status_code = 403
    code = "DEVICE_CONFLICT"
    default_message = "Another device is already logged in. Please logout from other device first."


class Unauthorized(AuthError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Not authorized to access this route"


class InvalidToken(Unauthorized):
    code = "INVALID_TOKEN"
    default_message = "Invalid token"


class AccountDeactivated(Unauthorized):
    code = "ACCOUNT_DEACTIVATED"
    default_message = "Account is deactivated"


class Forbidden(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Access denied. Admin only."


class ConcurrentUpdate(AuthError):
    status_code = 409
    code = "CONCURRENT_UPDATE"
    default_message = "Account was modified by another request; please retry"


class RateLimited(AuthError):
    status_code = 429
    code = "RATE_LIMITED"
    default_message = "rate limited"


class StaleWriteError(Exception):
    """Raised by the repository when a compare-and-swap on ``version`` loses."""

    def __init__(self, account_id: str, expected_version: int) -> None:
        super().__init__(f"account {account_id} changed since version {expected_version}")
        self.account_id = account_id
        self.expected_version = expected_version
