"""Auth orchestration: registration, verification, OTP login and device sessions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from .. import metrics
from ..notifier import redact_email
from ..security.passwords import hash_password
from ..security.tokens import issue_access_token, verify_access_token
from .account import (
    Account,
    OtpPurpose,
    Role,
    SubscriptionStatus,
    SubscriptionTier,
    normalize_email,
)
from .contracts import (
    AccountAdminUpdate,
    LoginResult,
    ProfileUpdate,
    ProvisionInput,
    RegisterInput,
    RegistrationResult,
)
from .errors import (
    AccountDeactivated,
    AlreadyVerified,
    ConcurrentUpdate,
    Conflict,
    DeviceConflict,
    EmailNotVerified,
    NotFound,
    StaleWriteError,
    Unauthorized,
)
from .otp import OtpEngine
from .session_guard import SessionGuard

logger = logging.getLogger(__name__)


class AccountStore(Protocol):
    def find_by_id(self, account_id: str) -> Account | None: ...

    def find_by_email(self, email: str) -> Account | None: ...

    def create(self, account: Account) -> Account: ...

    def save(self, account: Account) -> Account: ...

    def delete(self, account_id: str) -> bool: ...

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Account workflows tying the credential store, OTP engine, session guard and tokens together.

    The lifecycle of an account is ``pending_verification -> verified ->
    active_session`` and back to ``verified`` on logout. Each public method
    performs at most one persisted write of the account, built from the full
    post-transition state, so a failure leaves the stored record untouched.
    """

    def __init__(
        self,
        repository: AccountStore,
        otp_engine: OtpEngine,
        session_guard: SessionGuard,
        *,
        operator_emails: frozenset[str] = frozenset(),
        trial_days: int = 14,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._otp = otp_engine
        self._guard = session_guard
        self._operator_emails = frozenset(normalize_email(email) for email in operator_emails)
        self._trial = timedelta(days=trial_days)
        self._clock = clock

    # -- registration & verification -------------------------------------------------

    def register(self, payload: RegisterInput) -> RegistrationResult:
        """Create an unverified trial account and send its verification code."""
        email = normalize_email(payload.email)
        if self._repository.find_by_email(email) is not None:
            raise Conflict()

        now = self._clock()
        account = Account(
            account_id=str(uuid.uuid4()),
            email=email,
            password_hash=hash_password(payload.password),
            full_name=payload.full_name.strip(),
            company_name=payload.company_name.strip(),
            phone=payload.phone.strip(),
            created_at=now,
            updated_at=now,
            subscription_start_date=now,
            subscription_end_date=now + self._trial,
        )
        challenge = self._otp.issue(account, OtpPurpose.verification, now)
        stored = self._repository.create(account)
        self._record("account.registered", stored, actor=stored.account_id)

        delivered = self._otp.deliver(stored, OtpPurpose.verification, challenge)
        return RegistrationResult(account_id=stored.account_id, otp_delivered=delivered)

    def verify_email(self, email: str, code: str) -> Account:
        account = self._get_by_email(email)
        if account.email_verified:
            raise AlreadyVerified()
        self._require_active(account)
        self._otp.validate(account, OtpPurpose.verification, code, self._clock())

        account.email_verified = True
        account.pending_verification = None
        stored = self._save(account)
        self._record("account.verified", stored, actor=stored.account_id)
        return stored

    def resend_verification(self, email: str) -> bool:
        """Replace the pending verification code; returns whether the email went out."""
        account = self._get_by_email(email)
        if account.email_verified:
            raise AlreadyVerified()
        self._require_active(account)
        return self._issue_and_deliver(account, OtpPurpose.verification)

    # -- login & sessions ------------------------------------------------------------

    def request_login_otp(self, email: str) -> bool:
        account = self._get_by_email(email)
        if not account.email_verified:
            raise EmailNotVerified()
        self._require_active(account)
        return self._issue_and_deliver(account, OtpPurpose.login)

    def login(self, email: str, code: str, device_id: str, device_label: str = "Unknown") -> LoginResult:
        """Exchange a login code for a bearer token bound to ``device_id``.

        A ``DeviceConflict`` aborts before anything is written, so the same code
        can be reused once the other device is logged out.
        """
        account = self._get_by_email(email)
        if not account.email_verified:
            raise EmailNotVerified()
        now = self._clock()
        self._otp.validate(account, OtpPurpose.login, code, now)
        device = self._guard.admit_login(account, device_id, device_label, now)

        if (
            account.subscription_status is SubscriptionStatus.trial
            and account.subscription_end_date < now
        ):
            account.subscription_status = SubscriptionStatus.expired
            logger.info("trial expired for account %s", account.account_id)

        account.active_device = device
        account.pending_login = None
        try:
            stored = self._repository.save(account)
        except StaleWriteError as exc:
            current = self._repository.find_by_id(account.account_id)
            if (
                current is not None
                and current.active_device is not None
                and current.active_device.device_id != device_id
            ):
                metrics.DEVICE_CONFLICTS.labels(stage="login").inc()
                raise DeviceConflict() from exc
            raise ConcurrentUpdate() from exc

        token, expires_in = issue_access_token(subject=stored.account_id)
        self._record("session.login", stored, actor=stored.account_id, metadata={"device_id": device_id})
        return LoginResult(token=token, expires_in=expires_in, account=stored)

    def authenticate(self, token: str, device_id: str | None, device_label: str = "Unknown") -> Account:
        """Admit a device-scoped request carrying ``token`` from ``device_id``.

        Token validity alone is not enough: the account must still exist, be
        active, and be bound to the presenting device (or to none). Unlike
        login, a mismatched device is rejected however stale its binding is.
        """
        account_id = verify_access_token(token)
        account = self._repository.find_by_id(account_id)
        if account is None:
            raise Unauthorized("User not found")

        now = self._clock()
        account.active_device = self._guard.check_request(account, device_id, device_label, now)
        try:
            return self._repository.save(account)
        except StaleWriteError:
            current = self._repository.find_by_id(account_id)
            if current is None:
                raise Unauthorized("User not found")
            self._guard.check_request(current, device_id, device_label, now)
            if current.active_device is None:
                raise ConcurrentUpdate()
            return current

    def logout(self, account: Account) -> Account:
        """Release the device binding of an account that passed :meth:`authenticate`."""
        device_id = account.active_device.device_id if account.active_device else None
        account.active_device = None
        stored = self._save(account)
        self._record("session.logout", stored, actor=stored.account_id, metadata={"device_id": device_id})
        return stored

    def force_logout(self, email: str, code: str) -> Account:
        """Clear whichever device is bound, proven by a login code instead of a session."""
        account = self._get_by_email(email)
        self._require_active(account)
        self._otp.validate(account, OtpPurpose.login, code, self._clock())

        account.active_device = None
        stored = self._save(account)
        self._record("session.force_logout", stored, actor=stored.account_id)
        return stored

    # -- self-service & operator actions ---------------------------------------------

    def update_profile(self, account: Account, changes: ProfileUpdate) -> Account:
        if changes.full_name:
            account.full_name = changes.full_name.strip()
        if changes.company_name is not None:
            account.company_name = changes.company_name.strip()
        if changes.phone is not None:
            account.phone = changes.phone.strip()
        stored = self._save(account)
        self._record("account.profile_updated", stored, actor=stored.account_id)
        return stored

    def is_operator(self, account: Account) -> bool:
        """Return whether the account holds operator privilege.

        Privilege comes only from the configured allow-list; the stored
        ``role`` is brought in line with it as a cached copy.
        """
        operator = normalize_email(account.email) in self._operator_emails
        expected = Role.admin if operator else Role.user
        if account.role is not expected:
            account.role = expected
            try:
                refreshed = self._repository.save(account)
            except StaleWriteError:
                logger.info("role sync for account %s lost a race; will retry next request", account.account_id)
            else:
                account.version = refreshed.version
        return operator

    def provision_account(self, payload: ProvisionInput, *, actor: str) -> Account:
        """Create a pre-verified account on behalf of an operator."""
        email = normalize_email(payload.email)
        if self._repository.find_by_email(email) is not None:
            raise Conflict()

        now = self._clock()
        account = Account(
            account_id=str(uuid.uuid4()),
            email=email,
            password_hash=hash_password(payload.password),
            full_name=payload.full_name.strip(),
            company_name=payload.company_name.strip(),
            phone=payload.phone.strip(),
            created_at=now,
            updated_at=now,
            email_verified=True,
            subscription_status=payload.subscription_status or SubscriptionStatus.trial,
            subscription_tier=payload.subscription_tier or SubscriptionTier.trial,
            subscription_start_date=now,
            subscription_end_date=payload.subscription_end_date or now + self._trial,
        )
        stored = self._repository.create(account)
        self._record("account.provisioned", stored, actor=actor)
        return stored

    def admin_update_account(self, account_id: str, changes: AccountAdminUpdate, *, actor: str) -> Account:
        account = self._get_by_id(account_id)
        if changes.subscription_tier is not None:
            account.subscription_tier = changes.subscription_tier
        if changes.subscription_status is not None:
            account.subscription_status = changes.subscription_status
        if changes.subscription_end_date is not None:
            account.subscription_end_date = changes.subscription_end_date
        if changes.is_active is not None:
            account.is_active = changes.is_active
        stored = self._save(account)
        self._record(
            "account.updated",
            stored,
            actor=actor,
            metadata={"is_active": stored.is_active, "subscription_status": stored.subscription_status.value},
        )
        return stored

    def admin_clear_device(self, account_id: str, *, actor: str) -> Account:
        account = self._get_by_id(account_id)
        account.active_device = None
        stored = self._save(account)
        self._record("session.admin_cleared", stored, actor=actor)
        return stored

    def delete_account(self, account_id: str, *, actor: str) -> None:
        """Remove the account together with every domain record keyed by it."""
        if not self._repository.delete(account_id):
            raise NotFound()
        metrics.AUTH_EVENTS.labels(event="account.deleted").inc()
        self._write_audit(account_id=account_id, event_type="account.deleted", actor=actor)
        logger.info("account %s deleted by %s", account_id, actor)

    # -- helpers ---------------------------------------------------------------------

    def _issue_and_deliver(self, account: Account, purpose: OtpPurpose) -> bool:
        challenge = self._otp.issue(account, purpose, self._clock())
        stored = self._save(account)
        self._record("otp.issued", stored, actor=stored.account_id, metadata={"purpose": purpose.value})
        return self._otp.deliver(stored, purpose, challenge)

    def _get_by_email(self, email: str) -> Account:
        account = self._repository.find_by_email(normalize_email(email))
        if account is None:
            raise NotFound()
        return account

    def _get_by_id(self, account_id: str) -> Account:
        account = self._repository.find_by_id(account_id)
        if account is None:
            raise NotFound()
        return account

    @staticmethod
    def _require_active(account: Account) -> None:
        if not account.is_active:
            raise AccountDeactivated()

    def _save(self, account: Account) -> Account:
        try:
            return self._repository.save(account)
        except StaleWriteError as exc:
            raise ConcurrentUpdate() from exc

    def _record(
        self,
        event_type: str,
        account: Account,
        *,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        metrics.AUTH_EVENTS.labels(event=event_type).inc()
        self._write_audit(account_id=account.account_id, event_type=event_type, actor=actor, metadata=metadata)
        logger.info("%s account=%s email=%s", event_type, account.account_id, redact_email(account.email))

    def _write_audit(
        self,
        *,
        account_id: str,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append to the audit trail; the account change it describes is already committed."""
        try:
            self._repository.write_audit_event(
                account_id=account_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata,
            )
        except Exception:
            logger.exception("failed to write audit event %s for account %s", event_type, account_id)
