from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from auth_service.api import admin, routes
from auth_service.api.errors import register_exception_handlers
from auth_service.domain.account import Account, OtpPurpose, normalize_email
from auth_service.domain.contracts import RegisterInput
from auth_service.domain.errors import Conflict, StaleWriteError
from auth_service.domain.otp import OtpEngine
from auth_service.domain.service import AuthService
from auth_service.domain.session_guard import SessionGuard
from auth_service.security.rate_limiter import SlidingWindowRateLimiter

OPERATOR_EMAIL = "ops@example.com"


class FakeRepository:
    """In-memory repository mimicking the Postgres compare-and-swap behaviour."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self.audit_log: list[FakeAuditLogRecord] = []
        self.cascaded: list[str] = []
        self.before_save: Callable[[Account], None] | None = None

    def find_by_id(self, account_id: str) -> Account | None:
        stored = self._accounts.get(account_id)
        return copy.deepcopy(stored) if stored else None

    def find_by_email(self, email: str) -> Account | None:
        key = normalize_email(email)
        for stored in self._accounts.values():
            if stored.email == key:
                return copy.deepcopy(stored)
        return None

    def create(self, account: Account) -> Account:
        if self.find_by_email(account.email) is not None:
            raise Conflict()
        self._accounts[account.account_id] = copy.deepcopy(account)
        return copy.deepcopy(account)

    def save(self, account: Account) -> Account:
        hook, self.before_save = self.before_save, None
        if hook is not None:
            hook(account)
        stored = self._accounts.get(account.account_id)
        if stored is None or stored.version != account.version:
            raise StaleWriteError(account.account_id, account.version)
        updated = copy.deepcopy(account)
        updated.version += 1
        self._accounts[account.account_id] = updated
        return copy.deepcopy(updated)

    def delete(self, account_id: str) -> bool:
        if self._accounts.pop(account_id, None) is None:
            return False
        self.cascaded.append(account_id)
        return True

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict | None = None,
    ) -> None:
        self.audit_log.append(
            FakeAuditLogRecord(
                account_id=account_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata or {},
            )
        )

    def stored(self, account_id: str) -> Account:
        """Direct handle on the stored record, for arranging test state."""
        return self._accounts[account_id]


@dataclass
class FakeAuditLogRecord:
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict


class FakeNotifier:
    """Captures outgoing codes like an inbox; set ``fail`` to simulate SMTP outages."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, OtpPurpose]] = []
        self.fail = False

    def send(self, address: str, content: str, purpose: OtpPurpose) -> bool:
        if self.fail:
            return False
        self.sent.append((address, content, purpose))
        return True

    def last_code(self, address: str, purpose: OtpPurpose) -> str:
        for sent_to, content, sent_purpose in reversed(self.sent):
            if sent_to == normalize_email(address) and sent_purpose is purpose:
                return content
        raise AssertionError(f"no {purpose.value} code sent to {address}")


class MutableClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def service(repository: FakeRepository, notifier: FakeNotifier, clock: MutableClock) -> AuthService:
    return AuthService(
        repository,
        OtpEngine(notifier, ttl_seconds=600),
        SessionGuard(stale_after_hours=24),
        operator_emails=frozenset({OPERATOR_EMAIL}),
        trial_days=14,
        clock=clock,
    )


@pytest.fixture
def verified_user(service: AuthService, notifier: FakeNotifier) -> Callable[..., str]:
    """Return a factory that registers and verifies an account, yielding its id."""

    def _create(email: str = "user@example.com", password: str = "secret1") -> str:
        result = service.register(RegisterInput(email=email, password=password, full_name="Test User"))
        service.verify_email(email, notifier.last_code(email, OtpPurpose.verification))
        return result.account_id

    return _create


@pytest.fixture
def api_client(service: AuthService):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    app.include_router(admin.router)
    register_exception_handlers(app)
    app.state.auth_service = service
    app.state.rate_limiter = SlidingWindowRateLimiter(max_requests=50, window_seconds=60)

    with TestClient(app) as client:
        yield client
