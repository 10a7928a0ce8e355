from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

import pytest

from auth_service.domain import otp as otp_module
from auth_service.domain.account import Account, OtpPurpose
from auth_service.domain.errors import InvalidOtp, OtpExpired, OtpNotFound
from auth_service.domain.otp import OtpEngine

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    def __init__(self, result: bool = True, exc: Exception | None = None) -> None:
        self.result = result
        self.exc = exc
        self.calls: list[tuple[str, str, OtpPurpose]] = []

    def send(self, address, content, purpose):
        self.calls.append((address, content, purpose))
        if self.exc is not None:
            raise self.exc
        return self.result


def make_account() -> Account:
    return Account(
        account_id="acct-1",
        email="user@example.com",
        password_hash="hash",
        full_name="User",
        created_at=NOW,
        updated_at=NOW,
        subscription_start_date=NOW,
        subscription_end_date=NOW + timedelta(days=14),
    )


def test_generate_is_six_digits():
    for _ in range(50):
        assert re.fullmatch(r"\d{6}", OtpEngine.generate())


def test_generate_preserves_leading_zeros(monkeypatch):
    monkeypatch.setattr(otp_module.secrets, "randbelow", lambda upper: 42)
    assert OtpEngine.generate() == "000042"


def test_issue_fills_only_the_requested_slot():
    engine = OtpEngine(RecordingNotifier(), ttl_seconds=600)
    account = make_account()

    challenge = engine.issue(account, OtpPurpose.login, NOW)

    assert account.pending_login == challenge
    assert challenge.expires_at == NOW + timedelta(minutes=10)
    assert account.pending_verification is None


def test_validate_error_cases():
    engine = OtpEngine(RecordingNotifier(), ttl_seconds=600)
    account = make_account()

    with pytest.raises(OtpNotFound):
        engine.validate(account, OtpPurpose.verification, "123456", NOW)

    challenge = engine.issue(account, OtpPurpose.verification, NOW)
    wrong = "000000" if challenge.code != "000000" else "999999"
    with pytest.raises(InvalidOtp):
        engine.validate(account, OtpPurpose.verification, wrong, NOW)
    with pytest.raises(OtpExpired):
        engine.validate(account, OtpPurpose.verification, challenge.code, NOW + timedelta(minutes=10, seconds=1))
    with pytest.raises(OtpNotFound):
        engine.validate(account, OtpPurpose.login, challenge.code, NOW)


def test_validate_accepts_at_expiry_and_leaves_slot_in_place():
    engine = OtpEngine(RecordingNotifier(), ttl_seconds=600)
    account = make_account()
    challenge = engine.issue(account, OtpPurpose.login, NOW)

    engine.validate(account, OtpPurpose.login, challenge.code, challenge.expires_at)

    assert account.pending_login == challenge


def test_deliver_reports_failure_without_raising():
    notifier = RecordingNotifier(result=False)
    engine = OtpEngine(notifier, ttl_seconds=600)
    account = make_account()
    challenge = engine.issue(account, OtpPurpose.login, NOW)

    assert engine.deliver(account, OtpPurpose.login, challenge) is False
    assert notifier.calls == [("user@example.com", challenge.code, OtpPurpose.login)]
    assert account.pending_login == challenge


def test_deliver_treats_notifier_exception_as_failure():
    engine = OtpEngine(RecordingNotifier(exc=RuntimeError("smtp down")), ttl_seconds=600)
    account = make_account()
    challenge = engine.issue(account, OtpPurpose.verification, NOW)

    assert engine.deliver(account, OtpPurpose.verification, challenge) is False
