from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth_service.domain.account import Account, DeviceSession, device_session_from_fields
from auth_service.domain.errors import AccountDeactivated, DeviceConflict, DeviceRequired
from auth_service.domain.session_guard import SessionGuard

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_account(device: DeviceSession | None = None, *, is_active: bool = True) -> Account:
    return Account(
        account_id="acct-1",
        email="user@example.com",
        password_hash="hash",
        full_name="User",
        created_at=NOW,
        updated_at=NOW,
        subscription_start_date=NOW,
        subscription_end_date=NOW + timedelta(days=14),
        email_verified=True,
        active_device=device,
        is_active=is_active,
    )


def bound(device_id: str, hours_ago: float) -> DeviceSession:
    return DeviceSession(device_id, "Laptop", NOW - timedelta(hours=hours_ago))


@pytest.fixture
def guard() -> SessionGuard:
    return SessionGuard(stale_after_hours=24)


def test_inactive_account_rejected_before_device_checks(guard):
    account = make_account(bound("dev-1", 1), is_active=False)
    with pytest.raises(AccountDeactivated):
        guard.admit_login(account, "dev-1", "Laptop", NOW)
    with pytest.raises(AccountDeactivated):
        guard.check_request(account, "dev-1", "Laptop", NOW)


def test_unbound_account_binds_presented_device(guard):
    session = guard.admit_login(make_account(), "dev-1", "Phone", NOW)
    assert session == DeviceSession("dev-1", "Phone", NOW)
    assert guard.check_request(make_account(), "dev-1", "Phone", NOW) == session


def test_same_device_refreshes_last_login(guard):
    account = make_account(bound("dev-1", 30))
    assert guard.admit_login(account, "dev-1", "Laptop", NOW).last_login_at == NOW
    assert guard.check_request(account, "dev-1", "Laptop", NOW).last_login_at == NOW


def test_login_conflicts_inside_staleness_window(guard):
    with pytest.raises(DeviceConflict) as excinfo:
        guard.admit_login(make_account(bound("dev-1", 23.9)), "dev-2", "Phone", NOW)
    assert excinfo.value.code == "DEVICE_CONFLICT"
    assert excinfo.value.status_code == 403


@pytest.mark.parametrize("hours_ago", [24, 25, 240])
def test_login_takes_over_stale_binding(guard, hours_ago):
    session = guard.admit_login(make_account(bound("dev-1", hours_ago)), "dev-2", "Phone", NOW)
    assert session.device_id == "dev-2"


def test_request_check_never_takes_over_stale_binding(guard):
    with pytest.raises(DeviceConflict):
        guard.check_request(make_account(bound("dev-1", 240)), "dev-2", "Phone", NOW)


def test_missing_device_id_is_rejected(guard):
    with pytest.raises(DeviceRequired):
        guard.check_request(make_account(), None, "Phone", NOW)


def test_half_populated_device_record_counts_as_absent(guard):
    assert device_session_from_fields("", "Laptop", NOW) is None
    assert device_session_from_fields("dev-1", None, None) is None
    account = make_account(device_session_from_fields(None, "Laptop", NOW))
    assert guard.check_request(account, "dev-9", "Phone", NOW).device_id == "dev-9"


def test_custom_staleness_window():
    guard = SessionGuard(stale_after_hours=2)
    assert guard.admit_login(make_account(bound("dev-1", 3)), "dev-2", "Phone", NOW).device_id == "dev-2"
