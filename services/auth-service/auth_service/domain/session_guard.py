"""Single-active-device admission rules."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from .. import metrics
from .account import Account, DeviceSession
from .errors import AccountDeactivated, DeviceConflict, DeviceRequired

logger = logging.getLogger(__name__)


class SessionGuard:
    """Decide whether a device may use an account.

    Both entry points are pure: they return the ``DeviceSession`` that should
    be stored after admission and leave persistence to the caller.

    ``admit_login`` lets a new device displace a binding whose last login is
    older than the staleness window. ``check_request`` never does; a request
    presenting a different device is always rejected and the user has to log
    in again (or force-logout) to move the session.
    """

    def __init__(self, stale_after_hours: int = 24) -> None:
        self._stale_after = timedelta(hours=stale_after_hours)

    def admit_login(
        self, account: Account, device_id: str, device_label: str, now: datetime
    ) -> DeviceSession:
        return self._admit(account, device_id, device_label, now, allow_stale_takeover=True)

    def check_request(
        self, account: Account, device_id: str | None, device_label: str, now: datetime
    ) -> DeviceSession:
        return self._admit(account, device_id, device_label, now, allow_stale_takeover=False)

    def _admit(
        self,
        account: Account,
        device_id: str | None,
        device_label: str,
        now: datetime,
        *,
        allow_stale_takeover: bool,
    ) -> DeviceSession:
        if not account.is_active:
            raise AccountDeactivated()
        if not device_id:
            raise DeviceRequired()

        fresh = DeviceSession(device_id=device_id, device_label=device_label, last_login_at=now)
        bound = account.active_device
        if bound is None or bound.device_id == device_id:
            return fresh

        stage = "login" if allow_stale_takeover else "request"
        if allow_stale_takeover and now - bound.last_login_at >= self._stale_after:
            logger.info(
                "stale device binding on account %s displaced (last login %s)",
                account.account_id,
                bound.last_login_at.isoformat(),
            )
            return fresh

        metrics.DEVICE_CONFLICTS.labels(stage=stage).inc()
        raise DeviceConflict()
