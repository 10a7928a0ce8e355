"""Database repository for account credentials and device sessions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from psycopg import errors as pg_errors
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import (
    Account,
    Role,
    SubscriptionStatus,
    SubscriptionTier,
    device_session_from_fields,
    normalize_email,
    otp_challenge_from_fields,
)
from .domain.errors import Conflict, StaleWriteError

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = """
    account_id, email, password_hash, full_name, company_name, phone,
    email_verified,
    verification_otp, verification_otp_expires_at,
    login_otp, login_otp_expires_at,
    device_id, device_label, device_last_login_at,
    subscription_status, subscription_tier, subscription_start_date, subscription_end_date,
    role, is_active, version, created_at, updated_at
"""

# Domain tables owned by an account; removed together with it.
CASCADE_TABLES: tuple[str, ...] = ("windows", "user_settings", "subscriptions", "payments")


class AccountRepository:
    """Postgres-backed account persistence with optimistic versioning.

    Every mutation of an existing account goes through :meth:`save`, which
    writes the whole record in one ``UPDATE`` guarded by the version the
    caller read. Two writers racing on the same account therefore produce
    one success and one :class:`StaleWriteError`.
    """

    def __init__(self, pool: ConnectionPool, cascade_tables: tuple[str, ...] = CASCADE_TABLES) -> None:
        self._pool = pool
        self._cascade_tables = cascade_tables

    def find_by_id(self, account_id: str) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_id = %s",
                    (account_id,),
                )
                row = cur.fetchone()
        return self._map_record(row) if row else None

    def find_by_email(self, email: str) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE email = %s",
                    (normalize_email(email),),
                )
                row = cur.fetchone()
        return self._map_record(row) if row else None

    def create(self, account: Account) -> Account:
        """Insert a new account; a duplicate email raises ``Conflict``."""
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO accounts ({_ACCOUNT_COLUMNS})
                        VALUES ({", ".join(["%s"] * 23)})
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            account.account_id,
                            *self._mutable_values(account)[:-1],
                            account.created_at,
                            account.updated_at,
                        ),
                    )
                    row = cur.fetchone()
                    conn.commit()
        except pg_errors.UniqueViolation as exc:
            raise Conflict() from exc
        return self._map_record(row)

    def save(self, account: Account) -> Account:
        """Persist ``account`` if nobody else wrote it since it was read.

        Returns the stored record with its bumped version; raises
        :class:`StaleWriteError` when the compare-and-swap loses.
        """
        now = datetime.now(timezone.utc)
        values = self._mutable_values(account)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE accounts SET
                        email = %s, password_hash = %s, full_name = %s, company_name = %s, phone = %s,
                        email_verified = %s,
                        verification_otp = %s, verification_otp_expires_at = %s,
                        login_otp = %s, login_otp_expires_at = %s,
                        device_id = %s, device_label = %s, device_last_login_at = %s,
                        subscription_status = %s, subscription_tier = %s,
                        subscription_start_date = %s, subscription_end_date = %s,
                        role = %s, is_active = %s, version = %s, updated_at = %s
                    WHERE account_id = %s AND version = %s
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (*values[:-2], account.version + 1, now, account.account_id, account.version),
                )
                row = cur.fetchone()
                conn.commit()
        if row is None:
            logger.info("stale write on account %s at version %s", account.account_id, account.version)
            raise StaleWriteError(account.account_id, account.version)
        return self._map_record(row)

    def delete(self, account_id: str) -> bool:
        """Delete an account and every domain row keyed by it in one transaction."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                for table in self._cascade_tables:
                    cur.execute(f"DELETE FROM {table} WHERE user_id = %s", (account_id,))
                cur.execute("DELETE FROM accounts WHERE account_id = %s", (account_id,))
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing auth workflow activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO auth_audit_log (account_id, event_type, actor, metadata)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (account_id, event_type, actor, Json(metadata or {})),
                )
                conn.commit()

    def _mutable_values(self, account: Account) -> tuple[Any, ...]:
        """Column values in ``_ACCOUNT_COLUMNS`` order, minus ``account_id`` and ``created_at``."""
        verification = account.pending_verification
        login = account.pending_login
        device = account.active_device
        return (
            normalize_email(account.email),
            account.password_hash,
            account.full_name,
            account.company_name,
            account.phone,
            account.email_verified,
            verification.code if verification else None,
            verification.expires_at if verification else None,
            login.code if login else None,
            login.expires_at if login else None,
            device.device_id if device else None,
            device.device_label if device else None,
            device.last_login_at if device else None,
            account.subscription_status.value,
            account.subscription_tier.value,
            account.subscription_start_date,
            account.subscription_end_date,
            account.role.value,
            account.is_active,
            account.version,
            account.updated_at,
        )

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            email=row[1],
            password_hash=row[2],
            full_name=row[3],
            company_name=row[4] or "",
            phone=row[5] or "",
            email_verified=row[6],
            pending_verification=otp_challenge_from_fields(row[7], row[8]),
            pending_login=otp_challenge_from_fields(row[9], row[10]),
            active_device=device_session_from_fields(row[11], row[12], row[13]),
            subscription_status=SubscriptionStatus(row[14]),
            subscription_tier=SubscriptionTier(row[15]),
            subscription_start_date=row[16],
            subscription_end_date=row[17],
            role=Role(row[18]),
            is_active=row[19],
            version=row[20],
            created_at=row[21],
            updated_at=row[22],
        )
