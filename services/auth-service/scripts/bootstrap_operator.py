#!/usr/bin/env python3
"""Provision the pre-verified account of a platform operator.

Usage:
    OPERATOR_EMAIL=ops@example.com OPERATOR_PASSWORD='...' python scripts/bootstrap_operator.py

    python scripts/bootstrap_operator.py --email ops@example.com --password '...' --full-name "Ops"

Operator privilege is granted only by listing the email in ``OPERATOR_EMAILS``
on the running service; this script just makes sure the account exists and
can log in with an OTP.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime, timedelta, timezone

from psycopg_pool import ConnectionPool

from auth_service.config import get_settings
from auth_service.domain.account import SubscriptionStatus, SubscriptionTier, normalize_email
from auth_service.domain.contracts import ProvisionInput
from auth_service.main import build_auth_service
from auth_service.repository import AccountRepository

logger = logging.getLogger("bootstrap_operator")


def bootstrap_operator(repository: AccountRepository, email: str, password: str, full_name: str) -> dict:
    """Create the operator account unless it already exists.

    Returns a dict with ``account_id``, ``email`` and ``status``
    (``created`` or ``exists``).
    """
    settings = get_settings()
    email = normalize_email(email)
    existing = repository.find_by_email(email)
    if existing is not None:
        return {"account_id": existing.account_id, "email": email, "status": "exists"}

    service = build_auth_service(repository, settings)
    account = service.provision_account(
        ProvisionInput(
            email=email,
            password=password,
            full_name=full_name,
            subscription_tier=SubscriptionTier.twelve_months,
            subscription_status=SubscriptionStatus.active,
            subscription_end_date=datetime.now(timezone.utc) + timedelta(days=365),
        ),
        actor="bootstrap",
    )
    return {"account_id": account.account_id, "email": email, "status": "created"}


def main() -> int:
    parser = argparse.ArgumentParser(description="Provision an operator account")
    parser.add_argument("--email", default=os.getenv("OPERATOR_EMAIL"))
    parser.add_argument("--password", default=os.getenv("OPERATOR_PASSWORD"))
    parser.add_argument("--full-name", default=os.getenv("OPERATOR_NAME", "Operator"))
    args = parser.parse_args()

    if not args.email or not args.password:
        parser.error("--email and --password (or OPERATOR_EMAIL / OPERATOR_PASSWORD) are required")

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    settings = get_settings()
    if normalize_email(args.email) not in settings.operator_emails:
        logger.warning("%s is not listed in OPERATOR_EMAILS; the account will have no admin access", args.email)

    with ConnectionPool(settings.database_url) as pool:
        result = bootstrap_operator(AccountRepository(pool), args.email, args.password, args.full_name)
    logger.info("operator account %s (%s): %s", result["email"], result["account_id"], result["status"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
