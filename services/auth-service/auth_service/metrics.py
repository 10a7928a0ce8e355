"""Prometheus counters for the auth lifecycle."""

from __future__ import annotations

from prometheus_client import Counter

AUTH_EVENTS = Counter(
    "auth_events_total",
    "Successful auth lifecycle transitions.",
    ["event"],
)

DEVICE_CONFLICTS = Counter(
    "auth_device_conflicts_total",
    "Admissions rejected because another device holds the session.",
    ["stage"],
)

OTP_DELIVERIES = Counter(
    "auth_otp_deliveries_total",
    "One-time code delivery attempts by outcome.",
    ["purpose", "outcome"],
)
