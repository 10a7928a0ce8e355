"""Utilities for issuing and validating application JWTs."""

from __future__ import annotations

import time
from typing import Any

import jwt

from ..config import get_settings
from ..domain.errors import InvalidToken


def issue_access_token(*, subject: str) -> tuple[str, int]:
    """Create a signed JWT representing an authenticated account.

    Parameters
    ----------
    subject:
        Account identifier to embed in the token `sub` claim.

    Returns
    -------
    tuple[str, int]
        A tuple containing the encoded JWT string and its TTL (in seconds).
    """

    settings = get_settings()
    now = int(time.time())
    expires_in = settings.jwt_ttl_seconds
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "sub": subject,
        "iat": now,
        "exp": now + expires_in,
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return token, expires_in


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a JWT returning its payload.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or signed by another issuer.
    """

    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        issuer=settings.jwt_issuer,
        options={"require": ["exp", "iat", "sub"]},
    )


def verify_access_token(token: str) -> str:
    """Return the account id bound to ``token`` or raise ``InvalidToken``.

    Any decoding failure (bad signature, wrong issuer, expiry, malformed
    payload) is collapsed into the same error; no claim of a rejected token is
    ever trusted.
    """
    try:
        claims = decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise InvalidToken() from exc
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise InvalidToken()
    return subject
