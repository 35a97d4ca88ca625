"""
JWT issuing and verification for the stub API.

Tokens are signed with HS256 using the app's ``STUB_JWT_SECRET``; the
stub is both issuer and verifier, so a shared secret is enough.

Token structure (claims):
    - ``user_id``  -- integer id of the stub user.
    - ``email``    -- login email, echoed back in the login response.
    - ``role``     -- ``customer``, ``vendor`` or ``rider``.
    - ``iat``      -- issued-at timestamp (UTC epoch seconds).
    - ``exp``      -- expiration timestamp (UTC epoch seconds).

The harness reads ``exp`` without verifying the signature to decide
when a cached credential has expired.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

ALGORITHM = "HS256"

REQUIRED_TOKEN_CLAIMS = ["user_id", "email", "role", "iat", "exp"]


def create_token(user_id: int, email: str, role: str, secret: str, ttl_seconds: int) -> str:
    """
    Create an HS256-signed JWT for a stub user.

    Raises:
        ValueError: If *user_id* is not positive or *email* is blank.
    """
    if int(user_id) <= 0:
        raise ValueError("user_id must be a positive integer")
    if not isinstance(email, str) or not email.strip():
        raise ValueError("email must be a non-empty string")

    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "user_id": int(user_id),
        "email": email,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=int(ttl_seconds))).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str, leeway: int = 5) -> dict[str, Any]:
    """
    Verify *token* and return its claims.

    Raises:
        jwt.InvalidTokenError: If the token is expired, malformed,
            badly signed or missing a required claim.
    """
    return jwt.decode(
        token,
        secret,
        algorithms=[ALGORITHM],
        options={"require": REQUIRED_TOKEN_CLAIMS},
        leeway=leeway,
    )
