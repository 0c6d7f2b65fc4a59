from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from app.core.settings import settings

ACCESS_TOKEN_TTL = timedelta(minutes=60)


def create_access_token(
    subject: str,
    *,
    org_id: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Mint a session token in the format the auth service issues.

    Used by operational scripts and tests; end-user sessions are issued upstream.
    """
    expire = datetime.now(timezone.utc) + (expires_delta or ACCESS_TOKEN_TTL)
    to_encode: dict[str, Any] = {"sub": subject, "exp": expire, "type": "access"}
    if org_id:
        to_encode["org"] = org_id
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, expected_type: str | None = None) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if expected_type and payload.get("type") != expected_type:
        raise ValueError(f"Unexpected token type: {payload.get('type')}")
    return payload
