from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from pydantic import ValidationError

from portal.domain.models import Actor

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))

REQUIRED_CLAIMS = ("sub", "role", "exp")


class InvalidTokenError(Exception):
    pass


def create_access_token(
    *,
    user_id: str,
    role: str,
    expires_minutes: int | None = None,
) -> str:
    now = datetime.now(UTC)
    expire_delta = timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    payload: dict[str, Any] = {
        "sub": user_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + expire_delta).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        decoded = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            options={"require": list(REQUIRED_CLAIMS)},
        )
    except jwt.PyJWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    if not isinstance(decoded, dict):
        raise InvalidTokenError("invalid token payload")
    return decoded


def actor_from_claims(claims: dict[str, Any]) -> Actor:
    """The identity provider is trusted for id and role; nothing else is read from the token."""
    try:
        return Actor(id=str(claims["sub"]), role=claims["role"])
    except (KeyError, ValidationError) as exc:
        raise InvalidTokenError("token does not carry a known actor") from exc
