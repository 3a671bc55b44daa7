from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from portal.domain.models import Actor
from portal.infra.auth import InvalidTokenError, actor_from_claims, decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_claims(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> dict[str, Any] | None:
    if credentials is None:
        return None
    try:
        claims = decode_access_token(credentials.credentials)
    except InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def get_current_actor(
    claims: Annotated[dict[str, Any] | None, Depends(get_current_claims)],
) -> Actor | None:
    """An absent token yields None; the service layer turns that into Unauthenticated."""
    if claims is None:
        return None
    try:
        return actor_from_claims(claims)
    except InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token claims",
        ) from exc
