from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from portal.domain.models import AuditLog, now_utc
from portal.infra.db import engine

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
AUDITED_READ_PATH_KEYWORDS = ("/history",)
UNAUDITED_PATHS = {"/healthz", "/readyz"}
AUDIT_CONTEXT_STATE_KEY = "_audit_context"

logger = logging.getLogger(__name__)


def write_audit_log(
    *,
    actor_id: str | None,
    actor_role: str | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> None:
    with Session(engine) as session:
        session.add(
            AuditLog(
                actor_id=actor_id,
                actor_role=actor_role,
                action=action,
                resource=resource,
                method=method,
                status_code=status_code,
                detail=detail or {},
            )
        )
        session.commit()


def outcome_for(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    if status_code == 409:
        return "conflict"
    if status_code >= 400:
        return "rejected"
    return "success"


def should_audit_request(method: str, path: str) -> bool:
    if path in UNAUDITED_PATHS:
        return False
    if method in WRITE_METHODS:
        return True
    return any(keyword in path for keyword in AUDITED_READ_PATH_KEYWORDS)


def set_audit_context(request: Request, *, action: str, resource: str, **detail: Any) -> None:
    """Name the business action a handler performs; the middleware reads it after the response."""
    setattr(
        request.state,
        AUDIT_CONTEXT_STATE_KEY,
        {"action": action, "resource": resource, "detail": detail},
    )


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        method = request.method
        path = request.url.path
        if not should_audit_request(method, path):
            return response

        context: dict[str, Any] = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None) or {}
        claims: dict[str, Any] = getattr(request.state, "claims", None) or {}
        action = context.get("action") or f"{method}:{path}"
        resource = context.get("resource") or path
        route = request.scope.get("route")

        detail: dict[str, Any] = {
            "request_ts": now_utc().isoformat(),
            "route": getattr(route, "path", path),
            "path_params": dict(request.path_params),
            "query": request.url.query,
            "client_ip": request.client.host if request.client is not None else None,
            "outcome": outcome_for(response.status_code),
            **context.get("detail", {}),
        }
        try:
            write_audit_log(
                actor_id=claims.get("sub"),
                actor_role=claims.get("role"),
                action=action,
                resource=resource,
                method=method,
                status_code=response.status_code,
                detail=detail,
            )
        except Exception:
            logger.exception("failed to write audit log for %s %s", method, path)
        return response
