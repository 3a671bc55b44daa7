from __future__ import annotations

import logging
import os

from fastapi import FastAPI, HTTPException

from portal.api.routers import photos, work_orders
from portal.infra.audit import AuditMiddleware
from portal.infra.db import check_db_ready
from portal.infra.events import event_bus
from portal.infra.notifications import build_notification_sink
from portal.services.notification_service import NotificationDispatcher

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="tenant-portal",
    description="Work-order lifecycle for the tenant portal.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(work_orders.router, prefix="/api/work-orders", tags=["work-orders"])
app.include_router(photos.router, prefix="/api/photos", tags=["photos"])

notifier = NotificationDispatcher(build_notification_sink())
event_bus.subscribe("*", notifier.handle)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
