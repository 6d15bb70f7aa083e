from __future__ import annotations

from fastapi import FastAPI, HTTPException

from app.api.routers import asset, audit_cycle, identity, loan, maintenance, reclone, ticket
from app.infra.audit import AuditMiddleware
from app.infra.db import check_db_ready
from app.infra.logging import configure_logging

configure_logging()

app = FastAPI(
    title="asset-tracker",
    description="Asset lifecycle and scarce-resource allocation engine.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(asset.router, prefix="/api/assets", tags=["assets"])
app.include_router(ticket.router, prefix="/api/tickets", tags=["tickets"])
app.include_router(maintenance.router, prefix="/api/maintenance", tags=["maintenance"])
app.include_router(reclone.router, prefix="/api/reclone", tags=["reclone"])
app.include_router(loan.router, prefix="/api/loans", tags=["loans"])
app.include_router(audit_cycle.router, prefix="/api/audit", tags=["audit"])


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
