from __future__ import annotations

from fastapi import FastAPI, HTTPException

from app.api.routers import approval, assignment, directory, evidence, inspection
from app.infra.audit import AuditMiddleware
from app.infra.db import check_db_ready
from app.infra.logging import configure_logging

configure_logging()

app = FastAPI(
    title="site-inspection-workflow",
    description="Site inspection lifecycle with two-tier review and token-based third-party approval.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(directory.router, prefix="/api/directory", tags=["directory"])
app.include_router(assignment.router, prefix="/api/assignments", tags=["assignments"])
app.include_router(approval.router, prefix="/api/approvals", tags=["approvals"])
app.include_router(inspection.router, prefix="/api/inspections", tags=["inspections"])
app.include_router(evidence.router, prefix="/api/evidence", tags=["evidence"])


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
