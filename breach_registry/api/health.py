# breach_registry/api/health.py
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from breach_registry.core import config
from breach_registry.core.auth import get_db
from breach_registry.models.incident import IncidentVersion
from breach_registry.models.organization import Organization

router = APIRouter(tags=["health"])

_NO_STORE = {"Cache-Control": "no-store"}


@router.get("/healthz")
def healthz(request: Request) -> dict:
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "ok": True,
        "service": "breach-registry",
        "status": "healthy",
        "deadline_monitor": "running" if scheduler is not None and scheduler.running else "off",
        "ts": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/readyz")
def readyz(db: Session = Depends(get_db)):
    """
    Ready when the registry tables answer a query. A process pointed at an
    unmigrated database is up but not ready.
    """
    t0 = time.perf_counter()
    try:
        db.query(Organization.id).limit(1).all()
        db.query(IncidentVersion.id).limit(1).all()
    except SQLAlchemyError as e:
        db.rollback()
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "registry": "unavailable", "error": e.__class__.__name__},
            headers=_NO_STORE,
        )
    latency_ms = (time.perf_counter() - t0) * 1000.0
    token_key = "default" if config.get_token_secret() == config.DEFAULT_TOKEN_SECRET else "configured"
    return JSONResponse(
        status_code=200,
        content={
            "ok": True,
            "registry": "up",
            "db_latency_ms": round(latency_ms, 2),
            "token_key": token_key,
        },
        headers=_NO_STORE,
    )
