# breach_registry/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI

from breach_registry.core import config
from breach_registry.core.errors import register_exception_handlers
from breach_registry.db.session import engine
from breach_registry.middleware.request_logging import RequestLoggingMiddleware

# ---------------------------
# MODELS (registers every table on the shared Base)
# ---------------------------
from breach_registry.models import Base

# ---------------------------
# ROUTERS
# ---------------------------
from breach_registry.api import health
from breach_registry.api.v1 import incidents, verify
from breach_registry.worker.scheduler import make_scheduler

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("breach_registry")

if config.DEFAULT_TOKEN_SECRET == config.get_token_secret():
    log.warning("VERIFICATION_TOKEN_SECRET is not set; using the built-in development key")

# ---------------------------
# CREATE TABLES (dev-only; guard with env)
# ---------------------------
if config.ENABLE_CREATE_ALL:
    Base.metadata.create_all(bind=engine)

# ---------------------------
# APP
# ---------------------------
app = FastAPI(
    title="Breach Registry",
    version="1.0.0",
    description="GDPR Art. 33 incident versioning and verification registry",
)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)

# ---------------------------
# ROUTER MOUNT
# ---------------------------
app.include_router(incidents.router, prefix="/api/v1", tags=["incidents"])
app.include_router(verify.router, prefix="/api/v1", tags=["verification"])
app.include_router(health.router, prefix="/api", tags=["health"])


# ---------------------------
# Scheduler (daily deadline scan), optional
# ---------------------------
@app.on_event("startup")
def _start_scheduler():
    app.state.scheduler = None
    if not config.ENABLE_SCHEDULER:
        return
    app.state.scheduler = make_scheduler()
    app.state.scheduler.start()
    log.info(
        "Deadline scan scheduled daily at %02d:%02d %s",
        config.APP_SCHEDULER_HOUR,
        config.APP_SCHEDULER_MINUTE,
        config.APP_TIMEZONE,
    )


@app.on_event("shutdown")
def _stop_scheduler():
    sched = getattr(app.state, "scheduler", None)
    if sched:
        sched.shutdown(wait=False)
