# breach_registry/middleware/request_logging.py
from __future__ import annotations

import logging
import time
import uuid
from typing import Iterable, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("breach_registry.request")

QUIET_PREFIXES: Tuple[str, ...] = (
    "/api/healthz",
    "/api/readyz",
    "/docs",
    "/redoc",
    "/openapi.json",
)

VERIFY_PREFIX = "/api/v1/verify/"
_TOKEN_SHOWN = 8


def loggable_path(path: str) -> str:
    """Verification tokens are bearer proofs: only their first characters reach the log."""
    if path.startswith(VERIFY_PREFIX) and len(path) > len(VERIFY_PREFIX) + _TOKEN_SHOWN:
        return path[: len(VERIFY_PREFIX) + _TOKEN_SHOWN] + "..."
    return path


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


def _actor(request: Request) -> str:
    user = request.headers.get("x-user-id", "-")
    org = request.query_params.get("organization_id")
    return f"{user}@{org}" if org else user


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One access line per registry call: who acted (user and organization
    when known), on which path, the outcome and how long it took. Every
    response carries X-Request-ID, the same trace_id the error envelope
    reports.
    """

    def __init__(self, app, quiet_prefixes: Iterable[str] = QUIET_PREFIXES):
        super().__init__(app)
        self.quiet_prefixes = tuple(quiet_prefixes)

    def _quiet(self, request: Request) -> bool:
        path = request.url.path
        return request.method == "OPTIONS" or path.startswith(self.quiet_prefixes)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.trace_id = trace_id
        quiet = self._quiet(request)
        path = loggable_path(request.url.path)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            if not quiet:
                logger.exception(
                    "%s %s crashed actor=%s dur_ms=%s trace_id=%s",
                    request.method,
                    path,
                    _actor(request),
                    int((time.perf_counter() - start) * 1000),
                    trace_id,
                )
            raise

        response.headers["X-Request-ID"] = trace_id
        if not quiet:
            logger.log(
                _level_for(response.status_code),
                "%s %s -> %s actor=%s dur_ms=%s trace_id=%s",
                request.method,
                path,
                response.status_code,
                _actor(request),
                int((time.perf_counter() - start) * 1000),
                trace_id,
            )
        return response
