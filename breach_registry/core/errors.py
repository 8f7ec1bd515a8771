# breach_registry/core/errors.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

log = logging.getLogger("breach_registry.errors")


# -----------------------------
# Registry error taxonomy
# -----------------------------
class RegistryError(Exception):
    """
    Base class for every error raised by the incident registry.
    Each subclass carries the HTTP status and error type used by the
    JSON error envelope below.
    """

    status_code = 500
    error_type = "registry_error"
    default_message = "Incident registry error."
    retryable = False

    def __init__(self, message: Optional[str] = None, *, details: Optional[Any] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(RegistryError):
    """A cross-field rule on the incident snapshot was violated."""

    status_code = 422
    error_type = "validation_error"
    default_message = "Incident fields failed validation."


class NotFound(RegistryError):
    """
    Incident (or organization) absent, or not owned by the caller's
    organization. Both cases produce the same signal.
    """

    status_code = 404
    error_type = "not_found"
    default_message = "Incident not found."


IncidentNotFound = NotFound


class VersionConflict(RegistryError):
    """A concurrent writer claimed the same version number (retryable)."""

    status_code = 409
    error_type = "version_conflict"
    default_message = "The incident was modified concurrently. Please retry."
    retryable = True


class TokenCollision(RegistryError):
    """Generated token already exists. Handled internally, never surfaced."""

    error_type = "token_collision"
    default_message = "Verification token collision."


class StorageUnavailable(RegistryError):
    status_code = 503
    error_type = "storage_unavailable"
    default_message = "Incident storage is temporarily unavailable."


class ImmutableVersionError(RegistryError):
    """Raised when something tries to rewrite or drop a committed version row."""

    error_type = "immutable_version"
    default_message = "Incident versions are append-only."


# -----------------------------
# Trace / request id helpers
# -----------------------------
def _ensure_trace_id(request: Request) -> str:
    """
    Return a stable trace_id for this request.
    Prefer a value already set on request.state, then common headers,
    and finally generate a new one (and store it on request.state).
    """
    for attr in ("trace_id", "request_id"):
        val = getattr(getattr(request, "state", object()), attr, None)
        if val:
            return str(val)

    for h in ("x-request-id", "x-correlation-id", "x-trace-id"):
        v = request.headers.get(h)
        if v:
            request.state.trace_id = v
            return v

    new_id = uuid.uuid4().hex
    request.state.trace_id = new_id
    return new_id


def _payload(
    *,
    message: str,
    typ: str,
    status: int,
    trace_id: str,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "ok": False,
        "error": {
            "type": typ,
            "message": message,
            "status": status,
            "trace_id": trace_id,
        },
    }
    if details is not None:
        body["error"]["details"] = details
    return body


# -----------------------------
# Install / register handlers
# -----------------------------
def register_exception_handlers(app: FastAPI) -> None:
    """
    Registers consistent JSON error handlers.
    Also ensures X-Request-ID header is present on error responses.
    """

    @app.exception_handler(RegistryError)
    async def registry_exc_handler(request: Request, exc: RegistryError):
        trace_id = _ensure_trace_id(request)
        status_code = int(exc.status_code)
        headers = {"X-Request-ID": trace_id}
        if exc.retryable:
            headers["Retry-After"] = "1"

        if status_code >= 500:
            log.error(
                "%s %s %s -> %s | trace_id=%s | %s",
                type(exc).__name__,
                request.method,
                request.url.path,
                status_code,
                trace_id,
                exc.message,
            )
        else:
            log.info(
                "%s %s %s -> %s | trace_id=%s",
                type(exc).__name__,
                request.method,
                request.url.path,
                status_code,
                trace_id,
            )

        return JSONResponse(
            status_code=status_code,
            headers=headers,
            content=_payload(
                message=exc.message,
                typ=exc.error_type,
                status=status_code,
                trace_id=trace_id,
                details=exc.details,
            ),
        )

    @app.exception_handler(HTTPException)
    async def http_exc_handler(request: Request, exc: HTTPException):
        trace_id = _ensure_trace_id(request)
        status_code = int(exc.status_code)
        message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        details = exc.detail if isinstance(exc.detail, dict) else None

        headers = dict(exc.headers or {})
        headers["X-Request-ID"] = trace_id

        level = logging.ERROR if status_code >= 500 else logging.WARNING
        log.log(
            level,
            "HTTPException %s %s -> %s | trace_id=%s | detail=%r",
            request.method,
            request.url.path,
            status_code,
            trace_id,
            exc.detail,
        )

        return JSONResponse(
            status_code=status_code,
            headers=headers,
            content=_payload(
                message=message,
                typ="http_error",
                status=status_code,
                trace_id=trace_id,
                details=details,
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        trace_id = _ensure_trace_id(request)
        errors = exc.errors()
        log.warning(
            "RequestValidationError %s %s -> 422 | trace_id=%s | errors=%s",
            request.method,
            request.url.path,
            trace_id,
            errors,
        )
        return JSONResponse(
            status_code=422,
            headers={"X-Request-ID": trace_id},
            content=_payload(
                message="Validation failed.",
                typ="validation_error",
                status=422,
                trace_id=trace_id,
                details=jsonable_errors(errors),
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):
        trace_id = _ensure_trace_id(request)
        # Full traceback to server logs; generic message to client
        log.exception(
            "Unhandled exception %s %s -> 500 | trace_id=%s",
            request.method,
            request.url.path,
            trace_id,
        )
        return JSONResponse(
            status_code=500,
            headers={"X-Request-ID": trace_id},
            content=_payload(
                message="Internal server error.",
                typ="internal_error",
                status=500,
                trace_id=trace_id,
            ),
        )


def jsonable_errors(errors: Any) -> Any:
    """Pydantic error dicts may carry exception objects in 'ctx'; stringify them."""
    out = []
    for err in errors or []:
        item = dict(err)
        ctx = item.get("ctx")
        if isinstance(ctx, dict):
            item["ctx"] = {k: str(v) for k, v in ctx.items()}
        item.pop("input", None)
        out.append(item)
    return out
