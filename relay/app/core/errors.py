"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • A closed set of relay failure classes, each carrying its HTTP status
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Usage:
    from relay.app.core.errors import (
        RelayError,
        ValidationFailed,
        ConfigurationMissing,
        MediaError,
        TransportError,
        register_error_handlers,
    )

    raise ConfigurationMissing("whatsapp", ["TWILIO_AUTH_TOKEN"])
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class RelayError(Exception):
    """Base exception for all relay failures."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationFailed(RelayError):
    """Request fields are missing or malformed (400)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_FAILED",
            details=d,
        )


class MethodNotAllowed(RelayError):
    """Endpoint called with a method other than POST (405)."""

    def __init__(self, method: str, path: str = ""):
        super().__init__(
            message="Invalid request method",
            status_code=405,
            error_code="METHOD_NOT_ALLOWED",
            details={"method": method, "path": path} if path else {"method": method},
        )


class ConfigurationMissing(RelayError):
    """Required credentials or configuration keys are absent (500)."""

    def __init__(self, channel: str, missing: Iterable[str]):
        keys = list(missing)
        super().__init__(
            message=f"Missing {channel} configuration: {', '.join(keys)}",
            status_code=500,
            error_code="CONFIGURATION_MISSING",
            details={"channel": channel, "missing": keys},
        )
        self.channel = channel
        self.missing = keys


class MediaError(RelayError):
    """A referenced attachment could not be materialised (500)."""

    reason = "media_error"

    def __init__(self, ref: str, message: str = ""):
        super().__init__(
            message=f"Media '{ref}' unavailable: {message}" if message else f"Media '{ref}' unavailable",
            status_code=500,
            error_code="MEDIA_ERROR",
            details={"media_url": ref, "reason": self.reason},
        )
        self.ref = ref


class InvalidReference(MediaError):
    """The media reference is not an absolute http(s) URL."""

    reason = "invalid_reference"


class FetchFailed(MediaError):
    """Network or remote failure while downloading the media."""

    reason = "fetch_failed"


class WriteFailed(MediaError):
    """Local storage failure while writing the media file."""

    reason = "write_failed"


class TransportError(RelayError):
    """SMTP or messaging API call failed (500)."""

    def __init__(self, transport: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Transport '{transport}' failed: {message}",
            status_code=500,
            error_code="TRANSPORT_ERROR",
            details={"transport": transport, **details},
        )
        self.transport = transport
        self.reason = message


class DispatchFailed(RelayError):
    """A notification did not complete; status comes from the dispatch outcome."""


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(RelayError)
    async def handle_relay_error(request: Request, exc: RelayError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "Relay error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning("Malformed request body: %s", exc.errors())
        return _build_error_response(
            400, "VALIDATION_FAILED", "Error parsing request body",
            {"errors": [_describe(err) for err in exc.errors()]}, request,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            relay_exc = MethodNotAllowed(request.method, str(request.url.path))
            response = _build_error_response(
                relay_exc.status_code, relay_exc.error_code, relay_exc.message,
                relay_exc.details, request,
            )
            if exc.headers:
                response.headers.update(exc.headers)
            return response
        return _build_error_response(
            exc.status_code, "HTTP_ERROR", str(exc.detail), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _build_error_response(
            500, "INTERNAL_ERROR", message, request=request,
        )


def _describe(err: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "loc": [str(part) for part in err.get("loc", ())],
        "msg": err.get("msg", ""),
    }
