"""
Request middleware: correlation id, timing and the dispatch access log.

Every response carries X-Request-ID and X-Process-Time. A caller-supplied
X-Request-ID is echoed only when it is a short token; anything else is
replaced so it cannot inject text into log lines.

The send endpoints get one access log line that includes what the façade
decided, read back from the request context:

    POST /send-message → 500 outcome=messaging_failed delivered=email (412.0ms)

Other paths (health checks, docs) log at DEBUG.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from relay.app.core.logging_config import (
    clear_request_context,
    get_request_context,
    set_request_context,
)

logger = logging.getLogger(__name__)

DISPATCH_PATHS = frozenset({"/send-email", "/send-whatsapp", "/send-message"})
_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def request_id_from(request: Request) -> str:
    supplied = request.headers.get("X-Request-ID", "")
    if _REQUEST_ID.match(supplied):
        return supplied
    return uuid.uuid4().hex[:16]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log dispatch results."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request_id_from(request)
        path = request.url.path
        set_request_context(request_id=request_id, endpoint=path, method=request.method)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s → unhandled error", request.method, path,
                extra={"status_code": 500},
            )
            clear_request_context()
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        ctx = get_request_context()
        if path in DISPATCH_PATHS:
            outcome = ctx.get("outcome", "-")
            delivered = ",".join(ctx.get("delivered", [])) or "-"
            logger.log(
                logging.WARNING if response.status_code >= 400 else logging.INFO,
                "%s %s → %d outcome=%s delivered=%s (%.1fms)",
                request.method, path, response.status_code, outcome, delivered, duration_ms,
                extra={
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 1),
                    "outcome": outcome,
                    "delivered": ctx.get("delivered", []),
                },
            )
        else:
            logger.debug(
                "%s %s → %d (%.1fms)",
                request.method, path, response.status_code, duration_ms,
            )

        clear_request_context()
        return response
