"""
Logging setup for the relay.

Output shape depends on ENVIRONMENT:

    production    one JSON object per line; request context and dispatch
                  fields (policy, outcome, delivered, ...) at the top level
    otherwise     12:00:01 INFO     [a1b2c3d4] relay.app...: message  outcome=sent

Every record passes through SecretMaskingFilter first, so a configured
EMAIL_PASSWORD or TWILIO_AUTH_TOKEN never reaches a handler, whatever an
exception message happens to echo back.

The request context lives in a ContextVar holding one mutable dict per
request. The middleware creates it; the API layer adds the dispatch outcome
to the same dict with bind_dispatch(), which is how the access log line
learns what the request delivered.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from relay.app.core.config import Settings, settings

_request_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "relay_request_context", default=None
)

# Record attributes passed via `extra=` that formatters surface
DISPATCH_FIELDS = (
    "policy", "outcome", "channel", "delivered",
    "error_code", "status_code", "duration_ms",
)

MASK = "***"


# ── Request context ──

def set_request_context(**fields: Any) -> None:
    """Start a fresh context for the current request."""
    _request_context.set(dict(fields))


def clear_request_context() -> None:
    _request_context.set(None)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get() or {}


def bind_dispatch(**fields: Any) -> None:
    """Add dispatch results to the current request's context (no-op outside a request)."""
    ctx = _request_context.get()
    if ctx is not None:
        ctx.update({k: v for k, v in fields.items() if v is not None})


# ── Filters & formatters ──

class SecretMaskingFilter(logging.Filter):
    """Replace configured secret values in the rendered message."""

    def __init__(self, secrets: Iterable[Optional[str]]):
        super().__init__()
        # longest first so a secret containing another is masked whole
        self.secrets: List[str] = sorted(
            {s for s in secrets if s and len(s) >= 4}, key=len, reverse=True,
        )

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self.secrets:
            masked = masked.replace(secret, MASK)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def _dispatch_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: getattr(record, k) for k in DISPATCH_FIELDS if hasattr(record, k)}


class JSONFormatter(logging.Formatter):
    """Flat JSON lines for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(get_request_context())
        entry.update(_dispatch_fields(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = f"{type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """One readable line per record with the request id and dispatch fields."""

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, "%H:%M:%S")
        request_id = get_request_context().get("request_id")
        rid = f" [{request_id[:8]}]" if request_id else ""
        fields = " ".join(
            f"{k}={v}" for k, v in _dispatch_fields(record).items()
            if k not in ("duration_ms", "status_code")
        )
        line = f"{ts} {record.levelname:8s}{rid} {record.name}: {record.getMessage()}"
        if fields:
            line = f"{line}  {fields}"
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


# ── Setup ──

def setup_logging(cfg: Optional[Settings] = None) -> None:
    """Install one stdout handler on the root logger."""
    cfg = cfg or settings
    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if cfg.is_production else ConsoleFormatter())
    handler.addFilter(SecretMaskingFilter([cfg.EMAIL_PASSWORD, cfg.TWILIO_AUTH_TOKEN]))
    root.addHandler(handler)

    # httpx logs every request URL at INFO, including Twilio account paths
    for name in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)
