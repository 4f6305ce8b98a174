"""
Health check aggregation — deep health probe for the relay.

Checks:
    • Email channel credentials present
    • WhatsApp channel credentials present
    • Media directory writable, with free disk space
    • Configuration-sourced notification complete (DISPATCH_SOURCE=config)

No probe opens a network connection: an SMTP login or a Twilio call would
cost money or trip provider rate limits on every liveness poll.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from relay.app.core.config import Settings, settings as default_settings
from relay.app.dispatch.facade import CONFIGURED, RequestRejected
from relay.app.dispatch.models import EmailCredentials, MessagingCredentials, NotificationRequest

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = default_settings.APP_VERSION
    environment: str = default_settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


def _credentials_component(name: str, missing: List[str]) -> ComponentHealth:
    comp = ComponentHealth(name=name)
    start = time.monotonic()
    if missing:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Missing configuration: {', '.join(missing)}"
        comp.details = {"missing": missing}
    else:
        comp.message = "Credentials configured"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_email_channel(cfg: Settings) -> ComponentHealth:
    comp = _credentials_component("email", EmailCredentials.from_settings(cfg).missing_keys())
    comp.details["smtp"] = f"{cfg.SMTP_HOST}:{cfg.SMTP_PORT}"
    return comp


def check_whatsapp_channel(cfg: Settings) -> ComponentHealth:
    comp = _credentials_component("whatsapp", MessagingCredentials.from_settings(cfg).missing_keys())
    comp.details["api"] = cfg.TWILIO_API_BASE_URL
    return comp


def check_media_dir(cfg: Settings) -> ComponentHealth:
    """Check the attachment directory is writable and has room."""
    comp = ComponentHealth(name="media_dir")
    start = time.monotonic()
    media_dir = cfg.MEDIA_DIR or tempfile.gettempdir()
    try:
        if not os.path.isdir(media_dir) or not os.access(media_dir, os.W_OK):
            comp.status = HealthStatus.DEGRADED
            comp.message = f"{media_dir} is not a writable directory"
        else:
            _total, _used, free = shutil.disk_usage(media_dir)
            free_gb = free / (1024 ** 3)
            comp.details = {"path": media_dir, "free_gb": round(free_gb, 1)}
            if free_gb < 0.1:
                comp.status = HealthStatus.DEGRADED
                comp.message = f"Low disk space: {free_gb:.2f} GB free"
            else:
                comp.message = f"{free_gb:.1f} GB free"
    except OSError as e:
        comp.status = HealthStatus.DEGRADED
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_configured_notification(cfg: Settings) -> Optional[ComponentHealth]:
    """In config-sourced mode, the fixed notification must validate."""
    if cfg.DISPATCH_SOURCE != "config":
        return None
    comp = ComponentHealth(name="configured_notification")
    start = time.monotonic()
    try:
        CONFIGURED.plan(NotificationRequest.from_settings(cfg))
        comp.message = "Notification fields configured"
    except RequestRejected as exc:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = exc.reason
        comp.details = exc.details()
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def run_health_check(cfg: Optional[Settings] = None) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    cfg = cfg or default_settings
    report = HealthReport(
        version=cfg.APP_VERSION,
        environment=cfg.ENVIRONMENT,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components.append(check_email_channel(cfg))
    report.components.append(check_whatsapp_channel(cfg))
    report.components.append(check_media_dir(cfg))
    configured = check_configured_notification(cfg)
    if configured is not None:
        report.components.append(configured)

    statuses = [c.status for c in report.components]
    channels_down = all(
        c.status is not HealthStatus.HEALTHY
        for c in report.components if c.name in ("email", "whatsapp")
    )
    if HealthStatus.UNHEALTHY in statuses or channels_down:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
