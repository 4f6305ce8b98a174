"""
FastAPI application entry point.

Run with:
    notification-relay            (HOST / PORT from settings)
    uvicorn relay.app.main:app --port 8080

Or from the project root:
    python -m uvicorn relay.app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from relay.app.core.config import Settings, get_settings, settings
from relay.app.core.logging_config import setup_logging
from relay.app.core.errors import register_error_handlers
from relay.app.core.middleware import RequestLoggingMiddleware
from relay.app.core.health import HealthStatus, run_health_check

# ── API routers ──
from relay.app.api.v1.notify import router as notify_router

# ── Initialise logging ──
setup_logging()
logger = logging.getLogger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s] dispatch_source=%s",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        settings.DISPATCH_SOURCE,
    )
    report = run_health_check(settings)
    for component in report.components:
        if component.status is not HealthStatus.HEALTHY:
            logger.warning("%s: %s", component.name, component.message)
    yield
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "HTTP relay that forwards one notification as an SMTP email "
        "and/or a WhatsApp message via Twilio, optionally with a media "
        "attachment."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(notify_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "endpoints": ["/send-email", "/send-whatsapp", "/send-message"],
        "dispatch_source": settings.DISPATCH_SOURCE,
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
def health_check(cfg: Settings = Depends(get_settings)):
    """Deep health probe — checks channel configuration and media storage."""
    return run_health_check(cfg).to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
def readiness(cfg: Settings = Depends(get_settings)):
    """Readiness probe — can at least one channel deliver?"""
    report = run_health_check(cfg)
    if report.status is HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()


def run() -> None:
    """Console entry point: serve the relay on HOST:PORT."""
    import uvicorn

    uvicorn.run(
        "relay.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
