"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
Credentials are read once at process start and handed to the dispatchers
as immutable values; nothing reads the environment mid-request.

Usage:
    from relay.app.core.config import settings
    print(settings.SMTP_HOST)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: init kwargs > env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Notification Relay"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # ── CORS ──
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    CORS_ALLOW_ALL: bool = False

    # ── Dispatch mode ──
    # "request": recipients come from the POST body (general API)
    # "config":  /send-message ignores the body and uses the TO_* keys below
    DISPATCH_SOURCE: Literal["request", "config"] = "request"

    # ── Email (SMTP) ──
    EMAIL_SENDER: Optional[str] = None
    EMAIL_PASSWORD: Optional[str] = None
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USE_TLS: bool = True
    SMTP_TIMEOUT_SECONDS: float = 20.0

    # ── WhatsApp (Twilio Messages API) ──
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_MESSAGING_SERVICE_SID: Optional[str] = None
    TWILIO_WHATSAPP_FROM: Optional[str] = None  # e.g. +14155238886 (sandbox)
    TWILIO_API_BASE_URL: str = "https://api.twilio.com"
    MESSAGING_TIMEOUT_SECONDS: float = 15.0

    # ── Media attachments ──
    MEDIA_DIR: Optional[str] = None  # defaults to the system temp dir
    MEDIA_FETCH_TIMEOUT_SECONDS: float = 30.0

    # ── Configuration-sourced notification ──
    TO_EMAIL: Optional[str] = None
    TO_WHATSAPP: Optional[str] = None
    EMAIL_SUBJECT: Optional[str] = None
    MESSAGE_BODY: Optional[str] = None
    MEDIA_URL: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
