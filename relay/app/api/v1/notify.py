"""
FastAPI routes: notification relay endpoints.

Provides:
    POST /send-email      — email only            {to, subject, body, media_url?}
    POST /send-whatsapp   — WhatsApp only         {to, body, media_url?}
    POST /send-message    — email then WhatsApp   {email:{to,subject}, whatsapp:{to}, body, media_url?}
                            (body ignored when DISPATCH_SOURCE=config)

Handlers are plain `def` functions: FastAPI runs them in its worker thread
pool, so each request blocks on its own SMTP / Twilio / media calls.
Any other method on these paths is answered with 405 by the router.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Body, Depends

from relay.app.api.schemas import (
    CombinedRequest,
    EmailRequest,
    SendResponse,
    WhatsAppRequest,
)
from relay.app.core.config import Settings, get_settings
from relay.app.core.errors import DispatchFailed
from relay.app.core.logging_config import bind_dispatch
from relay.app.dispatch.channels.email_smtp import EmailDispatcher
from relay.app.dispatch.channels.whatsapp import WhatsAppDispatcher
from relay.app.dispatch.facade import (
    COMBINED,
    CONFIGURED,
    EMAIL_ONLY,
    WHATSAPP_ONLY,
    DispatchFacade,
    RequestSource,
)
from relay.app.dispatch.models import DispatchOutcome, NotificationRequest

router = APIRouter(tags=["notifications"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

@lru_cache()
def get_email_dispatcher() -> EmailDispatcher:
    """Built once from settings; credentials never re-read per request."""
    return EmailDispatcher.from_settings(get_settings())


@lru_cache()
def get_whatsapp_dispatcher() -> WhatsAppDispatcher:
    return WhatsAppDispatcher.from_settings(get_settings())


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def _respond(outcome: DispatchOutcome) -> SendResponse:
    """Turn a façade outcome into a 200 body or a DispatchFailed error."""
    bind_dispatch(outcome=outcome.kind.value, delivered=list(outcome.channels))
    if not outcome.ok:
        details = dict(outcome.details)
        details["outcome"] = outcome.kind.value
        details["delivered"] = list(outcome.channels)
        if outcome.error_code and outcome.error_code != outcome.kind.name:
            details["cause"] = outcome.error_code
        raise DispatchFailed(
            outcome.reason or outcome.kind.value,
            status_code=outcome.http_status,
            error_code=outcome.kind.name,
            details=details,
        )
    return SendResponse(
        status=outcome.kind.value,
        message=outcome.reason,
        channels=list(outcome.channels),
        receipts=[r.to_dict() for r in outcome.receipts],
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/send-email",
    response_model=SendResponse,
    summary="Send an email",
)
def send_email(
    request: Optional[EmailRequest] = Body(None),
    email: EmailDispatcher = Depends(get_email_dispatcher),
    whatsapp: WhatsAppDispatcher = Depends(get_whatsapp_dispatcher),
):
    notification = request.to_notification() if request else NotificationRequest()
    return _respond(DispatchFacade(email, whatsapp, EMAIL_ONLY).handle(notification))


@router.post(
    "/send-whatsapp",
    response_model=SendResponse,
    summary="Send a WhatsApp message",
)
def send_whatsapp(
    request: Optional[WhatsAppRequest] = Body(None),
    email: EmailDispatcher = Depends(get_email_dispatcher),
    whatsapp: WhatsAppDispatcher = Depends(get_whatsapp_dispatcher),
):
    notification = request.to_notification() if request else NotificationRequest()
    return _respond(DispatchFacade(email, whatsapp, WHATSAPP_ONLY).handle(notification))


@router.post(
    "/send-message",
    response_model=SendResponse,
    summary="Send email and/or WhatsApp from one request",
    description=(
        "Email is dispatched first; WhatsApp only runs if the email succeeded. "
        "With DISPATCH_SOURCE=config the body is ignored and recipients, "
        "subject, body and media come from configuration."
    ),
)
def send_message(
    request: Optional[CombinedRequest] = Body(None),
    email: EmailDispatcher = Depends(get_email_dispatcher),
    whatsapp: WhatsAppDispatcher = Depends(get_whatsapp_dispatcher),
    settings: Settings = Depends(get_settings),
):
    if settings.DISPATCH_SOURCE == RequestSource.CONFIG.value:
        facade = DispatchFacade(email, whatsapp, CONFIGURED)
        notification = NotificationRequest.from_settings(settings)
    else:
        facade = DispatchFacade(email, whatsapp, COMBINED)
        notification = request.to_notification() if request else NotificationRequest()
    return _respond(facade.handle(notification))
