"""
whatsapp.py — WhatsApp delivery channel via the Twilio Messages API.

    App  →  HTTPS POST (form, basic auth)  →  Twilio  →  WhatsApp  →  Handset

    POST {base}/2010-04-01/Accounts/{AccountSid}/Messages.json
        To=whatsapp:+15551234567
        Body=...
        MessagingServiceSid=MG...
        [From=whatsapp:+14155238886]
        [MediaUrl=https://...]      Twilio fetches the media itself

A non-2xx answer carries a JSON error document; its "message" becomes the
TransportError reason.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from relay.app.core.errors import ConfigurationMissing, TransportError, ValidationFailed
from relay.app.dispatch.models import Channel, DeliveryReceipt, MessagingCredentials

if TYPE_CHECKING:
    from relay.app.core.config import Settings

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "whatsapp:"


def with_channel_prefix(address: str) -> str:
    """Apply the whatsapp: prefix once."""
    address = address.strip()
    if address.startswith(CHANNEL_PREFIX):
        return address
    return f"{CHANNEL_PREFIX}{address}"


class WhatsAppDispatcher:
    """Sends one WhatsApp message per call through Twilio."""

    channel = Channel.WHATSAPP

    def __init__(
        self,
        credentials: MessagingCredentials,
        *,
        api_base_url: str = "https://api.twilio.com",
        from_number: Optional[str] = None,
        timeout_seconds: float = 15.0,
        client: Optional[httpx.Client] = None,
    ):
        self.credentials = credentials
        self.api_base_url = api_base_url.rstrip("/")
        self.from_number = from_number
        self.timeout_seconds = timeout_seconds
        self._client = client

    @classmethod
    def from_settings(cls, settings: "Settings") -> "WhatsAppDispatcher":
        return cls(
            MessagingCredentials.from_settings(settings),
            api_base_url=settings.TWILIO_API_BASE_URL,
            from_number=settings.TWILIO_WHATSAPP_FROM,
            timeout_seconds=settings.MESSAGING_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return not self.credentials.missing_keys()

    @property
    def endpoint(self) -> str:
        return (
            f"{self.api_base_url}/2010-04-01/Accounts/"
            f"{self.credentials.account_sid}/Messages.json"
        )

    def ensure_configured(self) -> None:
        missing = self.credentials.missing_keys()
        if missing:
            raise ConfigurationMissing(self.channel.value, missing)

    def build_payload(self, to: str, body: str, media_ref: Optional[str] = None) -> Dict[str, str]:
        payload = {
            "To": with_channel_prefix(to),
            "Body": body,
            "MessagingServiceSid": self.credentials.messaging_service_sid or "",
        }
        if self.from_number:
            payload["From"] = with_channel_prefix(self.from_number)
        if media_ref:
            payload["MediaUrl"] = media_ref
        return payload

    def send_message(self, to: str, body: str, media_ref: Optional[str] = None) -> DeliveryReceipt:
        """Send a WhatsApp message; media_ref is passed to Twilio unresolved."""
        for name, value in (("to", to), ("body", body)):
            if not value or not value.strip():
                raise ValidationFailed(f"Missing '{name}' parameter in request body", field=name)
        self.ensure_configured()

        payload = self.build_payload(to, body, media_ref)
        auth = (self.credentials.account_sid, self.credentials.auth_token)

        try:
            if self._client is not None:
                response = self._client.post(self.endpoint, data=payload, auth=auth)
            else:
                with httpx.Client(timeout=self.timeout_seconds) as client:
                    response = client.post(self.endpoint, data=payload, auth=auth)
        except httpx.HTTPError as exc:
            logger.error("[WHATSAPP] Request to Twilio failed for %s: %s", to, exc)
            raise TransportError("twilio", str(exc) or type(exc).__name__) from exc

        document = _json_or_none(response)
        if not response.is_success:
            reason = _error_reason(response, document)
            logger.error(
                "[WHATSAPP] Twilio rejected message to %s: HTTP %d %s",
                to, response.status_code, reason,
            )
            raise TransportError(
                "twilio", reason,
                http_status=response.status_code,
                code=(document or {}).get("code"),
            )

        document = document or {}
        logger.info(
            "[WHATSAPP] Sent to %s: sid=%s status=%s",
            to, document.get("sid"), document.get("status"),
            extra={"channel": self.channel.value},
        )
        return DeliveryReceipt(
            channel=self.channel,
            recipient=to,
            provider_id=document.get("sid"),
            provider_status=document.get("status"),
            attachment=media_ref,
        )


def _json_or_none(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        document = response.json()
    except ValueError:
        return None
    return document if isinstance(document, dict) else None


def _error_reason(response: httpx.Response, document: Optional[Dict[str, Any]]) -> str:
    if document and document.get("message"):
        return str(document["message"])
    text = response.text.strip()
    return f"HTTP {response.status_code}: {text[:300]}" if text else f"HTTP {response.status_code}"
