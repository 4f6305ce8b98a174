"""
Pydantic schemas for the notification relay API.

Every field is optional at the schema level: which ones are required depends
on the endpoint's validation policy, and the façade reports what is missing.
The schemas only reject bodies that are not JSON objects of strings.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from relay.app.dispatch.models import NotificationRequest


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

def _media_field():
    return Field(
        None,
        validation_alias=AliasChoices("media_url", "media"),
        description="Public http(s) URL of an attachment",
        examples=["https://example.com/flyer.pdf"],
    )


class EmailRequest(BaseModel):
    """Body of POST /send-email."""
    to: Optional[str] = Field(None, examples=["a@b.com"])
    subject: Optional[str] = Field(None, examples=["Hi"])
    body: Optional[str] = Field(None, examples=["Hello"])
    media_url: Optional[str] = _media_field()

    def to_notification(self) -> NotificationRequest:
        return NotificationRequest(
            body=self.body,
            email_to=self.to,
            email_subject=self.subject,
            media_url=self.media_url,
        )


class WhatsAppRequest(BaseModel):
    """Body of POST /send-whatsapp."""
    to: Optional[str] = Field(None, examples=["+15551234567"])
    body: Optional[str] = Field(None, examples=["Hello"])
    media_url: Optional[str] = _media_field()

    def to_notification(self) -> NotificationRequest:
        return NotificationRequest(
            body=self.body,
            whatsapp_to=self.to,
            media_url=self.media_url,
        )


class EmailTarget(BaseModel):
    to: Optional[str] = Field(None, examples=["a@b.com"])
    subject: Optional[str] = Field(None, examples=["Hi"])


class WhatsAppTarget(BaseModel):
    to: Optional[str] = Field(None, examples=["+15551234567"])


class CombinedRequest(BaseModel):
    """Body of POST /send-message."""
    email: Optional[EmailTarget] = None
    whatsapp: Optional[WhatsAppTarget] = None
    body: Optional[str] = Field(None, examples=["Hello"])
    media_url: Optional[str] = _media_field()

    def to_notification(self) -> NotificationRequest:
        email = self.email or EmailTarget()
        whatsapp = self.whatsapp or WhatsAppTarget()
        return NotificationRequest(
            body=self.body,
            email_to=email.to,
            email_subject=email.subject,
            whatsapp_to=whatsapp.to,
            media_url=self.media_url,
        )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class SendResponse(BaseModel):
    """Successful dispatch summary."""
    status: str = Field("sent", examples=["sent"])
    message: str = Field(..., examples=["Email sent successfully"])
    channels: List[str] = Field(default_factory=list, examples=[["email"]])
    receipts: List[Dict[str, Any]] = Field(default_factory=list)
