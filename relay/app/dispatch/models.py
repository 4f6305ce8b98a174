"""
models.py — Shared data structures for notification dispatch.

Defines:
    • EmailCredentials / MessagingCredentials — immutable secret bundles
    • NotificationRequest — one logical notification, channel-agnostic
    • ResolvedMedia       — a request-owned local copy of a remote attachment
    • DeliveryReceipt     — what a transport reported for one channel
    • OutcomeKind / DispatchOutcome — tagged result of one façade call

═══════════════════════════════════════════════════════════════════════════
OUTCOME → HTTP STATUS
═══════════════════════════════════════════════════════════════════════════

    Outcome                 Status   Meaning
    ─────────────────────   ──────   ───────────────────────────────────
    SENT                    200      every requested channel delivered
    VALIDATION_FAILED       400      request fields missing / malformed
    CONFIGURATION_MISSING   500      credentials or config keys absent
    EMAIL_FAILED            500      media or SMTP failure, nothing sent
    MESSAGING_FAILED        500      Twilio failure; email may have gone out

STATUS_BY_OUTCOME is the only place this mapping lives. A new channel adds
an OutcomeKind row here and nothing in the response layer changes.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from relay.app.core.config import Settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Channel(str, Enum):
    """Delivery media supported by the relay."""
    EMAIL    = "email"
    WHATSAPP = "whatsapp"


class OutcomeKind(str, Enum):
    """Closed set of façade results."""
    SENT                  = "sent"
    EMAIL_FAILED          = "email_failed"
    MESSAGING_FAILED      = "messaging_failed"
    VALIDATION_FAILED     = "validation_failed"
    CONFIGURATION_MISSING = "configuration_missing"


STATUS_BY_OUTCOME: Dict[OutcomeKind, int] = {
    OutcomeKind.SENT: 200,
    OutcomeKind.VALIDATION_FAILED: 400,
    OutcomeKind.CONFIGURATION_MISSING: 500,
    OutcomeKind.EMAIL_FAILED: 500,
    OutcomeKind.MESSAGING_FAILED: 500,
}


# ═══════════════════════════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════════════════════════

def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


@dataclass(frozen=True)
class EmailCredentials:
    """Sender address + app password for SMTP basic auth."""
    sender: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EmailCredentials":
        return cls(sender=settings.EMAIL_SENDER, password=settings.EMAIL_PASSWORD)

    def missing_keys(self) -> List[str]:
        missing = []
        if _blank(self.sender):
            missing.append("EMAIL_SENDER")
        if _blank(self.password):
            missing.append("EMAIL_PASSWORD")
        return missing

    def __repr__(self) -> str:
        return f"EmailCredentials(sender={self.sender!r}, password=***)"


@dataclass(frozen=True)
class MessagingCredentials:
    """Twilio account SID, auth token and messaging service SID."""
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    messaging_service_sid: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "MessagingCredentials":
        return cls(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            messaging_service_sid=settings.TWILIO_MESSAGING_SERVICE_SID,
        )

    def missing_keys(self) -> List[str]:
        missing = []
        if _blank(self.account_sid):
            missing.append("TWILIO_ACCOUNT_SID")
        if _blank(self.auth_token):
            missing.append("TWILIO_AUTH_TOKEN")
        if _blank(self.messaging_service_sid):
            missing.append("TWILIO_MESSAGING_SERVICE_SID")
        return missing

    def __repr__(self) -> str:
        return (
            f"MessagingCredentials(account_sid={self.account_sid!r}, "
            f"auth_token=***, messaging_service_sid={self.messaging_service_sid!r})"
        )


# ═══════════════════════════════════════════════════════════════════════════
# Request / Media / Receipt
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NotificationRequest:
    """One logical notification, fanned out to email and/or WhatsApp."""
    body: Optional[str] = None
    email_to: Optional[str] = None
    email_subject: Optional[str] = None
    whatsapp_to: Optional[str] = None
    media_url: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "NotificationRequest":
        """Build the fixed notification of a configuration-sourced relay."""
        return cls(
            body=settings.MESSAGE_BODY,
            email_to=settings.TO_EMAIL,
            email_subject=settings.EMAIL_SUBJECT,
            whatsapp_to=settings.TO_WHATSAPP,
            media_url=settings.MEDIA_URL,
        )

    def normalized(self) -> "NotificationRequest":
        """Strip whitespace and collapse empty strings to None."""
        def clean(value: Optional[str]) -> Optional[str]:
            if value is None:
                return None
            text = value.strip()
            return text or None

        return NotificationRequest(
            body=clean(self.body),
            email_to=clean(self.email_to),
            email_subject=clean(self.email_subject),
            whatsapp_to=clean(self.whatsapp_to),
            media_url=clean(self.media_url),
        )

    @property
    def has_email_target(self) -> bool:
        return self.email_to is not None or self.email_subject is not None

    @property
    def has_whatsapp_target(self) -> bool:
        return self.whatsapp_to is not None


@dataclass
class ResolvedMedia:
    """
    Local copy of a remote attachment.

    Use as a context manager; leaving the block deletes the file whether
    the send succeeded or not.
    """
    path: str
    filename: str
    content_type: str = "application/octet-stream"

    def cleanup(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("[MEDIA] Could not delete %s: %s", self.path, exc)

    @property
    def exists(self) -> bool:
        return os.path.exists(self.path)

    def __enter__(self) -> "ResolvedMedia":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cleanup()


@dataclass
class DeliveryReceipt:
    """What one transport reported after accepting a message."""
    channel: Channel
    recipient: str
    provider_id: Optional[str] = None
    provider_status: Optional[str] = None
    attachment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "channel": self.channel.value,
            "recipient": self.recipient,
        }
        if self.provider_id:
            d["provider_id"] = self.provider_id
        if self.provider_status:
            d["provider_status"] = self.provider_status
        if self.attachment:
            d["attachment"] = self.attachment
        return d


# ═══════════════════════════════════════════════════════════════════════════
# Outcome
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class DispatchOutcome:
    """Tagged result of DispatchFacade.handle()."""
    kind: OutcomeKind
    reason: str = ""
    error_code: Optional[str] = None
    delivered: List[Channel] = field(default_factory=list)
    receipts: List[DeliveryReceipt] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SENT

    @property
    def http_status(self) -> int:
        return STATUS_BY_OUTCOME[self.kind]

    @property
    def channels(self) -> Tuple[str, ...]:
        return tuple(c.value for c in self.delivered)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "outcome": self.kind.value,
            "status": self.http_status,
            "delivered": list(self.channels),
        }
        if self.reason:
            d["reason"] = self.reason
        if self.error_code:
            d["error_code"] = self.error_code
        if self.receipts:
            d["receipts"] = [r.to_dict() for r in self.receipts]
        if self.details:
            d["details"] = self.details
        return d
