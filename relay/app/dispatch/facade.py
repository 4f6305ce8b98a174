"""
facade.py — One notification in, one outcome out.

Linear pipeline, no loops and no compensation:

    Validate ──► Preflight ──► DispatchEmail ──► DispatchMessaging ──► SENT
       │            │               │                    │
       ▼            ▼               ▼                    ▼
    VALIDATION_  CONFIGURATION_  EMAIL_FAILED      MESSAGING_FAILED
    FAILED       MISSING         (messaging never   (email already sent,
                                  attempted)         reported in delivered)

Which fields are required, and where they come from, is a ValidationPolicy.
The HTTP endpoints differ only in the policy they hand to the façade.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from relay.app.core.errors import ConfigurationMissing, MediaError, RelayError, TransportError
from relay.app.dispatch.channels.email_smtp import (
    EmailDispatcher,
    has_header_controls,
    parse_recipient,
)
from relay.app.dispatch.channels.whatsapp import WhatsAppDispatcher
from relay.app.dispatch.models import (
    Channel,
    DeliveryReceipt,
    DispatchOutcome,
    NotificationRequest,
    OutcomeKind,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Validation policies
# ═══════════════════════════════════════════════════════════════════════════

class Requirement(str, Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"  # runs when the request names a target
    DISABLED = "disabled"


class RequestSource(str, Enum):
    REQUEST = "request"
    CONFIG  = "config"


class RequestRejected(Exception):
    """Raised by ValidationPolicy.plan() with the missing and malformed field names."""

    def __init__(self, reason: str, fields: List[str], invalid: Optional[List[str]] = None):
        super().__init__(reason)
        self.reason = reason
        self.fields = fields
        self.invalid = invalid or []

    def details(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"missing": self.fields}
        if self.invalid:
            d["invalid"] = self.invalid
        return d


@dataclass(frozen=True)
class DispatchPlan:
    request: NotificationRequest
    send_email: bool
    send_whatsapp: bool


@dataclass(frozen=True)
class ValidationPolicy:
    """Which channels a façade call must, may or must not dispatch."""
    name: str
    email: Requirement
    whatsapp: Requirement
    source: RequestSource = RequestSource.REQUEST

    @property
    def requires_any(self) -> bool:
        return self.email is not Requirement.REQUIRED and self.whatsapp is not Requirement.REQUIRED

    def plan(self, request: NotificationRequest) -> DispatchPlan:
        """Decide which steps run; raises RequestRejected listing missing or malformed fields."""
        req = request.normalized()
        missing: List[str] = []
        invalid: List[str] = []

        if req.body is None:
            missing.append("body")

        send_email = _wants(self.email, req.has_email_target)
        send_whatsapp = _wants(self.whatsapp, req.has_whatsapp_target)

        if send_email:
            if req.email_to is None:
                missing.append("email.to")
            elif not _single_recipient(req.email_to):
                invalid.append("email.to")
            if req.email_subject is None:
                missing.append("email.subject")
            elif has_header_controls(req.email_subject):
                invalid.append("email.subject")
        if send_whatsapp and req.whatsapp_to is None:
            missing.append("whatsapp.to")

        if self.requires_any and not (send_email or send_whatsapp):
            missing.extend(["email.to", "whatsapp.to"])

        if missing or invalid:
            problems = []
            if missing:
                problems.append(f"Missing required fields: {', '.join(missing)}")
            if invalid:
                problems.append(f"Invalid fields: {', '.join(invalid)}")
            raise RequestRejected("; ".join(problems), missing, invalid)

        return DispatchPlan(request=req, send_email=send_email, send_whatsapp=send_whatsapp)


def _wants(requirement: Requirement, has_target: bool) -> bool:
    if requirement is Requirement.REQUIRED:
        return True
    if requirement is Requirement.DISABLED:
        return False
    return has_target


def _single_recipient(to: str) -> bool:
    try:
        parse_recipient(to)
    except ValueError:
        return False
    return True


EMAIL_ONLY = ValidationPolicy("email", Requirement.REQUIRED, Requirement.DISABLED)
WHATSAPP_ONLY = ValidationPolicy("whatsapp", Requirement.DISABLED, Requirement.REQUIRED)
COMBINED = ValidationPolicy("combined", Requirement.OPTIONAL, Requirement.OPTIONAL)
CONFIGURED = ValidationPolicy(
    "configured", Requirement.OPTIONAL, Requirement.OPTIONAL, RequestSource.CONFIG,
)


# ═══════════════════════════════════════════════════════════════════════════
# Façade
# ═══════════════════════════════════════════════════════════════════════════

class DispatchFacade:
    """Fans one NotificationRequest out to email then WhatsApp."""

    def __init__(
        self,
        email: EmailDispatcher,
        whatsapp: WhatsAppDispatcher,
        policy: ValidationPolicy = COMBINED,
    ):
        self.email = email
        self.whatsapp = whatsapp
        self.policy = policy

    def handle(self, request: NotificationRequest) -> DispatchOutcome:
        try:
            plan = self.policy.plan(request)
        except RequestRejected as exc:
            # a config-sourced relay with gaps is misconfigured, not a bad request
            kind = (
                OutcomeKind.CONFIGURATION_MISSING
                if self.policy.source is RequestSource.CONFIG
                else OutcomeKind.VALIDATION_FAILED
            )
            return self._finish(DispatchOutcome(
                kind=kind,
                reason=exc.reason,
                error_code=kind.name,
                details=exc.details(),
            ))

        try:
            self._preflight(plan)
        except ConfigurationMissing as exc:
            return self._finish(DispatchOutcome(
                kind=OutcomeKind.CONFIGURATION_MISSING,
                reason=exc.message,
                error_code=exc.error_code,
                details=exc.details,
            ))

        delivered: List[Channel] = []
        receipts: List[DeliveryReceipt] = []
        req = plan.request

        if plan.send_email:
            try:
                receipts.append(self.email.send_email(
                    req.email_to, req.email_subject, req.body, req.media_url,
                ))
            except RelayError as exc:
                return self._finish(self._failure(OutcomeKind.EMAIL_FAILED, exc, delivered, receipts))
            delivered.append(Channel.EMAIL)

        if plan.send_whatsapp:
            try:
                receipts.append(self.whatsapp.send_message(
                    req.whatsapp_to, req.body, req.media_url,
                ))
            except RelayError as exc:
                return self._finish(self._failure(OutcomeKind.MESSAGING_FAILED, exc, delivered, receipts))
            delivered.append(Channel.WHATSAPP)

        return self._finish(DispatchOutcome(
            kind=OutcomeKind.SENT,
            reason=_success_message(delivered),
            delivered=delivered,
            receipts=receipts,
        ))

    def _preflight(self, plan: DispatchPlan) -> None:
        # credentials for every planned step, before any outbound call
        if plan.send_email:
            self.email.ensure_configured()
        if plan.send_whatsapp:
            self.whatsapp.ensure_configured()

    @staticmethod
    def _failure(
        kind: OutcomeKind,
        exc: RelayError,
        delivered: List[Channel],
        receipts: List[DeliveryReceipt],
    ) -> DispatchOutcome:
        if isinstance(exc, ConfigurationMissing):
            kind = OutcomeKind.CONFIGURATION_MISSING
        details = dict(exc.details)
        if isinstance(exc, MediaError):
            details.setdefault("stage", "media")
        elif isinstance(exc, TransportError):
            details.setdefault("stage", "transport")
        return DispatchOutcome(
            kind=kind,
            reason=exc.message,
            error_code=exc.error_code,
            delivered=list(delivered),
            receipts=list(receipts),
            details=details,
        )

    def _finish(self, outcome: DispatchOutcome) -> DispatchOutcome:
        log = logger.info if outcome.ok else logger.warning
        log(
            "[DISPATCH] policy=%s outcome=%s delivered=%s %s",
            self.policy.name, outcome.kind.value, list(outcome.channels), outcome.reason,
            extra={"policy": self.policy.name, "outcome": outcome.kind.value},
        )
        return outcome


def _success_message(delivered: List[Channel]) -> str:
    if delivered == [Channel.EMAIL]:
        return "Email sent successfully"
    if delivered == [Channel.WHATSAPP]:
        return "WhatsApp message sent successfully"
    return "Email and WhatsApp message sent successfully"
