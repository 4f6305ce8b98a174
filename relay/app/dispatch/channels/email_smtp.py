"""
email_smtp.py — Email delivery channel over SMTP.

Delivery mechanism:
    • SMTP submission (STARTTLS on 587, basic auth with the sender account)
    • Plain-text body, exactly one recipient, at most one attachment
    • Attachment materialised by MediaResolver and deleted after the send

═══════════════════════════════════════════════════════════════════════════
SEND SEQUENCE
═══════════════════════════════════════════════════════════════════════════

    ensure_configured()          EMAIL_SENDER / EMAIL_PASSWORD  → ConfigurationMissing
    validate to/subject/body                                  → ValidationFailed
      (one address in `to`, no header control characters)
    resolve media (optional)     no SMTP connection yet        → MediaError
    build MIME message
    SMTP connect/STARTTLS/login/send                          → TransportError
    delete media file            always, success or failure

Nothing is retried; a TransportError means the caller reports failure.
"""

from __future__ import annotations

import logging
import re
import smtplib
import ssl
from contextlib import ExitStack
from email import encoders
from email.message import Message
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import getaddresses, make_msgid
from typing import TYPE_CHECKING, Callable, Optional

from relay.app.core.errors import ConfigurationMissing, TransportError, ValidationFailed
from relay.app.dispatch.channels.media import MediaResolver
from relay.app.dispatch.models import Channel, DeliveryReceipt, EmailCredentials, ResolvedMedia

if TYPE_CHECKING:
    from relay.app.core.config import Settings

logger = logging.getLogger(__name__)

SmtpFactory = Callable[..., smtplib.SMTP]

# CR/LF and other C0 controls would split or forge headers; tab is allowed
_HEADER_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def has_header_controls(value: str) -> bool:
    return bool(_HEADER_CONTROL_CHARS.search(value))


def parse_recipient(to: str) -> str:
    """
    Return the bare address of a single-recipient `to` field.

    Accepts `a@b.com` or `Name <a@b.com>`; raises ValueError unless the
    field names exactly one address.
    """
    if has_header_controls(to):
        raise ValueError("contains control characters")
    addresses = [addr for _, addr in getaddresses([to]) if addr]
    if len(addresses) != 1:
        raise ValueError("expected exactly one address")
    address = addresses[0]
    local, _, domain = address.partition("@")
    if not local or not domain or "@" in domain or any(c.isspace() for c in address):
        raise ValueError("not an email address")
    return address


class EmailDispatcher:
    """Sends one plain-text email per call through a fixed SMTP endpoint."""

    channel = Channel.EMAIL

    def __init__(
        self,
        credentials: EmailCredentials,
        *,
        media_resolver: Optional[MediaResolver] = None,
        smtp_host: str = "smtp.gmail.com",
        smtp_port: int = 587,
        use_tls: bool = True,
        timeout_seconds: float = 20.0,
        smtp_factory: SmtpFactory = smtplib.SMTP,
    ):
        self.credentials = credentials
        self.media_resolver = media_resolver or MediaResolver()
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds
        self._smtp_factory = smtp_factory

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EmailDispatcher":
        return cls(
            EmailCredentials.from_settings(settings),
            media_resolver=MediaResolver(
                media_dir=settings.MEDIA_DIR,
                timeout_seconds=settings.MEDIA_FETCH_TIMEOUT_SECONDS,
            ),
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            use_tls=settings.SMTP_USE_TLS,
            timeout_seconds=settings.SMTP_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return not self.credentials.missing_keys()

    def ensure_configured(self) -> None:
        missing = self.credentials.missing_keys()
        if missing:
            raise ConfigurationMissing(self.channel.value, missing)

    def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        media_ref: Optional[str] = None,
    ) -> DeliveryReceipt:
        """
        Send an email to a single recipient.

        Parameters
        ----------
        to : str
            Recipient address.
        subject, body : str
            Subject line and plain-text body.
        media_ref : str | None
            Optional http(s) URL; downloaded and attached. If it cannot be
            resolved, nothing is sent.

        Returns
        -------
        DeliveryReceipt
        """
        for name, value in (("to", to), ("subject", subject), ("body", body)):
            if not value or not value.strip():
                raise ValidationFailed(f"Missing email parameter '{name}'", field=name)
        try:
            recipient = parse_recipient(to)
        except ValueError as exc:
            raise ValidationFailed(f"Invalid email parameter 'to': {exc}", field="to") from exc
        if has_header_controls(subject):
            raise ValidationFailed(
                "Invalid email parameter 'subject': contains control characters",
                field="subject",
            )
        self.ensure_configured()

        with ExitStack() as stack:
            attachment: Optional[ResolvedMedia] = None
            if media_ref:
                attachment = stack.enter_context(self.media_resolver.resolve(media_ref))

            message = self.build_message(to, subject, body, attachment)
            self._transmit(message, recipient)

        logger.info(
            "[EMAIL] Sent to %s: Subject='%s'%s",
            to, subject, f" (+{attachment.filename})" if attachment else "",
            extra={"channel": self.channel.value},
        )
        return DeliveryReceipt(
            channel=self.channel,
            recipient=to,
            provider_id=message["Message-ID"],
            provider_status="accepted",
            attachment=attachment.filename if attachment else None,
        )

    def build_message(
        self,
        to: str,
        subject: str,
        body: str,
        attachment: Optional[ResolvedMedia] = None,
    ) -> Message:
        """Plain text/plain message, or multipart/mixed when there is an attachment."""
        text = MIMEText(body, "plain", "utf-8")
        if attachment is None:
            message: Message = text
        else:
            message = MIMEMultipart()
            message.attach(text)
            maintype, _, subtype = attachment.content_type.partition("/")
            part = MIMEBase(maintype or "application", subtype or "octet-stream")
            with open(attachment.path, "rb") as fh:
                part.set_payload(fh.read())
            encoders.encode_base64(part)
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            message.attach(part)

        message["From"] = self.credentials.sender
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid()
        return message

    def _transmit(self, message: Message, recipient: str) -> None:
        try:
            with self._smtp_factory(
                self.smtp_host, self.smtp_port, timeout=self.timeout_seconds,
            ) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                    server.ehlo()
                server.login(self.credentials.sender, self.credentials.password)
                # explicit envelope: never derived from the To header
                server.send_message(message, to_addrs=[recipient])
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("[EMAIL] Authentication rejected for %s", self.credentials.sender)
            raise TransportError("smtp", "authentication failed", code=exc.smtp_code) from exc
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("[EMAIL] Failed for %s: %s", recipient, exc)
            raise TransportError("smtp", str(exc) or type(exc).__name__) from exc
