"""
test_whatsapp_dispatcher.py — Tests for the Twilio WhatsApp channel.

Covers:
    • Credential checks before any network activity
    • Form payload (whatsapp: prefix, service SID, media passthrough)
    • Basic auth and endpoint URL
    • Error responses and network errors wrapped as TransportError

Run with:
    pytest tests/test_whatsapp_dispatcher.py -v
"""

from __future__ import annotations

from typing import List
from urllib.parse import parse_qs

import httpx
import pytest

from relay.app.core.config import Settings
from relay.app.core.errors import ConfigurationMissing, TransportError, ValidationFailed
from relay.app.dispatch.channels.whatsapp import WhatsAppDispatcher, with_channel_prefix
from relay.app.dispatch.models import Channel, MessagingCredentials


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

CREDS = MessagingCredentials(
    account_sid="AC123",
    auth_token="token-xyz",
    messaging_service_sid="MG456",
)


class TwilioStub:
    """Records requests and answers like the Messages API."""

    def __init__(self, status: int = 201, json_body=None, text: str = ""):
        self.status = status
        self.json_body = json_body if json_body is not None else {"sid": "SM789", "status": "queued"}
        self.text = text
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text:
            return httpx.Response(self.status, text=self.text)
        return httpx.Response(self.status, json=self.json_body)

    def form(self, index: int = -1):
        return {k: v[0] for k, v in parse_qs(self.requests[index].content.decode()).items()}


def _dispatcher(stub, credentials: MessagingCredentials = CREDS, **kwargs) -> WhatsAppDispatcher:
    return WhatsAppDispatcher(
        credentials,
        client=httpx.Client(transport=httpx.MockTransport(stub)),
        **kwargs,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Credentials & payload
# ═══════════════════════════════════════════════════════════════════════════

class TestMessagingCredentials:

    def test_missing_keys_listed(self):
        creds = MessagingCredentials(account_sid="AC123", messaging_service_sid="MG456")
        assert creds.missing_keys() == ["TWILIO_AUTH_TOKEN"]
        assert CREDS.missing_keys() == []

    def test_repr_hides_token(self):
        assert "token-xyz" not in repr(CREDS)

    def test_from_settings(self):
        cfg = Settings(
            _env_file=None,
            TWILIO_ACCOUNT_SID="AC1",
            TWILIO_AUTH_TOKEN="tok",
            TWILIO_MESSAGING_SERVICE_SID="MG1",
        )
        assert MessagingCredentials.from_settings(cfg) == MessagingCredentials("AC1", "tok", "MG1")


class TestPayload:

    def test_prefix_applied_once(self):
        assert with_channel_prefix("+15551234567") == "whatsapp:+15551234567"
        assert with_channel_prefix("whatsapp:+15551234567") == "whatsapp:+15551234567"

    def test_build_payload_minimal(self):
        payload = _dispatcher(TwilioStub()).build_payload("+15551234567", "Hello")
        assert payload == {
            "To": "whatsapp:+15551234567",
            "Body": "Hello",
            "MessagingServiceSid": "MG456",
        }

    def test_build_payload_with_media_and_from(self):
        dispatcher = _dispatcher(TwilioStub(), from_number="+14155238886")
        payload = dispatcher.build_payload("+15551234567", "Hello", "https://h/pic.png")
        assert payload["From"] == "whatsapp:+14155238886"
        assert payload["MediaUrl"] == "https://h/pic.png"

    def test_endpoint(self):
        dispatcher = _dispatcher(TwilioStub(), api_base_url="https://api.twilio.test/")
        assert dispatcher.endpoint == "https://api.twilio.test/2010-04-01/Accounts/AC123/Messages.json"


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Sending
# ═══════════════════════════════════════════════════════════════════════════

class TestSendMessage:

    def test_posts_form_with_basic_auth(self):
        stub = TwilioStub()
        receipt = _dispatcher(stub).send_message("+15551234567", "Hello")

        assert len(stub.requests) == 1
        request = stub.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["Authorization"].startswith("Basic ")
        assert stub.form() == {
            "To": "whatsapp:+15551234567",
            "Body": "Hello",
            "MessagingServiceSid": "MG456",
        }
        assert receipt.channel is Channel.WHATSAPP
        assert receipt.provider_id == "SM789"
        assert receipt.provider_status == "queued"

    def test_media_passed_through_unresolved(self):
        stub = TwilioStub()
        receipt = _dispatcher(stub).send_message("+15551234567", "Hello", "https://h/pic.png")
        assert stub.form()["MediaUrl"] == "https://h/pic.png"
        assert receipt.attachment == "https://h/pic.png"

    def test_missing_token_makes_no_request(self):
        stub = TwilioStub()
        dispatcher = _dispatcher(stub, credentials=MessagingCredentials("AC123", None, "MG456"))
        with pytest.raises(ConfigurationMissing) as exc:
            dispatcher.send_message("+15551234567", "Hello")
        assert exc.value.missing == ["TWILIO_AUTH_TOKEN"]
        assert stub.requests == []

    def test_blank_body_rejected(self):
        stub = TwilioStub()
        with pytest.raises(ValidationFailed):
            _dispatcher(stub).send_message("+15551234567", "")
        assert stub.requests == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Failures
# ═══════════════════════════════════════════════════════════════════════════

class TestSendMessageFailures:

    def test_api_error_message_surfaced(self):
        stub = TwilioStub(status=400, json_body={
            "code": 21211,
            "message": "The 'To' number is not a valid phone number.",
            "status": 400,
        })
        with pytest.raises(TransportError) as exc:
            _dispatcher(stub).send_message("+1", "Hello")
        assert exc.value.reason == "The 'To' number is not a valid phone number."
        assert exc.value.details["http_status"] == 400
        assert exc.value.details["code"] == 21211

    def test_non_json_error_uses_text(self):
        stub = TwilioStub(status=503, text="Service Unavailable")
        with pytest.raises(TransportError) as exc:
            _dispatcher(stub).send_message("+15551234567", "Hello")
        assert "HTTP 503" in exc.value.reason
        assert "Service Unavailable" in exc.value.reason

    def test_network_error_wrapped(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        dispatcher = WhatsAppDispatcher(
            CREDS, client=httpx.Client(transport=httpx.MockTransport(unreachable)),
        )
        with pytest.raises(TransportError) as exc:
            dispatcher.send_message("+15551234567", "Hello")
        assert exc.value.transport == "twilio"
        assert "connection refused" in exc.value.reason
