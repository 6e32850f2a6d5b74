# tests/test_whatsapp_service.py
import asyncio
import base64
import hashlib
import hmac
from types import SimpleNamespace

import pytest
import requests
from starlette.datastructures import FormData
from twilio.base.exceptions import TwilioRestException
from twilio.request_validator import RequestValidator

from app.schemas.conversation import OutboundPrompt
from app.services.errors import NotificationError
from app.services.whatsapp_service import WhatsAppService, render_choices


def compute_twilio_json_signature(url: str, raw_body: bytes, auth_token: str, algo: str = "SHA1") -> str:
    """Simula la firma JSON de Twilio: base64(hmac(algo, auth_token, url + raw_body))."""
    digestmod = hashlib.sha256 if algo.upper() == "SHA256" else hashlib.sha1
    digest = hmac.new(auth_token.encode("utf-8"), url.encode("utf-8") + raw_body, digestmod).digest()
    return base64.b64encode(digest).decode("utf-8")


class FakeMessages:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def create(self, **kwargs):
        if self.error:
            raise self.error
        self.calls.append(kwargs)
        return SimpleNamespace(sid=f"SM{len(self.calls)}")


def fake_client(error=None):
    return SimpleNamespace(messages=FakeMessages(error))


# ---------- Envío ----------

def test_send_text_prompt_uses_whatsapp_prefix():
    client = fake_client()
    service = WhatsAppService(client=client, from_number="+14155238886")

    sid = asyncio.run(service.send_prompt("+573001234567", OutboundPrompt.text("hola")))

    assert sid == "SM1"
    assert client.messages.calls == [{
        "from_": "whatsapp:+14155238886",
        "to": "whatsapp:+573001234567",
        "body": "hola",
    }]


def test_send_choice_prompt_renders_numbered_options():
    client = fake_client()
    service = WhatsAppService(client=client, from_number="+14155238886")
    prompt = OutboundPrompt.choices("Pay how?", [("instant", "💳 Pay Now"), ("30_days", "📅 Pay Later")])

    asyncio.run(service.send_prompt("+573001234567", prompt))

    body = client.messages.calls[0]["body"]
    assert body == render_choices(prompt.body, prompt.options)
    assert body.startswith("Pay how?\n\n1️⃣ 💳 Pay Now")
    assert "2️⃣ 📅 Pay Later" in body


def test_send_document_prompt_attaches_media():
    client = fake_client()
    service = WhatsAppService(client=client, from_number="+14155238886")
    prompt = OutboundPrompt.document("https://bot.example.com/receipts/receipt_ORD-1.pdf", "Receipt")

    asyncio.run(service.send_prompt("+573001234567", prompt))

    call = client.messages.calls[0]
    assert call["media_url"] == ["https://bot.example.com/receipts/receipt_ORD-1.pdf"]
    assert call["body"] == "Receipt"


def test_twilio_errors_become_notification_errors():
    error = TwilioRestException(400, "https://api.twilio.com", msg="invalid To number")
    service = WhatsAppService(client=fake_client(error), from_number="+14155238886")

    with pytest.raises(NotificationError):
        asyncio.run(service.send_message("+573001234567", "hola"))


@pytest.mark.parametrize("error", [
    requests.exceptions.ConnectionError("connection reset"),
    requests.exceptions.Timeout("read timed out"),
    OSError("network unreachable"),
])
def test_network_errors_become_notification_errors(error):
    service = WhatsAppService(client=fake_client(error), from_number="+14155238886")

    with pytest.raises(NotificationError):
        asyncio.run(service.send_prompt("+573001234567", OutboundPrompt.text("hola")))


# ---------- Firma form-urlencoded ----------

def test_validate_webhook_form_valid(twilio_token_env):
    url = "https://example.com/webhook/whatsapp"
    params = {
        "From": "whatsapp:+573001234567",
        "Body": "hi",
        "MessageSid": "SMXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX1",
    }
    signature = RequestValidator(twilio_token_env).compute_signature(url, params)

    assert WhatsAppService.validate_webhook(url, FormData(params.items()), signature) is True


def test_validate_webhook_form_tampered_body(twilio_token_env):
    url = "https://example.com/webhook/whatsapp"
    params = {"From": "whatsapp:+573001234567", "Body": "hi", "ButtonPayload": "confirm_order"}
    signature = RequestValidator(twilio_token_env).compute_signature(url, params)

    tampered = dict(params, ButtonPayload="cancel_order")
    assert WhatsAppService.validate_webhook(url, FormData(tampered.items()), signature) is False


def test_validate_webhook_form_missing_data():
    formdata = FormData({"From": "whatsapp:+573001234567"}.items())

    assert WhatsAppService.validate_webhook("https://example.com/webhook/whatsapp", formdata, "") is False
    assert WhatsAppService.validate_webhook("", formdata, "some_signature") is False


# ---------- Firma JSON ----------

@pytest.mark.parametrize("algo", ["SHA1", "SHA256"])
def test_validate_webhook_json_valid(twilio_token_env, algo):
    url = "https://example.com/webhook/whatsapp/json"
    raw_body = b'{"From":"+573001234567","Body":"hi"}'
    sig = compute_twilio_json_signature(url, raw_body, twilio_token_env, algo=algo)

    assert WhatsAppService.validate_webhook_json(url, raw_body, sig, signature_algo=algo) is True


def test_validate_webhook_json_invalid(twilio_token_env):
    url = "https://example.com/webhook/whatsapp/json"
    sig = compute_twilio_json_signature(url, b'{"From":"+573001234567","Body":"hi"}', twilio_token_env)

    assert WhatsAppService.validate_webhook_json(url, b'{"From":"+573001234567","Body":"HI"}', sig) is False
    assert WhatsAppService.validate_webhook_json(url, b'{"From":"+573001234567","Body":"hi"}', "ñ-not-base64") is False


def test_validate_webhook_json_string_body(twilio_token_env):
    url = "https://example.com/webhook/whatsapp/json"
    raw_body = '{"From":"+573001234567","Body":"hi"}'
    sig = compute_twilio_json_signature(url, raw_body.encode("utf-8"), twilio_token_env)

    assert WhatsAppService.validate_webhook_json(url, raw_body, sig) is True
