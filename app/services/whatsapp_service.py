"""
📱 WHATSAPP SERVICE - NOTIFICADOR VÍA TWILIO
============================================

Envía los OutboundPrompt del motor de conversación por la API de mensajes de
Twilio y valida la firma de los webhooks entrantes.

📤 ENVÍO:
- text          → mensaje simple
- choice_prompt → cuerpo + opciones numeradas (el usuario puede responder
                  con el número, la etiqueta o el botón)
- document      → media_url con el PDF del recibo + caption

⚠️ El cliente de Twilio se crea en el primer envío: la app y los tests
   arrancan sin credenciales.

🔐 FIRMAS:
- validate_webhook():      form-urlencoded con RequestValidator oficial
- validate_webhook_json(): HMAC de url + raw body (SHA1 o SHA256)
"""

import base64
import hashlib
import hmac
import logging
from typing import Any, List, Mapping, Optional, Union

import anyio
from requests.exceptions import RequestException
from starlette.datastructures import FormData
from twilio.base.exceptions import TwilioException
from twilio.request_validator import RequestValidator
from twilio.rest import Client

from app.schemas.conversation import ChoiceOption, OutboundPrompt
from app.services.errors import NotificationError
from app.utils.decorators import mask_phone
from config.settings import settings

logger = logging.getLogger(__name__)

_NUMBER_EMOJI = ["1️⃣", "2️⃣", "3️⃣"]


def _wa(n: str) -> str:
    return n if n.startswith("whatsapp:") else f"whatsapp:{n}"


def render_choices(body: str, options: List[ChoiceOption]) -> str:
    lines = [f"{_NUMBER_EMOJI[i]} {option.label}" for i, option in enumerate(options)]
    return f"{body}\n\n" + "\n".join(lines)


class WhatsAppService:
    def __init__(self, client: Optional[Client] = None, from_number: Optional[str] = None):
        self._client = client
        self.from_number = from_number or settings.TWILIO_WHATSAPP_NUMBER or ""

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        return self._client

    async def _create(self, to_number: str, **kwargs) -> str:
        def _send():
            msg = self.client.messages.create(
                from_=_wa(self.from_number),
                to=_wa(to_number),
                **kwargs,
            )
            return msg.sid

        try:
            return await anyio.to_thread.run_sync(_send)
        except TwilioException as e:
            logger.warning("📵 Twilio rechazó el envío a %s: %s", mask_phone(to_number), e)
            raise NotificationError(str(e)) from e
        except (RequestException, OSError) as e:
            # Errores de red del cliente HTTP de Twilio: no llegan como TwilioException
            logger.warning("📵 Fallo de red enviando a %s: %s", mask_phone(to_number), e)
            raise NotificationError(str(e)) from e

    async def send_message(self, to_number: str, body: str) -> str:
        return await self._create(to_number, body=body)

    async def send_choices(self, to_number: str, body: str, options: List[ChoiceOption]) -> str:
        return await self._create(to_number, body=render_choices(body, options))

    async def send_document(self, to_number: str, media_url: str, caption: str = "") -> str:
        return await self._create(to_number, body=caption or None, media_url=[media_url])

    async def send_prompt(self, to_number: str, prompt: OutboundPrompt) -> str:
        if prompt.kind == "choice_prompt":
            return await self.send_choices(to_number, prompt.body, prompt.options)
        if prompt.kind == "document":
            return await self.send_document(to_number, prompt.body, prompt.caption or "")
        return await self.send_message(to_number, prompt.body)

    # ---------- Validación de firma ----------

    @staticmethod
    def _b64_hmac(data: bytes, key: str, algo: Optional[str]) -> str:
        digestmod = hashlib.sha256 if (algo or "SHA1").upper() == "SHA256" else hashlib.sha1
        digest = hmac.new(key.encode("utf-8"), data, digestmod).digest()
        return base64.b64encode(digest).decode("utf-8")

    @staticmethod
    def _has_validation_data(url: str, signature: str, kind: str) -> bool:
        if settings.TWILIO_AUTH_TOKEN and signature and url:
            return True
        logger.debug(
            "Missing validation data (%s) url=%s sig=%s token=%s",
            kind, url, bool(signature), bool(settings.TWILIO_AUTH_TOKEN)
        )
        return False

    @staticmethod
    def validate_webhook(
        url: str,
        form: Union[FormData, Mapping[str, Any]],
        signature: str,
        signature_algo: Optional[str] = None,  # RequestValidator siempre usa SHA1
    ) -> bool:
        """
        Valida firmas Twilio para application/x-www-form-urlencoded
        usando el validador oficial (maneja orden/encoding).
        """
        if not WhatsAppService._has_validation_data(url, signature, "form"):
            return False

        validator = RequestValidator(settings.TWILIO_AUTH_TOKEN)
        is_valid = validator.validate(url, dict(form), signature)
        logger.debug("Twilio form signature valid=%s url=%s", is_valid, url)
        return is_valid

    @staticmethod
    def validate_webhook_json(
        url: str,
        raw_body: Union[bytes, bytearray, str],
        signature: str,
        signature_algo: Optional[str] = None,
    ) -> bool:
        """
        Valida firmas Twilio para application/json:
        string_to_sign = url + raw_body (bytes exactos).
        """
        if not WhatsAppService._has_validation_data(url, signature, "json"):
            return False

        body_bytes = raw_body.encode("utf-8") if isinstance(raw_body, str) else bytes(raw_body or b"")
        computed = WhatsAppService._b64_hmac(url.encode("utf-8") + body_bytes, settings.TWILIO_AUTH_TOKEN, signature_algo)
        ok = hmac.compare_digest(computed.encode("utf-8"), signature.encode("utf-8"))
        logger.debug("Twilio JSON signature valid=%s url=%s algo=%s", ok, url, signature_algo or "SHA1")
        return ok
