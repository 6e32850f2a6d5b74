from fastapi import APIRouter, Request, HTTPException, Form, BackgroundTasks, Body
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session
import asyncio
import logging

from database.connection import SessionLocal  # sesión por task
from app.schemas.conversation import InboundEvent
from app.services.cache_service import cache_service
from app.services.conversation_service import ConversationService
from app.services.errors import NotificationError
from app.services.whatsapp_service import WhatsAppService
from app.services.throttle_service import (
    claim_message_idempotent,
    check_rate_limit,
)
from app.utils.decorators import mask_phone
from app.utils.retry import retry_async
from config.settings import settings


router = APIRouter()
limiter = Limiter(key_func=get_remote_address)
logger = logging.getLogger(__name__)

RATE_LIMITED_MSG = "Too many messages. Please wait a moment before trying again."
TIMEOUT_MSG = "We're experiencing delays. Please try again in a moment."


class WebhookJSONIn(BaseModel):
    From: str = Field(..., min_length=5)
    Body: Optional[str] = Field(None, max_length=2000)
    MessageSid: Optional[str] = None
    SmsMessageSid: Optional[str] = None
    ButtonPayload: Optional[str] = None
    ButtonText: Optional[str] = None

    @field_validator('From')
    @classmethod
    def strip_from_whitespace(cls, v: str) -> str:
        """Valida y limpia espacios en blanco del campo From."""
        if isinstance(v, str):
            return v.strip()
        return v


def effective_url(request: Request) -> str:
    """Reconstruye la URL firmada por Twilio (respeta proxy y querystring)."""
    host = request.headers.get("x-forwarded-host") or request.url.hostname
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    path = request.url.path
    query = f"?{request.url.query}" if request.url.query else ""
    return f"{proto}://{host}{path}{query}"


def normalize_msisdn(n: str) -> str:
    """
    Normaliza un número de teléfono móvil en formato MSISDN.
    """
    n = (n or "").strip()
    if n.startswith("whatsapp:"):
        n = n[len("whatsapp:"):]
    n = n.replace(" ", "")
    if n and not n.startswith("+"):
        n = "+" + n
    return n


def build_event(from_number: str, body: Optional[str], message_sid: Optional[str],
                button_payload: Optional[str] = None) -> InboundEvent:
    """
    Texto libre → kind="text"; botón de WhatsApp (ButtonPayload) → respuesta
    estructurada con reply_id = id de la opción.
    """
    payload = (button_payload or "").strip()
    return InboundEvent(
        sender_id=from_number,
        text=(body or "").strip(),
        kind="structured_reply" if payload else "text",
        reply_id=payload or None,
        message_id=message_sid,
    )


async def _notify(whatsapp: WhatsAppService, to: str, text: str) -> None:
    try:
        await retry_async(lambda: whatsapp.send_message(to, text), attempts=3, base_delay=0.4,
                          exc=(NotificationError,))
    except NotificationError:
        logger.exception("📵 No se pudo avisar a %s", mask_phone(to))


async def _process_and_reply(event: InboundEvent) -> None:
    """Flujo completo de procesamiento y respuesta."""
    safe = mask_phone(event.sender_id)
    whatsapp = WhatsAppService()
    db: Session = SessionLocal()

    try:
        # 1) Idempotencia (Twilio reintenta el webhook)
        if event.message_id and not claim_message_idempotent(db, event.message_id, event.sender_id, event.text):
            logger.info("🔁 Duplicado ignorado | sid=%s | from=%s", event.message_id, safe)
            return

        # 2) Rate limit por número (ventana 1 min, Redis)
        if not await check_rate_limit(cache_service, event.sender_id):
            logger.info("🚦 Rate limit | from=%s", safe)
            await _notify(whatsapp, event.sender_id, RATE_LIMITED_MSG)
            return

        # 3) Turno de conversación con timeout
        service = ConversationService(db, notifier=whatsapp)
        await asyncio.wait_for(service.handle_event(event), timeout=settings.PROCESSING_TIMEOUT)
        logger.info("✅ Turno OK | from=%s | sid=%s", safe, event.message_id or "N/A")

    except asyncio.TimeoutError:
        logger.warning("⏱️ Timeout procesando | from=%s | sid=%s", safe, event.message_id or "N/A")
        await _notify(whatsapp, event.sender_id, TIMEOUT_MSG)
    except Exception:
        logger.exception("❌ Error procesando/enviando | from=%s | sid=%s", safe, event.message_id or "N/A")
    finally:
        db.close()


def _signature_ok(valid: bool, url: str, signature: str, kind: str) -> None:
    if settings.DISABLE_WEBHOOK_VALIDATION:
        return
    if not valid:
        logger.info("❌ Twilio signature invalid (%s) url=%s sig_present=%s", kind, url, bool(signature))
        raise HTTPException(status_code=403, detail="Invalid signature")


@router.post("/whatsapp")
@limiter.limit("200/minute") #SlowAPI
async def whatsapp_webhook_form(
    request: Request,
    background_tasks: BackgroundTasks,
    From: str = Form(...),
    Body: str = Form(""),
    MessageSid: Optional[str] = Form(None),
    SmsMessageSid: Optional[str] = Form(None),
    ButtonPayload: Optional[str] = Form(None),
):
    # ✅ Validación de firma (form) usando FormData crudo
    form_data = await request.form()
    signature = request.headers.get("X-Twilio-Signature", "")
    algo = request.headers.get("X-Twilio-Signature-Algorithm")
    url = effective_url(request)
    _signature_ok(WhatsAppService.validate_webhook(url, form_data, signature, algo), url, signature, "form")

    from_number = normalize_msisdn(From)
    if not from_number:
        raise HTTPException(status_code=400, detail="Invalid sender number")

    background_tasks.add_task(
        _process_and_reply,
        build_event(from_number, Body, MessageSid or SmsMessageSid, ButtonPayload),
    )
    return JSONResponse({"status": "accepted"})


@router.post("/whatsapp/json")
@limiter.limit("200/minute")
async def whatsapp_webhook_json(
    request: Request,
    background_tasks: BackgroundTasks,
    data: WebhookJSONIn = Body(...),
):
    # ✅ Validación de firma (JSON) con raw body exacto
    signature = request.headers.get("X-Twilio-Signature", "")
    algo = request.headers.get("X-Twilio-Signature-Algorithm")
    raw = await request.body()
    url = effective_url(request)
    _signature_ok(WhatsAppService.validate_webhook_json(url, raw, signature, algo), url, signature, "json")

    from_number = normalize_msisdn(data.From)
    if not from_number:
        raise HTTPException(status_code=400, detail="Invalid sender number")

    background_tasks.add_task(
        _process_and_reply,
        build_event(from_number, data.Body, data.MessageSid or data.SmsMessageSid, data.ButtonPayload),
    )
    return JSONResponse({"status": "accepted"})
