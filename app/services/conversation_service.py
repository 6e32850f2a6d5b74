"""
🔁 CONVERSATION SERVICE - ORQUESTADOR DE UN TURNO
=================================================

Aplica los efectos que el motor de conversación decide, en un orden fijo y
con UN evento a la vez por número de WhatsApp:

1. 🔒 identity_locks.hold(número)
2. 💾 cargar sesión (ausente = START)
3. 🤖 engine.decide(evento, sesión)
4. 📦 si hay checkout → OrderService.create_order() y engine.complete_checkout()
5. 💾 aplicar la acción de sesión (KEEP / REPLACE / CLEAR)
6. 📤 enviar los prompts (después de guardar: si se reenvía el mensaje,
      el usuario ve el paso correcto)
7. 🧾 pedido confirmado → recibo PDF + enlace (un fallo aquí NO deshace el pedido)

🚨 FALLOS:
- Error leyendo/guardando la sesión o el catálogo → disculpa genérica y se
  intenta borrar la sesión (si tampoco se puede, se registra en el log)
- Error enviando → se registra; los mensajes restantes del turno se omiten
- Lock del número ocupado (otro worker sigue con un mensaje anterior) → aviso
  de reintento, sin tocar la sesión
"""

import logging
from typing import List, Optional

import anyio

from app.schemas.conversation import InboundEvent, OutboundPrompt
from app.services.catalog_service import CatalogService
from app.services.conversation_engine import ConversationEngine, SessionAction, StepOutcome
from app.services.errors import NotificationError, SessionStoreError
from app.services.identity_lock import IdentityLock, IdentityLockTimeout, identity_locks
from app.services.order_service import OrderService
from app.services.receipt_service import ReceiptService
from app.services.session_store import SessionStore
from app.services.whatsapp_service import WhatsAppService
from app.utils.decorators import mask_phone
from app.utils.retry import retry_async

logger = logging.getLogger(__name__)

GENERIC_APOLOGY = "I'm sorry, something went wrong. Let me start over. Type 'hi' to begin."
RECEIPT_APOLOGY = (
    "Your order is confirmed, but there was an issue sending the receipt. "
    "Please contact support if you need a copy."
)
BUSY_NOTICE = "⏳ We're still working on your previous message. Please try again in a moment."


class ConversationService:
    def __init__(self, db, notifier=None, locks: Optional[IdentityLock] = None,
                 receipts: Optional[ReceiptService] = None):
        self.db = db
        self.store = SessionStore(db)
        self.orders = OrderService(db)
        self.engine = ConversationEngine(CatalogService(db), self.orders)
        self.notifier = notifier or WhatsAppService()
        self.locks = locks or identity_locks
        self.receipts = receipts or ReceiptService()

    async def handle_event(self, event: InboundEvent) -> List[OutboundPrompt]:
        """Procesa un evento completo; devuelve los prompts que se intentaron enviar."""
        phone = event.sender_id
        try:
            async with self.locks.hold(phone):
                return await self._handle_locked(event)
        except IdentityLockTimeout:
            logger.warning("⏳ Lock ocupado para %s; se pide reintentar", mask_phone(phone))
            prompts = [OutboundPrompt.text(BUSY_NOTICE)]
            await self._send_all(phone, prompts)
            return prompts

    async def _handle_locked(self, event: InboundEvent) -> List[OutboundPrompt]:
        phone = event.sender_id
        order = None
        try:
            outcome = self.engine.decide(event, self.store.get(phone))
            if outcome.checkout is not None:
                result = self.orders.create_order(
                    outcome.checkout.phone_number,
                    outcome.checkout.customer_name,
                    outcome.checkout.items,
                    outcome.checkout.payment_method,
                )
                order = result["data"] if result.get("success") else None
                outcome = self.engine.complete_checkout(outcome.checkout, result)
            self._apply(phone, outcome)
        except Exception:
            if order is None:
                logger.exception("❌ Turno fallido | from=%s", mask_phone(phone))
                self._clear_quietly(phone)
                prompts = [OutboundPrompt.text(GENERIC_APOLOGY)]
                await self._send_all(phone, prompts)
                return prompts
            # El pedido ya es durable: se confirma aunque la sesión no se haya borrado
            logger.exception("⚠️ Pedido %s creado pero la sesión no se limpió | from=%s",
                             order["order_number"], mask_phone(phone))

        prompts = list(outcome.prompts)
        if not await self._send_all(phone, prompts):
            return prompts

        if order is not None:
            prompts += await self._deliver_receipt(phone, order)
        return prompts

    # ==========================================
    # EFECTOS
    # ==========================================

    def _apply(self, phone: str, outcome: StepOutcome) -> None:
        if outcome.action == SessionAction.REPLACE:
            self.store.put(outcome.session)
        elif outcome.action == SessionAction.CLEAR:
            self.store.delete(phone)

    def _clear_quietly(self, phone: str) -> None:
        try:
            self.store.delete(phone)
        except SessionStoreError:
            logger.exception("🚨 No se pudo limpiar la sesión de %s; queda para revisión", mask_phone(phone))

    async def _send_all(self, phone: str, prompts: List[OutboundPrompt]) -> bool:
        for prompt in prompts:
            try:
                await retry_async(lambda prompt=prompt: self.notifier.send_prompt(phone, prompt),
                                  attempts=3, base_delay=0.4, exc=(NotificationError,))
            except NotificationError:
                logger.exception("📵 Envío fallido a %s (%s); se omiten los mensajes restantes",
                                 mask_phone(phone), prompt.kind)
                return False
        return True

    async def _deliver_receipt(self, phone: str, order: dict) -> List[OutboundPrompt]:
        try:
            url = await anyio.to_thread.run_sync(self.receipts.save_receipt, order)
        except Exception:
            logger.exception("🧾 No se pudo generar el recibo de %s", order["order_number"])
            apology = [OutboundPrompt.text(RECEIPT_APOLOGY)]
            await self._send_all(phone, apology)
            return apology

        prompts = [
            OutboundPrompt.document(url, f"🧾 Receipt for order {order['order_number']}"),
            OutboundPrompt.text(f"📄 Your receipt is ready: {url}"),
        ]
        if not await self._send_all(phone, prompts):
            apology = [OutboundPrompt.text(RECEIPT_APOLOGY)]
            await self._send_all(phone, apology)
            return prompts + apology
        return prompts
