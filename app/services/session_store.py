"""
💾 SESSION STORE - UNA SESIÓN POR NÚMERO DE WHATSAPP
====================================================

Persistencia del estado de conversación (paso + borrador) por número de
teléfono. El motor de conversación no guarda nada en memoria entre mensajes:
todo se reconstruye desde aquí en cada evento entrante.

📋 CONTRATO:
- get(phone)    → SessionState | None
- put(state)    → reemplaza la sesión completa (un solo commit)
- delete(phone) → True si existía

🛡️ SESIONES CORRUPTAS:
- Paso desconocido, borrador inválido o de otra versión → se tratan como
  ausentes (el usuario vuelve a START en vez de quedar atascado)

⚠️ CONCURRENCIA:
- Es un read-modify-write NO atómico. El llamador debe serializar los eventos
  de un mismo número (ver app/services/identity_lock.py).
"""

import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.conversation_session import ConversationSession, ConversationStep
from app.schemas.conversation import DRAFT_VERSION, DraftOrder, SessionState
from app.services.errors import SessionStoreError
from app.utils.decorators import mask_phone, transactional

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, phone_number: str) -> Optional[SessionState]:
        try:
            row = self.db.get(ConversationSession, phone_number)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise SessionStoreError(f"could not load session: {e}") from e

        if row is None:
            return None

        try:
            step = ConversationStep(row.step)
        except ValueError:
            logger.warning("⚠️ Paso desconocido '%s' para %s; sesión descartada", row.step, mask_phone(phone_number))
            return None

        raw_draft = row.draft_json if isinstance(row.draft_json, dict) else {}
        if raw_draft.get("version") != DRAFT_VERSION:
            logger.warning("⚠️ Borrador versión %s para %s; sesión descartada", raw_draft.get("version"), mask_phone(phone_number))
            return None

        try:
            draft = DraftOrder.model_validate(raw_draft)
        except ValidationError as e:
            logger.warning("⚠️ Borrador ilegible para %s (%s errores); sesión descartada", mask_phone(phone_number), e.error_count())
            return None

        return SessionState(
            phone_number=row.phone_number,
            step=step,
            draft=draft,
            updated_at=row.updated_at,
        )

    def put(self, state: SessionState) -> None:
        try:
            self._replace(state)
        except SQLAlchemyError as e:
            raise SessionStoreError(f"could not save session: {e}") from e

    def delete(self, phone_number: str) -> bool:
        try:
            return self._delete(phone_number)
        except SQLAlchemyError as e:
            raise SessionStoreError(f"could not clear session: {e}") from e

    @transactional()
    def _replace(self, state: SessionState) -> None:
        draft_json = state.draft.model_dump(mode="json")
        row = self.db.get(ConversationSession, state.phone_number)
        if row is None:
            row = ConversationSession(phone_number=state.phone_number)
            self.db.add(row)
        row.step = state.step.value
        row.draft_json = draft_json
        logger.debug("💾 Sesión %s → %s", mask_phone(state.phone_number), state.step.value)

    @transactional()
    def _delete(self, phone_number: str) -> bool:
        row = self.db.get(ConversationSession, phone_number)
        if row is None:
            return False
        self.db.delete(row)
        logger.debug("🧹 Sesión %s eliminada", mask_phone(phone_number))
        return True
