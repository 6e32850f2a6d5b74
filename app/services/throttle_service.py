import logging
from typing import Optional

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.inbound_message import InboundMessage
from app.services.cache_service import CacheService
from config.settings import settings

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 60


def claim_message_idempotent(db: Session, message_sid: Optional[str], from_number: str, body: Optional[str]) -> bool:
    """
    Intenta registrar el SID. Si ya existe, devuelve False (reentrega duplicada).
    """
    if not message_sid:
        return True  # sin SID, no podemos asegurar; permitimos seguir
    try:
        db.execute(
            insert(InboundMessage).values(
                message_sid=message_sid, from_number=from_number, body=body
            )
        )
        db.commit()
        return True
    except IntegrityError:
        db.rollback()
        return False


async def check_rate_limit(cache: CacheService, from_number: str, limit_per_minute: Optional[int] = None) -> bool:
    """
    Suma 1 al contador del número en la ventana de 1 minuto.
    Devuelve True si aún está dentro del límite; sin Redis siempre True.
    """
    limit = limit_per_minute or settings.RATE_LIMIT_PER_MINUTE
    current = await cache.incr_with_ttl(f"rate:whatsapp:{from_number}", RATE_WINDOW_SECONDS)
    return current <= limit
