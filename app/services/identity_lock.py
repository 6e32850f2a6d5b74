"""
🔒 IDENTITY LOCK - UN EVENTO A LA VEZ POR NÚMERO
================================================

El flujo cargar → decidir → guardar de una conversación no es atómico. Si
llegan dos mensajes del mismo número casi a la vez, ambos leerían la misma
sesión y el segundo pisaría al primero. Este lock serializa los eventos por
número de WhatsApp; números distintos se procesan en paralelo.

🧱 DOS NIVELES:
1. asyncio.Lock por número (siempre): orden dentro del proceso
2. Lock de Redis "lock:session:<número>" (si hay Redis): orden entre workers

📝 EJEMPLO:
    async with identity_locks.hold(event.sender_id):
        ...
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from redis.exceptions import LockError, RedisError

from app.services.cache_service import CacheService, cache_service
from app.utils.decorators import mask_phone
from config.settings import settings

logger = logging.getLogger(__name__)


class IdentityLockTimeout(Exception):
    """No se obtuvo el lock distribuido a tiempo."""


class IdentityLock:
    def __init__(self, cache: Optional[CacheService] = None, timeout: Optional[float] = None):
        self.cache = cache
        self.timeout = timeout or settings.SESSION_LOCK_TIMEOUT
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, identity: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(identity, asyncio.Lock())
        self._holders[identity] = self._holders.get(identity, 0) + 1
        try:
            async with lock:
                async with self._distributed(identity):
                    yield
        finally:
            # Sin esperas pendientes → se libera la entrada del dict
            self._holders[identity] -= 1
            if self._holders[identity] == 0:
                del self._holders[identity]
                self._locks.pop(identity, None)

    @asynccontextmanager
    async def _distributed(self, identity: str) -> AsyncIterator[None]:
        redis_lock = self.cache.lock(f"lock:session:{identity}", self.timeout) if self.cache else None
        acquired = False
        if redis_lock is not None:
            try:
                acquired = await redis_lock.acquire()
            except RedisError as e:
                logger.warning("⚠️ Lock Redis no disponible para %s: %s", mask_phone(identity), e)
                redis_lock = None

        if redis_lock is None:
            yield
            return

        if not acquired:
            raise IdentityLockTimeout(f"timed out waiting for {mask_phone(identity)}")

        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except (LockError, RedisError) as e:
                # Expiró durante el procesamiento: otro worker pudo haber entrado
                logger.warning("⚠️ Lock Redis de %s ya no era nuestro: %s", mask_phone(identity), e)


identity_locks = IdentityLock(cache_service)
