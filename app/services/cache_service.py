"""
🗄️ SERVICIO DE CACHÉ - GESTIÓN REDIS
====================================

Interfaz mínima sobre Redis para lo que el bot necesita compartir entre
procesos: contadores de rate limiting y locks por número de WhatsApp.

🎯 PROPÓSITO:
- Conexión asíncrona opcional (la app arranca aunque Redis no esté)
- Rate limiting con TTL automático (incr_with_ttl)
- Locks distribuidos para serializar mensajes de un mismo número (lock)

🛡️ ROBUSTEZ:
- Sin REDIS_ENABLED / sin URL / sin ping → self.redis = None
- Los contadores devuelven 0 si Redis falla (nunca bloquean al usuario)
- lock() devuelve None sin Redis: el llamador usa solo el lock en proceso

📝 EJEMPLO DE USO:
    count = await cache_service.incr_with_ttl("rate:whatsapp:+1555...", 60)
    if count > settings.RATE_LIMIT_PER_MINUTE:
        ...

🔌 INTEGRACIÓN:
- connect() en el lifespan de FastAPI, close() al apagar
"""

from __future__ import annotations
import logging
from typing import Optional

from redis.asyncio import Redis
from redis.asyncio.lock import Lock
from redis.exceptions import RedisError

from config.settings import settings

logger = logging.getLogger(__name__)


class CacheService:
    def __init__(self, url: Optional[str], enabled: bool = True):
        self.url = url
        self.enabled = enabled
        self.redis: Optional[Redis] = None

    @property
    def connected(self) -> bool:
        return self.redis is not None

    async def connect(self):
        if not self.enabled or not self.url:
            logger.warning("Redis deshabilitado o sin URL; usando solo locks en proceso")
            return
        if self.redis is None:
            self.redis = Redis.from_url(self.url, decode_responses=True)
            try:
                await self.redis.ping()
                logger.info("Conectado a Redis")
            except (RedisError, OSError) as e:
                logger.warning(f"No se pudo conectar a Redis: {e}")
                self.redis = None

    async def close(self):
        if self.redis is not None:
            try:
                await self.redis.aclose()
            except RedisError as e:
                logger.warning(f"Error cerrando Redis: {e}")
            self.redis = None

    # Rate limit: INCR con TTL en la misma clave
    async def incr_with_ttl(self, key: str, ttl_seconds: int) -> int:
        if not self.redis:
            return 0
        try:
            pipe = self.redis.pipeline()
            pipe.incr(key)
            pipe.expire(key, ttl_seconds)
            res = await pipe.execute()
            return int(res[0])
        except RedisError as e:
            logger.warning(f"Rate limit sin Redis ({key}): {e}")
            return 0

    def lock(self, key: str, timeout: float) -> Optional[Lock]:
        """Lock distribuido con expiración; None si no hay Redis."""
        if not self.redis:
            return None
        return self.redis.lock(key, timeout=timeout, blocking_timeout=timeout)


cache_service = CacheService(settings.REDIS_URL, enabled=settings.REDIS_ENABLED)
